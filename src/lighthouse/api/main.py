"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from lighthouse.api.routes import leaves, members, sync as sync_routes
from lighthouse.engine import SyncEngine, build_engine


def create_app(
    sync_engine: Optional[SyncEngine] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        sync_engine: Pre-built engine (tests); built from settings on startup if None.
        start_scheduler: Start polling + the initial sync when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = sync_engine or build_engine()
        app.state.sync_engine = engine
        if start_scheduler:
            engine.start()
        yield
        if start_scheduler:
            await engine.shutdown()

    app = FastAPI(
        title="Lighthouse API",
        description="ClickUp team dashboard sync engine",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(members.router, prefix="/members", tags=["members"])
    app.include_router(leaves.router, prefix="/leaves", tags=["leaves"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
