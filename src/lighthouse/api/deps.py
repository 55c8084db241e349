"""Shared FastAPI dependencies."""
from fastapi import Request

from lighthouse.engine import SyncEngine


def get_sync_engine(request: Request) -> SyncEngine:
    """Return the SyncEngine the app started with."""
    return request.app.state.sync_engine
