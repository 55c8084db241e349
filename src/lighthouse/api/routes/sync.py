"""Sync trigger, status and host-signal routes."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from lighthouse.api.deps import get_sync_engine
from lighthouse.clickup.client import ClickUpAPIError
from lighthouse.db.engine import get_session
from lighthouse.engine import SyncEngine
from lighthouse.models.sync import SyncLog
from lighthouse.sync.params import DateRange

router = APIRouter()


class SyncStatusResponse(BaseModel):
    phase: str
    is_syncing: bool
    progress_message: Optional[str]
    progress_percent: Optional[int]
    last_sync_at: Optional[datetime]
    last_error: Optional[str]
    last_log_status: Optional[str]
    last_log_finished_at: Optional[datetime]
    truncated: bool = False
    pending_operations: int = 0
    failed_operations: int = 0
    stats: Dict[str, Any] = {}


class ParametersRequest(BaseModel):
    member_ids: Optional[List[str]] = None  # None keeps the current filter
    start_date: Optional[date] = None  # None = "today"
    end_date: Optional[date] = None
    poll_interval_ms: Optional[int] = None


class VisibilityRequest(BaseModel):
    visible: bool


class ConnectivityRequest(BaseModel):
    online: bool


class OperationRequest(BaseModel):
    op_type: str  # "time_entry_start", "time_entry_stop", "task_update"
    payload: Dict[str, Any] = {}


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    engine: SyncEngine = Depends(get_sync_engine),
    session: Session = Depends(get_session),
):
    """Return the published engine state plus the most recent sync log."""
    state = engine.read()
    log = session.exec(
        select(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
    ).first()
    queue_stats = engine.queue.stats()
    return SyncStatusResponse(
        phase=state.phase.value,
        is_syncing=state.is_syncing,
        progress_message=state.progress.message if state.progress else None,
        progress_percent=state.progress.percent if state.progress else None,
        last_sync_at=state.last_sync_at,
        last_error=state.last_error,
        last_log_status=log.status if log else None,
        last_log_finished_at=log.finished_at if log else None,
        truncated=log.truncated if log else False,
        pending_operations=queue_stats["pending"],
        failed_operations=queue_stats["failed"],
        stats=state.stats,
    )


@router.post("/trigger")
async def trigger_sync(
    background_tasks: BackgroundTasks,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """
    Manual refresh. Returns immediately; the attempt runs in the background
    and is skipped if another sync is already running.
    """
    background_tasks.add_task(engine.sync)
    return {"message": "Sync started"}


@router.post("/parameters")
def update_parameters(
    request: ParametersRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Change member filter / date range / poll interval (debounced)."""
    try:
        date_range = DateRange(start=request.start_date, end=request.end_date)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    if request.poll_interval_ms is not None and request.poll_interval_ms <= 0:
        raise HTTPException(status_code=422, detail="poll_interval_ms must be positive")

    params = engine.params.with_date_range(date_range)
    if request.member_ids is not None:
        params = params.with_entity_filter(request.member_ids)
    if request.poll_interval_ms is not None:
        params = params.with_poll_interval(request.poll_interval_ms)

    changed = engine.set_parameters(params)
    return {"changed": changed}


@router.post("/visibility")
def set_visibility(
    request: VisibilityRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    engine.set_visible(request.visible)
    return {"visible": request.visible}


@router.post("/connectivity")
async def set_connectivity(
    request: ConnectivityRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Report connectivity. Reconnecting replays queued operations, then syncs."""
    result = await engine.set_online(request.online)
    return {
        "online": request.online,
        "sync_outcome": result.outcome.value if result else None,
    }


@router.post("/operations")
async def submit_operation(
    request: OperationRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Start/stop a timer or update a task; queued for replay while offline."""
    try:
        return await engine.submit_operation(request.op_type, request.payload)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ClickUpAPIError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
