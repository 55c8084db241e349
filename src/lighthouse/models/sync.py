"""Sync audit log, offline operation queue and cache bookkeeping models."""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SyncLog(SQLModel, table=True):
    """Records each sync attempt for audit and debugging."""

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    kind: str = "incremental"  # "incremental", "backfill"
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    status: str = "running"  # "running", "completed", "skipped", "noop", "aborted", "failed"
    members_synced: int = 0
    tasks_synced: int = 0
    entries_synced: int = 0
    truncated: bool = False
    error_message: Optional[str] = None


class PendingOperation(SQLModel, table=True):
    """
    A write-style operation deferred while the remote was unreachable.
    The autoincrement id is the replay order key.
    """

    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    operation_id: str = Field(unique=True, index=True)
    op_type: str  # "time_entry_start", "time_entry_stop", "task_update"
    payload_json: str = "{}"
    created_at: datetime = Field(default_factory=utc_now)
    status: str = Field(default="pending", index=True)  # "pending", "failed"
    attempts: int = 0
    last_error: Optional[str] = None


class CacheMeta(SQLModel, table=True):
    """
    Small key/value facts about the cache that are refreshed on their own
    schedule, e.g. the team task baseline or the last leave sync.
    """

    key: str = Field(primary_key=True)
    value: float = 0.0
    updated_at: datetime = Field(default_factory=utc_now)
