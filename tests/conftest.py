"""Shared test fixtures."""
from datetime import datetime, timezone
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from lighthouse.models.member import Member  # noqa: F401
from lighthouse.models.work import Task, TimeEntry  # noqa: F401
from lighthouse.models.leave import Leave  # noqa: F401
from lighthouse.models.sync import CacheMeta, PendingOperation, SyncLog  # noqa: F401
from lighthouse.config import Settings
from lighthouse.db.store import LocalStore

# Wednesday 2025-01-15 14:00 UTC
FIXED_NOW = datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)
NOW_MS = 1736949600000
DAY_START_MS = 1736899200000
MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(engine) -> LocalStore:
    return LocalStore(engine)


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Settings isolated from the environment, with no inter-page delays."""
    return Settings(
        _env_file=None,
        clickup_api_key="pk_test",
        clickup_team_id="9001",
        database_url="sqlite://",
        members_to_monitor=[],
        page_delay_ms=0,
        historical_page_delay_ms=0,
    )


@pytest.fixture(name="clock")
def clock_fixture():
    return lambda: FIXED_NOW


# ─── Raw ClickUp payload factories ────────────────────────────────────────────

@pytest.fixture(name="make_member")
def make_member_fixture():
    def _make(user_id: str, username: str = "Ada Lovelace", **extra) -> dict:
        return {
            "user": {
                "id": int(user_id),
                "username": username,
                "email": f"{username.split()[0].lower()}@example.com",
                "color": "#7b68ee",
                "profilePicture": None,
                **extra,
            }
        }
    return _make


@pytest.fixture(name="make_task")
def make_task_fixture():
    def _make(
        task_id: str,
        status: str = "in progress",
        status_type: str = "custom",
        list_name: str = "Website",
        assignees=("1",),
    ) -> dict:
        return {
            "id": task_id,
            "name": f"Task {task_id}",
            "status": {"status": status, "type": status_type, "color": "#d3d3d3"},
            "list": {"id": "L1", "name": list_name},
            "assignees": [{"id": int(a)} for a in assignees],
            "tags": [{"name": "frontend"}],
            "priority": {"priority": "high"},
            "time_spent": "0",
            "date_updated": str(NOW_MS - HOUR_MS),
        }
    return _make


@pytest.fixture(name="make_entry")
def make_entry_fixture():
    def _make(
        entry_id: str,
        user_id: str,
        start_ms: int,
        duration_ms: int,
        task_id: str = "t1",
        task_status: str = "in progress",
        list_name: str = "Website",
    ) -> dict:
        end_ms = start_ms + duration_ms if duration_ms > 0 else None
        return {
            "id": entry_id,
            "user": {"id": int(user_id)},
            "task": {
                "id": task_id,
                "name": f"Task {task_id}",
                "status": {"status": task_status, "type": "custom"},
            },
            "task_location": {"list_name": list_name},
            "start": str(start_ms),
            "end": str(end_ms) if end_ms else None,
            "duration": str(duration_ms),
        }
    return _make


@pytest.fixture(name="remote_entries")
def remote_entries_fixture(make_entry):
    """Two completed entries today for user 1, 30 minutes apart."""
    return [
        make_entry("e1", "1", NOW_MS - 3 * HOUR_MS, HOUR_MS),
        make_entry("e2", "1", NOW_MS - 90 * MINUTE_MS, HOUR_MS),
    ]


@pytest.fixture(name="clickup")
def clickup_fixture(make_member, make_task, remote_entries):
    """
    Mock ClickUpClient: one member ("1"), one task ("t1"), the two
    remote_entries, no running timer.
    """
    async def list_time_entries(start_ms, end_ms, entity_ids=()):
        return [e for e in remote_entries if start_ms <= int(e["start"]) < end_ms]

    client = MagicMock()
    client.request_count = 0
    client.list_entities = AsyncMock(return_value=[make_member("1")])
    client.list_time_entries = AsyncMock(side_effect=list_time_entries)
    client.get_running_timer = AsyncMock(return_value=None)
    client.list_tasks_page = AsyncMock(return_value=([make_task("t1")], False))
    client.start_timer = AsyncMock(return_value={})
    client.stop_timer = AsyncMock(return_value={})
    client.update_task = AsyncMock(return_value={})
    client.aclose = AsyncMock()
    return client
