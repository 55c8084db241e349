"""Team member model: identity from ClickUp plus derived dashboard fields."""
from typing import Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Member(SQLModel, table=True):
    """One row per monitored ClickUp user."""

    id: Optional[int] = Field(default=None, primary_key=True)
    clickup_id: str = Field(unique=True, index=True)
    name: str
    initials: str = ""
    email: Optional[str] = None
    profile_picture: Optional[str] = None
    color: Optional[str] = None
    target_hours: float = 6.5

    # Derived on every sync from the merged time entries / tasks
    status: str = "noActivity"  # "working", "break", "offline", "noActivity"
    tracked_hours: float = 0.0
    tasks: int = 0
    done: int = 0
    completion_ratio: float = 0.0
    breaks_minutes: int = 0
    breaks_count: int = 0
    current_task: str = ""
    current_project: str = ""
    timer_seconds: Optional[int] = None  # only while a timer is running
    previous_timer_ms: Optional[int] = None  # total time already on the current task
    last_active_ms: Optional[int] = None
    start_ms: Optional[int] = None  # first start in the range
    end_ms: Optional[int] = None  # last completed end; None while working
    is_overworking: bool = False
    overtime_minutes: int = 0
    compliance_hours: float = 0.0  # tracked inside working hours
    score: float = 0.0  # 0-100
    score_breakdown: Dict[str, float] = Field(default_factory=dict, sa_column=Column(JSON))

    updated_at_ms: int = 0
