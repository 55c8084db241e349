"""Work data models: ClickUp tasks and the time entries tracked against them."""
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Task(SQLModel, table=True):
    """One row per ClickUp task seen in a task page."""

    id: Optional[int] = Field(default=None, primary_key=True)
    clickup_id: str = Field(unique=True, index=True)
    name: str
    status: str = ""  # ClickUp status name, lowercased, e.g. "in progress"
    status_type: str = ""  # "open", "custom", "closed", "done"
    status_color: Optional[str] = None
    list_id: Optional[str] = None
    list_name: str = ""
    priority: str = "Normal"
    assignee_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    time_spent_ms: int = 0
    date_updated_ms: int = 0

    updated_at_ms: int = 0


class TimeEntry(SQLModel, table=True):
    """
    One row per ClickUp time entry.
    A running timer has end_ms=None and a negative duration from the API.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    clickup_id: str = Field(unique=True, index=True)
    user_id: str = Field(index=True)
    task_id: Optional[str] = None
    task_name: str = ""
    task_status: str = ""
    task_status_type: str = ""
    list_name: str = ""

    start_ms: int
    end_ms: Optional[int] = None
    duration_ms: int = 0  # negative while running

    updated_at_ms: int = 0
