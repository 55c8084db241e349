"""Leave and work-from-home records read from the configured ClickUp lists."""
from typing import Optional

from sqlmodel import Field, SQLModel


class Leave(SQLModel, table=True):
    """One row per leave/WFH task. The table is replaced on every leave sync."""

    id: Optional[int] = Field(default=None, primary_key=True)
    leave_id: str = Field(unique=True, index=True)  # "leave_<task id>" / "wfh_<task id>"
    clickup_task_id: str
    member_clickup_id: str = Field(index=True)
    member_name: str = ""
    kind: str = "annual"  # "annual", "wfh"
    description: str = ""
    requested_days: Optional[float] = None
    start_date: str  # YYYY-MM-DD
    end_date: Optional[str] = None
    status: str = "pending"  # "approved", "pending", "rejected"
