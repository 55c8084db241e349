"""Cached leave / work-from-home routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from lighthouse.db.engine import get_session
from lighthouse.models.leave import Leave

router = APIRouter()


@router.get("/", response_model=List[Leave])
def list_leaves(
    member_id: Optional[str] = None,
    kind: Optional[str] = None,
    status: Optional[str] = None,
    session: Session = Depends(get_session),
):
    """List leave and WFH records by start date, with optional filters."""
    query = select(Leave).order_by(Leave.start_date, Leave.leave_id)
    if member_id:
        query = query.where(Leave.member_clickup_id == member_id)
    if kind:
        query = query.where(Leave.kind == kind)
    if status:
        query = query.where(Leave.status == status)
    return session.exec(query).all()
