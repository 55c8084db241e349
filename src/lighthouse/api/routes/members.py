"""Cached member query routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from lighthouse.db.engine import get_session
from lighthouse.models.member import Member

router = APIRouter()


@router.get("/", response_model=List[Member])
def list_members(
    status: Optional[str] = None,
    session: Session = Depends(get_session),
):
    """List cached members by name, optionally filtered by status."""
    query = select(Member).order_by(Member.name)
    if status:
        query = query.where(Member.status == status)
    return session.exec(query).all()


@router.get("/{clickup_id}", response_model=Member)
def get_member(clickup_id: str, session: Session = Depends(get_session)):
    """Fetch one member by ClickUp user ID."""
    member = session.exec(
        select(Member).where(Member.clickup_id == clickup_id)
    ).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member
