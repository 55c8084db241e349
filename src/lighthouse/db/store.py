"""
Local store: the SQLModel tables behind the dashboard cache.

read_all() returns the current contents as an EntitySnapshot and
bulk_upsert() writes a whole reconciled snapshot in a single transaction,
so readers only ever see one session's complete result or the previous one.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Type

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from lighthouse.models.leave import Leave
from lighthouse.models.member import Member
from lighthouse.models.sync import CacheMeta, as_utc, utc_now
from lighthouse.models.work import Task, TimeEntry
from lighthouse.sync.reconciler import EntitySnapshot

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the local store cannot be read or written."""


def _rows_by_id(session: Session, model: Type[SQLModel]) -> Dict[str, dict]:
    rows = session.exec(select(model).order_by(model.id)).all()
    return {row.clickup_id: row.model_dump(exclude={"id"}) for row in rows}


def _upsert_rows(session: Session, model: Type[SQLModel], records: Dict[str, dict]) -> int:
    existing = {
        row.clickup_id: row
        for row in session.exec(select(model)).all()
    }
    written = 0
    for key, fields in records.items():
        row = existing.get(key)
        if row is not None:
            changed = {k: v for k, v in fields.items() if getattr(row, k, None) != v}
            if not changed:
                continue
            # Update in place (keeps same id)
            for k, v in changed.items():
                setattr(row, k, v)
        else:
            row = model(**fields)
        session.add(row)
        written += 1
    return written


class LocalStore:
    """Member / Task / TimeEntry persistence over a SQLModel engine."""

    def __init__(self, engine):
        self.engine = engine

    def read_all(self) -> EntitySnapshot:
        try:
            with Session(self.engine) as s:
                return EntitySnapshot(
                    members=_rows_by_id(s, Member),
                    tasks=_rows_by_id(s, Task),
                    time_entries=_rows_by_id(s, TimeEntry),
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"store read failed: {exc}") from exc

    def bulk_upsert(self, snapshot: EntitySnapshot, removed_entry_ids: Iterable[str] = ()) -> None:
        """
        Write every record of the snapshot and delete the time entries the
        reconciler dropped, all or nothing.

        Raises:
            StoreError: the transaction was rolled back; previous contents stand.
        """
        removed = sorted(set(removed_entry_ids))
        try:
            with Session(self.engine) as s:
                if removed:
                    s.execute(delete(TimeEntry).where(TimeEntry.clickup_id.in_(removed)))
                members = _upsert_rows(s, Member, snapshot.members)
                tasks = _upsert_rows(s, Task, snapshot.tasks)
                entries = _upsert_rows(s, TimeEntry, snapshot.time_entries)
                s.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"store write failed: {exc}") from exc
        logger.info(
            "Stored %d members, %d tasks, %d time entries; removed %d stale entries",
            members, tasks, entries, len(removed),
        )

    def clear(self) -> None:
        try:
            with Session(self.engine) as s:
                for model in (TimeEntry, Task, Member, Leave, CacheMeta):
                    s.execute(delete(model))
                s.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"store clear failed: {exc}") from exc
        logger.info("Local store cleared")

    def count_tasks(self) -> int:
        with Session(self.engine) as s:
            return s.exec(select(func.count()).select_from(Task)).one()

    # ─── Leaves ───────────────────────────────────────────────────────────────

    def replace_leaves(self, records: List[dict]) -> None:
        """Swap the whole Leave table for the given records in one transaction."""
        try:
            with Session(self.engine) as s:
                s.execute(delete(Leave))
                for record in records:
                    s.add(Leave(**record))
                s.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"leave write failed: {exc}") from exc
        logger.info("Stored %d leave records", len(records))

    def read_leaves(self, member_id: Optional[str] = None) -> List[Leave]:
        with Session(self.engine) as s:
            query = select(Leave).order_by(Leave.start_date, Leave.leave_id)
            if member_id is not None:
                query = query.where(Leave.member_clickup_id == member_id)
            return list(s.exec(query).all())

    # ─── Cache metadata ───────────────────────────────────────────────────────

    def get_meta(self, key: str) -> Optional[CacheMeta]:
        try:
            with Session(self.engine) as s:
                return s.get(CacheMeta, key)
        except SQLAlchemyError as exc:
            raise StoreError(f"cache metadata read failed: {exc}") from exc

    def set_meta(self, key: str, value: float, updated_at: Optional[datetime] = None) -> None:
        try:
            with Session(self.engine) as s:
                row = s.get(CacheMeta, key) or CacheMeta(key=key)
                row.value = value
                row.updated_at = as_utc(updated_at) if updated_at else utc_now()
                s.add(row)
                s.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"cache metadata write failed: {exc}") from exc
