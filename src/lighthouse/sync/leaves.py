"""
Leave / work-from-home sync.

Reads every task in the configured leave and WFH lists and turns them into
Leave records for the dashboard. Runs at most once per leave_sync_hours,
inside a normal sync session. A failing list is logged and skipped; it never
fails the session.
"""
import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Tuple

from lighthouse.clickup.normalizer import normalize_leave
from lighthouse.models.sync import as_utc
from lighthouse.sync.fetcher import fetch_all
from lighthouse.sync.session import CancellationToken

logger = logging.getLogger(__name__)

LEAVES_KEY = "leaves_synced"


def leave_lists(settings) -> List[Tuple[str, str]]:
    """(list_id, kind) pairs for the configured lists."""
    lists = []
    if settings.leave_list_id:
        lists.append((settings.leave_list_id, "annual"))
    if settings.wfh_list_id:
        lists.append((settings.wfh_list_id, "wfh"))
    return lists


def leaves_due(store, settings, now: datetime) -> bool:
    if not leave_lists(settings):
        return False
    meta = store.get_meta(LEAVES_KEY)
    if meta is None:
        return True
    age = now.astimezone(timezone.utc) - as_utc(meta.updated_at)
    return age >= timedelta(hours=settings.leave_sync_hours)


async def fetch_leave_tasks(
    client,
    settings,
    token: CancellationToken,
) -> Optional[List[Tuple[str, Dict[str, Any]]]]:
    """
    Fetch every task of the configured leave/WFH lists.

    Returns:
        [(kind, raw task)], or None when any list failed (the previous
        leave records are kept in that case).
    """
    tasks: List[Tuple[str, Dict[str, Any]]] = []
    for list_id, kind in leave_lists(settings):
        fetch = await fetch_all(
            partial(client.list_list_tasks_page, list_id),
            max_pages=settings.max_task_pages,
            inter_page_delay_ms=settings.page_delay_ms,
            token=token,
        )
        if fetch.error is not None:
            logger.warning("Leave list %s (%s) failed: %s", list_id, kind, fetch.error)
            return None
        tasks.extend((kind, raw) for raw in fetch.records)
    return tasks


def build_leaves(
    raw_tasks: List[Tuple[str, Dict[str, Any]]],
    member_names: Mapping[str, str],
) -> List[Dict[str, Any]]:
    """
    Normalize fetched leave tasks for the given members.

    Tasks assigned to someone else, without a start date, or malformed are
    skipped. Returns Leave record dicts sorted by leave_id.
    """
    records: Dict[str, Dict[str, Any]] = {}
    skipped = 0
    for kind, raw in raw_tasks:
        try:
            leave = normalize_leave(raw, kind, member_names)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Skipping malformed %s task: %s", kind, exc)
            leave = None
        if leave is None:
            skipped += 1
            continue
        records[leave["leave_id"]] = leave
    logger.info("Built %d leave records, %d tasks skipped", len(records), skipped)
    return [records[k] for k in sorted(records)]
