"""
Team task baseline: the average number of distinct tasks a member works on
per day, used as the "tasks worked" target of the score.

Computed from the raw time entries of the last three months and cached in
CacheMeta; a sync refreshes it at most once per baseline_refresh_hours and
otherwise reuses the cached value.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from lighthouse.models.sync import as_utc
from lighthouse.sync.derive import DEFAULT_AVG_TASKS

logger = logging.getLogger(__name__)

BASELINE_KEY = "avg_tasks_baseline"
BASELINE_DAYS = 90


def avg_tasks_per_member_day(raw_entries: Iterable[Dict[str, Any]], since_ms: int = 0) -> float:
    """
    Mean of distinct task ids per (member, UTC day of the entry start),
    over entries starting at or after since_ms.
    Entries without a task or a start are ignored; no usable entries
    gives DEFAULT_AVG_TASKS.
    """
    days: Dict[Tuple[str, str], Set[str]] = {}
    for raw in raw_entries:
        user = raw.get("user") or {}
        task = raw.get("task") or {}
        if not isinstance(user, dict) or not isinstance(task, dict):
            continue
        if user.get("id") is None or not task.get("id") or not raw.get("start"):
            continue
        try:
            start_ms = int(raw["start"])
        except (TypeError, ValueError):
            continue
        if start_ms < since_ms:
            continue
        day = datetime.fromtimestamp(start_ms / 1000, timezone.utc).date().isoformat()
        days.setdefault((str(user["id"]), day), set()).add(str(task["id"]))
    if not days:
        return DEFAULT_AVG_TASKS
    return round(sum(len(tasks) for tasks in days.values()) / len(days), 2)


def baseline_due(updated_at: Optional[datetime], now: datetime, refresh_hours: int) -> bool:
    if updated_at is None:
        return True
    return now.astimezone(timezone.utc) - as_utc(updated_at) >= timedelta(hours=refresh_hours)


def current_baseline(store, now: datetime, refresh_hours: int) -> Tuple[float, bool]:
    """
    Returns:
        (cached baseline or the default, whether a refresh is due)
    """
    meta = store.get_meta(BASELINE_KEY)
    if meta is None:
        return DEFAULT_AVG_TASKS, True
    return meta.value, baseline_due(meta.updated_at, now, refresh_hours)
