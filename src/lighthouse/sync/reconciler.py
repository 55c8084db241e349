"""
Reconciler: merge a freshly fetched remote batch into the local entity set.

reconcile() is a pure function. It never writes to the store and never
mutates the dicts it is given; the executor persists the returned snapshot
in one step, so an aborted or failed session leaves the store untouched.

Merge rules:
  - members, tasks and time entries are upserted by ClickUp ID (remote
    replaces local),
  - the fetched time-entry window is authoritative for the fetched users:
    their local entries that start before the window end and are missing
    from the batch were deleted remotely (or aged out) and are dropped,
  - members are limited to the entity filter (empty filter = everyone),
  - derived member fields are recomputed from the merged raw fields only;
    any derived field a deriver does not produce is reset to its default
    rather than carried over from the previous sync,
  - `updated_at_ms` is the batch's fetch time, never the wall clock.

Together these make reconciliation idempotent:
reconcile(reconcile(L, R), R) == reconcile(L, R).
"""
import json
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence

from lighthouse.clickup.normalizer import (
    normalize_many,
    normalize_member,
    normalize_task,
    normalize_time_entry,
)
from lighthouse.sync.derive import (
    DEFAULT_AVG_TASKS,
    DEFAULT_DERIVERS,
    DeriveContext,
    DeriveFn,
    Thresholds,
)

Record = Dict[str, Any]

DERIVED_DEFAULTS: Dict[str, Any] = {
    "status": "noActivity",
    "tracked_hours": 0.0,
    "tasks": 0,
    "done": 0,
    "completion_ratio": 0.0,
    "breaks_minutes": 0,
    "breaks_count": 0,
    "current_task": "",
    "current_project": "",
    "timer_seconds": None,
    "previous_timer_ms": None,
    "last_active_ms": None,
    "start_ms": None,
    "end_ms": None,
    "is_overworking": False,
    "overtime_minutes": 0,
    "compliance_hours": 0.0,
    "score": 0.0,
    "score_breakdown": {},
}


class ReconciliationError(ValueError):
    """Raised when the remote batch contains malformed records."""


@dataclass(frozen=True)
class EntitySnapshot:
    """Local entity set keyed by ClickUp ID, one mapping per entity kind."""

    members: Mapping[str, Record] = field(default_factory=dict)
    tasks: Mapping[str, Record] = field(default_factory=dict)
    time_entries: Mapping[str, Record] = field(default_factory=dict)

    def to_json(self) -> str:
        """Canonical encoding; equal snapshots encode to identical bytes."""
        return json.dumps(
            {
                "members": self.members,
                "tasks": self.tasks,
                "time_entries": self.time_entries,
            },
            sort_keys=True,
            separators=(",", ":"),
        )

    def monitored_members(self, entity_filter: FrozenSet[str]) -> List[Record]:
        return [
            m for key, m in sorted(self.members.items())
            if not entity_filter or key in entity_filter
        ]


@dataclass(frozen=True)
class RemoteBatch:
    """Raw remote payloads from one fetch plus the window they were fetched for."""

    members: Sequence[Record]
    time_entries: Sequence[Record]
    tasks: Sequence[Record]
    running_timers: Mapping[str, Optional[Record]]
    range_start_ms: int
    range_end_ms: int
    fetched_at_ms: int
    working_days: int = 1
    entity_filter: FrozenSet[str] = frozenset()
    thresholds: Thresholds = field(default_factory=Thresholds)
    # Users whose time entries were fetched, and the end of the window they
    # were fetched for; None when no complete time-entry fetch happened.
    entry_user_ids: FrozenSet[str] = frozenset()
    entries_window_end_ms: Optional[int] = None
    avg_tasks_baseline: float = DEFAULT_AVG_TASKS
    tz: tzinfo = timezone.utc


def _overlaps(entry: Record, start_ms: int, end_ms: int, now_ms: int) -> bool:
    entry_end = entry.get("end_ms") or now_ms
    return entry["start_ms"] <= end_ms and entry_end >= start_ms


def _upsert(local: Mapping[str, Record], incoming: List[Record], fetched_at_ms: int) -> Dict[str, Record]:
    merged = {key: dict(value) for key, value in local.items()}
    for record in incoming:
        merged[record["clickup_id"]] = {**record, "updated_at_ms": fetched_at_ms}
    return merged


def _prune_entries(local: Mapping[str, Record], remote: RemoteBatch, incoming: List[Record]) -> Dict[str, Record]:
    if remote.entries_window_end_ms is None:
        return dict(local)
    returned = {e["clickup_id"] for e in incoming}
    return {
        key: entry for key, entry in local.items()
        if key in returned
        or entry["user_id"] not in remote.entry_user_ids
        or entry["start_ms"] > remote.entries_window_end_ms
    }


def reconcile(
    local: EntitySnapshot,
    remote: RemoteBatch,
    derive_fns: Optional[Sequence[DeriveFn]] = None,
) -> EntitySnapshot:
    """
    Compute the merged local state for a remote batch without committing it.

    Args:
        local: Current store contents (EntitySnapshot from LocalStore.read_all()).
        remote: Raw batch fetched by the executor.
        derive_fns: Derived-field functions; defaults to DEFAULT_DERIVERS.

    Returns:
        A new EntitySnapshot.

    Raises:
        ReconciliationError: if any remote record is malformed.
    """
    derive_fns = DEFAULT_DERIVERS if derive_fns is None else derive_fns

    try:
        members_in = normalize_many(list(remote.members), normalize_member)
        tasks_in = normalize_many(list(remote.tasks), normalize_task)
        entries_in = normalize_many(list(remote.time_entries), normalize_time_entry)
        running = {
            str(user_id): normalize_time_entry(raw)
            for user_id, raw in remote.running_timers.items()
            if raw
        }
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise ReconciliationError(f"malformed remote data: {exc}") from exc

    now_ms = remote.fetched_at_ms
    tasks = _upsert(local.tasks, tasks_in, now_ms)
    time_entries = _upsert(_prune_entries(local.time_entries, remote, entries_in), entries_in, now_ms)

    members = {key: dict(value) for key, value in local.members.items()}
    for identity in members_in:
        key = identity["clickup_id"]
        if remote.entity_filter and key not in remote.entity_filter:
            continue
        base = members.get(key) or {"target_hours": remote.thresholds.daily_target_hours}
        members[key] = {**base, **identity}

    entries_by_user: Dict[str, List[Record]] = {}
    for entry in sorted(time_entries.values(), key=lambda e: (e["start_ms"], e["clickup_id"])):
        entries_by_user.setdefault(entry["user_id"], []).append(entry)

    for key in sorted(members):
        if remote.entity_filter and key not in remote.entity_filter:
            continue
        identity = {k: v for k, v in members[key].items() if k not in DERIVED_DEFAULTS}
        history = entries_by_user.get(key, [])
        ctx = DeriveContext(
            entries=[
                e for e in history
                if _overlaps(e, remote.range_start_ms, remote.range_end_ms, now_ms)
            ],
            history=history,
            running=running.get(key),
            tasks=tasks,
            now_ms=now_ms,
            working_days=remote.working_days,
            thresholds=remote.thresholds,
            avg_tasks_baseline=remote.avg_tasks_baseline,
            tz=remote.tz,
        )
        derived = dict(DERIVED_DEFAULTS)
        for fn in derive_fns:
            derived.update(fn(identity, ctx))
        members[key] = {**identity, **derived, "updated_at_ms": now_ms}

    return EntitySnapshot(members=members, tasks=tasks, time_entries=time_entries)


def summarize(snapshot: EntitySnapshot, remote: RemoteBatch) -> Dict[str, Any]:
    """
    Aggregate team statistics for the dashboard header.

    Returns:
        {"members": int, "status_counts": {status: n}, "tracked_hours": float,
         "projects": {list_name: hours}} over the monitored members and the
         batch's date range.
    """
    monitored = snapshot.monitored_members(remote.entity_filter)
    monitored_ids = {m["clickup_id"] for m in monitored}

    status_counts: Dict[str, int] = {}
    for member in monitored:
        status_counts[member["status"]] = status_counts.get(member["status"], 0) + 1

    projects: Dict[str, float] = {}
    for entry in snapshot.time_entries.values():
        if entry["user_id"] not in monitored_ids or entry["duration_ms"] <= 0:
            continue
        if not _overlaps(entry, remote.range_start_ms, remote.range_end_ms, remote.fetched_at_ms):
            continue
        name = entry.get("list_name") or "Unknown"
        projects[name] = projects.get(name, 0.0) + entry["duration_ms"] / 3_600_000

    return {
        "members": len(monitored),
        "status_counts": dict(sorted(status_counts.items())),
        "tracked_hours": round(sum(m["tracked_hours"] for m in monitored), 2),
        "projects": {k: round(v, 2) for k, v in sorted(projects.items())},
    }
