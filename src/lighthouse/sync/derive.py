"""
Derived member fields.

Pure functions over a member's merged raw data (time entries, running
timer, merged tasks) and a fixed `now_ms` taken from the remote batch, so
re-running them on the same inputs always yields the same values. Nothing
here reads the previous derived values or the wall clock.

Each deriver takes (member, ctx) and returns a partial dict of fields; the
reconciler applies them in order.

Status definitions:
  - working:    an active timer is running (negative duration)
  - break:      no timer, last completed entry ended < break_minutes ago
  - offline:    had entries in the range but inactive longer than that
  - noActivity: no completed entries in the range

Score (0-100), weights configurable:
  tracked     40%  min(tracked / (target x working days), 1)
  tasks       20%  min(tasks / (team baseline x working days), 1)
  done        30%  completion ratio
  compliance  10%  min(hours inside working hours / (target x working days), 1)
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MAX_BREAK_MINUTES = 180  # longer gaps are overnight/multi-day, not breaks
DEFAULT_AVG_TASKS = 3.0

_EXCLUDED_MARKERS = ("stop", "hold", "help", "block")
_READY_MARKERS = ("complete", "done", "ready")


@dataclass(frozen=True)
class Thresholds:
    break_minutes: int = 15
    break_gap_minutes: int = 5
    daily_target_hours: float = 6.5
    work_start_hour: int = 8
    work_end_hour: int = 18
    # (tracked, tasks worked, tasks done, compliance)
    score_weights: Tuple[float, float, float, float] = (0.40, 0.20, 0.30, 0.10)

    @classmethod
    def from_settings(cls, settings) -> "Thresholds":
        return cls(
            break_minutes=settings.break_minutes,
            break_gap_minutes=settings.break_gap_minutes,
            daily_target_hours=settings.daily_target_hours,
            work_start_hour=settings.work_start_hour,
            work_end_hour=settings.work_end_hour,
            score_weights=(
                settings.score_weight_tracked,
                settings.score_weight_tasks,
                settings.score_weight_done,
                settings.score_weight_compliance,
            ),
        )


@dataclass(frozen=True)
class DeriveContext:
    """Everything a deriver may look at for one member."""

    entries: Sequence[Dict[str, Any]]  # overlapping the selected date range
    history: Sequence[Dict[str, Any]]  # every merged entry for this member
    running: Optional[Dict[str, Any]]
    tasks: Mapping[str, Dict[str, Any]]
    now_ms: int
    working_days: int = 1
    thresholds: Thresholds = field(default_factory=Thresholds)
    avg_tasks_baseline: float = DEFAULT_AVG_TASKS
    tz: tzinfo = timezone.utc  # local day boundaries for working hours


DeriveFn = Callable[[Dict[str, Any], DeriveContext], Dict[str, Any]]


def _completed(entries: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [e for e in entries if e["duration_ms"] > 0 and e.get("end_ms")]


def _is_running(running: Optional[Dict[str, Any]]) -> bool:
    return bool(running) and running["duration_ms"] < 0


def tracked_hours(entries, running, now_ms: int) -> float:
    """Completed durations plus the running timer's elapsed time, in hours."""
    total_ms = sum(e["duration_ms"] for e in entries if e["duration_ms"] > 0)
    if _is_running(running):
        elapsed = now_ms - running["start_ms"]
        if elapsed > 0:
            total_ms += elapsed
    return round(total_ms / MS_PER_HOUR, 2)


def derive_status(member, ctx: DeriveContext) -> Dict[str, Any]:
    if _is_running(ctx.running):
        return {"status": "working"}
    completed = _completed(ctx.entries)
    if not completed:
        return {"status": "noActivity"}
    last_end = max(e["end_ms"] for e in completed)
    minutes_since = (ctx.now_ms - last_end) / MS_PER_MINUTE
    if minutes_since < ctx.thresholds.break_minutes:
        return {"status": "break"}
    return {"status": "offline"}


def derive_tracked(member, ctx: DeriveContext) -> Dict[str, Any]:
    hours = tracked_hours(ctx.entries, ctx.running, ctx.now_ms)
    timer = None
    if _is_running(ctx.running):
        timer = max(0, (ctx.now_ms - ctx.running["start_ms"]) // 1000)
    return {"tracked_hours": hours, "timer_seconds": timer}


def _task_status(entry: Dict[str, Any], tasks: Mapping[str, Dict[str, Any]]):
    task = tasks.get(entry["task_id"])
    if task:
        return task["status"], task["status_type"]
    return entry.get("task_status", ""), entry.get("task_status_type", "")


def derive_task_counts(member, ctx: DeriveContext) -> Dict[str, Any]:
    """
    tasks = unique tasks worked on; done = ready/closed tasks;
    completion_ratio = ready / (ready + in progress), ignoring
    stopped/hold/help/blocked tasks outside the member's control.
    """
    seen = {}
    for entry in ctx.entries:
        task_id = entry.get("task_id")
        if not task_id or task_id in seen:
            continue
        status, status_type = _task_status(entry, ctx.tasks)
        excluded = any(m in status for m in _EXCLUDED_MARKERS)
        ready = status_type in ("closed", "done") or any(m in status for m in _READY_MARKERS)
        seen[task_id] = (ready, excluded)

    ready = sum(1 for r, x in seen.values() if r and not x)
    in_progress = sum(1 for r, x in seen.values() if not r and not x)
    denominator = ready + in_progress
    return {
        "tasks": len(seen),
        "done": ready,
        "completion_ratio": round(ready / denominator, 4) if denominator else 0.0,
    }


def derive_breaks(member, ctx: DeriveContext) -> Dict[str, Any]:
    """Gaps between consecutive completed entries longer than break_gap_minutes."""
    completed = sorted(
        (e for e in _completed(ctx.entries) if e.get("start_ms")),
        key=lambda e: (e["start_ms"], e["clickup_id"]),
    )
    min_gap = ctx.thresholds.break_gap_minutes * MS_PER_MINUTE
    max_gap = MAX_BREAK_MINUTES * MS_PER_MINUTE
    total = 0
    count = 0
    for current, nxt in zip(completed, completed[1:]):
        gap = nxt["start_ms"] - current["end_ms"]
        if min_gap < gap < max_gap:
            total += gap // MS_PER_MINUTE
            count += 1
    return {"breaks_minutes": total, "breaks_count": count}


def _current_entry(ctx: DeriveContext) -> Optional[Dict[str, Any]]:
    if _is_running(ctx.running):
        return ctx.running
    if not ctx.entries:
        return None
    return max(
        ctx.entries,
        key=lambda e: (e.get("end_ms") or e["start_ms"], e["clickup_id"]),
    )


def derive_current_task(member, ctx: DeriveContext) -> Dict[str, Any]:
    """Running timer's task if working, otherwise the most recent entry's task."""
    entry = _current_entry(ctx)
    if entry is None:
        return {"current_task": "", "current_project": ""}
    task = ctx.tasks.get(entry.get("task_id")) or {}
    return {
        "current_task": task.get("name") or entry.get("task_name") or "",
        "current_project": entry.get("list_name") or task.get("list_name") or "",
    }


def derive_previous_timer(member, ctx: DeriveContext) -> Dict[str, Any]:
    """ClickUp's all-time tracked total on the current task."""
    entry = _current_entry(ctx)
    task = ctx.tasks.get(entry.get("task_id")) if entry else None
    spent = (task or {}).get("time_spent_ms") or 0
    return {"previous_timer_ms": spent if spent > 0 else None}


def derive_last_active(member, ctx: DeriveContext) -> Dict[str, Any]:
    """Latest end (or start, for running timers) across the member's full history."""
    stamps = [e.get("end_ms") or e["start_ms"] for e in ctx.history]
    if _is_running(ctx.running):
        stamps.append(ctx.now_ms)
    stamps = [s for s in stamps if s > 0]
    return {"last_active_ms": max(stamps) if stamps else None}


def derive_overwork(member, ctx: DeriveContext) -> Dict[str, Any]:
    target = (member.get("target_hours") or ctx.thresholds.daily_target_hours) * ctx.working_days
    hours = tracked_hours(ctx.entries, ctx.running, ctx.now_ms)
    if hours > target:
        return {"is_overworking": True, "overtime_minutes": round((hours - target) * 60)}
    return {"is_overworking": False, "overtime_minutes": 0}


def derive_work_window(member, ctx: DeriveContext) -> Dict[str, Any]:
    """
    start_ms: earliest start in the range, running timer included.
    end_ms: latest completed end; None while a timer runs ("now").
    """
    starts = [e["start_ms"] for e in ctx.entries if e.get("start_ms")]
    running = _is_running(ctx.running)
    if running:
        starts.append(ctx.running["start_ms"])
    completed = _completed(ctx.entries)
    end = max(e["end_ms"] for e in completed) if completed and not running else None
    return {"start_ms": min(starts) if starts else None, "end_ms": end}


def compliance_hours(
    entries,
    running,
    now_ms: int,
    tz: tzinfo,
    start_hour: int,
    end_hour: int,
) -> float:
    """Hours tracked inside [start_hour, end_hour) of each entry's local start day."""
    spans = [(e["start_ms"], e["end_ms"]) for e in _completed(entries)]
    if _is_running(running):
        spans.append((running["start_ms"], now_ms))
    total_ms = 0
    for start_ms, end_ms in spans:
        day = datetime.fromtimestamp(start_ms / 1000, tz)
        opens = day.replace(hour=start_hour, minute=0, second=0, microsecond=0)
        closes = day.replace(hour=end_hour, minute=0, second=0, microsecond=0)
        lo = max(start_ms, int(opens.timestamp() * 1000))
        hi = min(end_ms, int(closes.timestamp() * 1000))
        if hi > lo:
            total_ms += hi - lo
    return total_ms / MS_PER_HOUR


def derive_score(member, ctx: DeriveContext) -> Dict[str, Any]:
    t = ctx.thresholds
    target = (member.get("target_hours") or t.daily_target_hours) * ctx.working_days
    task_baseline = ctx.avg_tasks_baseline * ctx.working_days
    tracked = tracked_hours(ctx.entries, ctx.running, ctx.now_ms)
    counts = derive_task_counts(member, ctx)
    compliance = compliance_hours(
        ctx.entries, ctx.running, ctx.now_ms, ctx.tz, t.work_start_hour, t.work_end_hour
    )

    w_tracked, w_tasks, w_done, w_compliance = t.score_weights
    parts = {
        "tracked": (min(tracked / target, 1.0) if target > 0 else 0.0) * w_tracked * 100,
        "tasks_worked": (
            min(counts["tasks"] / task_baseline, 1.0) if task_baseline > 0 else 0.0
        ) * w_tasks * 100,
        "tasks_done": counts["completion_ratio"] * w_done * 100,
        "compliance": (min(compliance / target, 1.0) if target > 0 else 0.0) * w_compliance * 100,
    }
    return {
        "compliance_hours": round(compliance, 2),
        "score": round(sum(parts.values()), 1),
        "score_breakdown": {k: round(v, 1) for k, v in parts.items()},
    }


DEFAULT_DERIVERS: Sequence[DeriveFn] = (
    derive_status,
    derive_tracked,
    derive_task_counts,
    derive_breaks,
    derive_current_task,
    derive_previous_timer,
    derive_last_active,
    derive_work_window,
    derive_overwork,
    derive_score,
)
