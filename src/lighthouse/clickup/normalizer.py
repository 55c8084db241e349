"""
ClickUp API response normalizer.

Converts raw dicts from the ClickUp v2 API into clean field dicts that map
directly onto the SQLModel columns in lighthouse.models. No DB access here.
The reconciler works on these dicts and the store persists them.

All functions return plain dicts so they're easy to test without any
SQLModel or DB dependencies. Anything missing a stable ID raises
ValueError; callers decide whether that is fatal.

ClickUp quirks handled here:

  - IDs arrive as ints for users and strings for tasks/entries; every
    external ID is normalized to str.
  - Timestamps ("start", "end", "date_updated", "time_spent") and
    "duration" arrive as strings of milliseconds.
  - A running timer has a NEGATIVE duration and no "end".
  - Team members from GET /team/{id} are wrapped: {"user": {...}}.
"""
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional


def _require_id(raw: Dict[str, Any], kind: str) -> str:
    if not isinstance(raw, dict):
        raise ValueError(f"{kind} payload is not an object: {raw!r}")
    value = raw.get("id")
    if value is None or str(value).strip() == "":
        raise ValueError(f"{kind} payload has no id")
    return str(value)


def _ms(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Parse a ClickUp millisecond timestamp/duration (str or int)."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"not a millisecond value: {value!r}")


def make_initials(name: str) -> str:
    """Two-letter initials: first+last word, or first two letters of a single word."""
    parts = (name or "").split()
    if not parts:
        return "??"
    if len(parts) == 1:
        return parts[0][:2].upper()
    return (parts[0][0] + parts[-1][0]).upper()


def normalize_member(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a team member dict (GET /team/{team_id} → team.members[]).

    Accepts either the wrapped {"user": {...}} shape or a bare user dict.

    Returns:
        Dict with identity keys of the Member model.
    """
    user = raw.get("user", raw) if isinstance(raw, dict) else raw
    clickup_id = _require_id(user, "member")
    name = user.get("username") or (user.get("email") or "").split("@")[0] or "Unknown"
    return {
        "clickup_id": clickup_id,
        "name": name,
        "initials": user.get("initials") or make_initials(name),
        "email": user.get("email"),
        "profile_picture": user.get("profilePicture"),
        "color": user.get("color"),
    }


def _priority(raw: Dict[str, Any]) -> str:
    priority = raw.get("priority")
    if isinstance(priority, dict) and priority.get("priority"):
        return str(priority["priority"]).capitalize()
    return "Normal"


def normalize_task(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a task dict (GET /team/{team_id}/task → tasks[]).

    Returns:
        Dict with keys matching Task model columns (minus id/updated_at_ms).
    """
    clickup_id = _require_id(raw, "task")
    status = raw.get("status") or {}
    task_list = raw.get("list") or {}
    assignees = raw.get("assignees") or []
    return {
        "clickup_id": clickup_id,
        "name": raw.get("name") or "",
        "status": (status.get("status") or "").lower(),
        "status_type": status.get("type") or "",
        "status_color": status.get("color"),
        "list_id": str(task_list["id"]) if task_list.get("id") is not None else None,
        "list_name": task_list.get("name") or "",
        "priority": _priority(raw),
        "assignee_ids": sorted(str(a["id"]) for a in assignees if a.get("id") is not None),
        "tags": [t.get("name", "") for t in raw.get("tags") or []],
        "time_spent_ms": _ms(raw.get("time_spent")) or 0,
        "date_updated_ms": _ms(raw.get("date_updated")) or 0,
    }


def normalize_time_entry(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a time entry (GET /team/{team_id}/time_entries → data[]),
    or a running timer (GET .../time_entries/current → data).

    Returns:
        Dict with keys matching TimeEntry model columns (minus id/updated_at_ms).
    """
    clickup_id = _require_id(raw, "time entry")
    user = raw.get("user") or {}
    if user.get("id") is None:
        raise ValueError(f"time entry {clickup_id} has no user")
    task = raw.get("task") or {}
    task_status = task.get("status") or {}
    location = raw.get("task_location") or {}
    start_ms = _ms(raw.get("start"), default=None)
    if start_ms is None:
        raise ValueError(f"time entry {clickup_id} has no start")
    end_ms = _ms(raw.get("end"), default=None)
    duration_ms = _ms(raw.get("duration")) or 0
    if duration_ms < 0:
        end_ms = None
    return {
        "clickup_id": clickup_id,
        "user_id": str(user["id"]),
        "task_id": str(task["id"]) if task.get("id") is not None else None,
        "task_name": task.get("name") or "",
        "task_status": (task_status.get("status") or "").lower(),
        "task_status_type": task_status.get("type") or "",
        "list_name": location.get("list_name") or "",
        "start_ms": start_ms,
        "end_ms": end_ms,
        "duration_ms": duration_ms,
    }


def normalize_many(raws: List[Dict[str, Any]], fn) -> List[Dict[str, Any]]:
    """Apply a normalizer to a list, keyed errors include the list position."""
    out = []
    for i, raw in enumerate(raws):
        try:
            out.append(fn(raw))
        except ValueError as exc:
            raise ValueError(f"item {i}: {exc}") from exc
    return out


# ─── Leave / WFH list tasks ───────────────────────────────────────────────────

LEAVE_START_FIELDS = ("start of time", "leave start", "time-off start", "time off start", "start date")
LEAVE_END_FIELDS = ("end of time", "leave end", "time-off end", "time off end", "end date")
WFH_START_FIELDS = ("wfh date", "work from home", "wfh start", "remote date")
WFH_END_FIELDS = ("wfh end", "end date")
REQUESTED_DAYS_FIELDS = ("requested day", "days requested", "number of days")


def parse_field_date(value: Any) -> Optional[date]:
    """
    Parse a ClickUp date value: ms or s timestamp (numeric string) or an ISO
    date/datetime string. Returns the UTC calendar day, or None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if re.fullmatch(r"\d+", text):
        number = int(text)
        seconds = number / 1000 if number > 1e12 else number
        return datetime.fromtimestamp(seconds, timezone.utc).date()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def _custom_field(raw: Dict[str, Any], patterns: Iterable[str], parse):
    for custom in raw.get("custom_fields") or []:
        name = (custom.get("name") or "").lower()
        if any(p in name for p in patterns):
            value = parse(custom.get("value"))
            if value is not None:
                return value
    return None


def _float_or_none(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def leave_status(raw_status: Any) -> str:
    status = ((raw_status or {}).get("status") or "").lower() if isinstance(raw_status, dict) else ""
    if any(m in status for m in ("approved", "complete", "closed")):
        return "approved"
    if any(m in status for m in ("reject", "cancel")):
        return "rejected"
    return "pending"


def normalize_leave(
    raw: Dict[str, Any],
    kind: str,
    member_names: Mapping[str, str],
) -> Optional[Dict[str, Any]]:
    """
    Normalize a task from the leave ("annual") or WFH ("wfh") list.

    The first assignee must be a known member; dates come from the task's
    start_date/due_date, falling back to date-like custom fields. A missing
    end date means a single day.

    Returns:
        Dict matching the Leave model, or None if the task is unusable.
    """
    task_id = _require_id(raw, "leave task")
    assignees = raw.get("assignees") or []
    member_id = str(assignees[0].get("id")) if assignees and assignees[0].get("id") is not None else None
    if member_id is None or member_id not in member_names:
        return None

    start_fields, end_fields = (
        (WFH_START_FIELDS, WFH_END_FIELDS) if kind == "wfh" else (LEAVE_START_FIELDS, LEAVE_END_FIELDS)
    )
    start = parse_field_date(raw.get("start_date")) or _custom_field(raw, start_fields, parse_field_date)
    end = parse_field_date(raw.get("due_date")) or _custom_field(raw, end_fields, parse_field_date)
    if start is None:
        return None
    end = end or start

    prefix = "wfh" if kind == "wfh" else "leave"
    return {
        "leave_id": f"{prefix}_{task_id}",
        "clickup_task_id": task_id,
        "member_clickup_id": member_id,
        "member_name": member_names[member_id],
        "kind": kind,
        "description": raw.get("name") or "",
        "requested_days": (
            _custom_field(raw, REQUESTED_DAYS_FIELDS, _float_or_none) if kind != "wfh" else None
        ),
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "status": leave_status(raw.get("status")),
    }
