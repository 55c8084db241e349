"""Sync parameters: monitored members, the selected date range and poll interval."""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import FrozenSet, Iterable, Optional, Tuple

_END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class DateRange:
    """
    Either the "today" sentinel (start is None) or an inclusive [start, end]
    range of local calendar days. A range without an end is a single day.
    """

    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.start is None and self.end is not None:
            raise ValueError("date range has an end but no start")
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError(f"date range ends before it starts: {self.start} > {self.end}")

    @classmethod
    def today(cls) -> "DateRange":
        return cls()

    @property
    def is_today(self) -> bool:
        return self.start is None

    def days(self, now: datetime) -> Tuple[date, date]:
        if self.is_today:
            return now.date(), now.date()
        return self.start, self.end or self.start

    def resolve(self, now: datetime) -> Tuple[datetime, datetime]:
        """Local-time window: first day 00:00:00.000 → last day 23:59:59.999."""
        first, last = self.days(now)
        return (
            datetime.combine(first, time.min, tzinfo=now.tzinfo),
            datetime.combine(last, _END_OF_DAY, tzinfo=now.tzinfo),
        )

    def bounds_ms(self, now: datetime) -> Tuple[int, int]:
        start, end = self.resolve(now)
        return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


def working_days(first: date, last: date, weekend_days: Iterable[int] = (4, 5)) -> int:
    """
    Count working days in [first, last], skipping weekend weekdays
    (Monday=0; default Friday/Saturday). Always at least 1.
    """
    weekend = set(weekend_days)
    count = 0
    day = first
    while day <= last:
        if day.weekday() not in weekend:
            count += 1
        day += timedelta(days=1)
    return max(count, 1)


@dataclass(frozen=True)
class SyncParameters:
    """Immutable per sync attempt. A changed value goes through the debouncer."""

    entity_filter: FrozenSet[str] = field(default_factory=frozenset)
    date_range: DateRange = field(default_factory=DateRange)
    poll_interval_ms: int = 30000

    @classmethod
    def from_settings(cls, settings) -> "SyncParameters":
        return cls(
            entity_filter=frozenset(str(i) for i in settings.members_to_monitor),
            poll_interval_ms=settings.poll_interval_ms,
        )

    def with_date_range(self, date_range: DateRange) -> "SyncParameters":
        return replace(self, date_range=date_range)

    def with_entity_filter(self, ids: Iterable[str]) -> "SyncParameters":
        return replace(self, entity_filter=frozenset(str(i) for i in ids))

    def with_poll_interval(self, poll_interval_ms: int) -> "SyncParameters":
        return replace(self, poll_interval_ms=poll_interval_ms)

    def matches(self, clickup_id: str) -> bool:
        """Empty filter = every member is monitored."""
        return not self.entity_filter or str(clickup_id) in self.entity_filter
