"""
Time window resolution for service locations.

Turns weekly opening hours and date-specific exceptions into a feasibility
window for one date, and schedules arrival/wait/service inside it. A window
is an ordered tuple of disjoint sub-ranges; a lunch break is simply a gap
between two sub-ranges.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, List, Optional, Tuple, Union

MINUTES_PER_DAY = 24 * 60

TimeValue = Union[time, int, None]


@dataclass(frozen=True)
class TimeRange:
    open_minute: int
    close_minute: int

    @property
    def length(self) -> int:
        return self.close_minute - self.open_minute


@dataclass(frozen=True)
class TimeWindow:
    """Feasibility window for one day. No ranges means closed."""

    ranges: Tuple[TimeRange, ...] = ()

    @property
    def is_closed(self) -> bool:
        return not self.ranges

    @property
    def open_minute(self) -> Optional[int]:
        return self.ranges[0].open_minute if self.ranges else None

    @property
    def close_minute(self) -> Optional[int]:
        return self.ranges[-1].close_minute if self.ranges else None

    @classmethod
    def closed(cls) -> "TimeWindow":
        return cls(())

    @classmethod
    def always_open(cls) -> "TimeWindow":
        return cls((TimeRange(0, MINUTES_PER_DAY),))


@dataclass(frozen=True)
class ScheduleResult:
    feasible: bool
    wait_minutes: int
    start_minute: int
    end_minute: int


def to_minutes(value: TimeValue) -> Optional[int]:
    """Convert a time of day (or a minute count) to minutes after midnight."""
    if value is None:
        return None
    if isinstance(value, time):
        return value.hour * 60 + value.minute + round(value.second / 60)
    return int(value)


def build_window(
    is_closed: bool,
    open_time: TimeValue,
    close_time: TimeValue,
    open_time2: TimeValue = None,
    close_time2: TimeValue = None
) -> TimeWindow:
    """
    Build a feasibility window from one or two open/close ranges.

    Missing or inverted first ranges resolve to a closed window. The second
    range is kept only when it is valid on its own and starts at or after the
    first range closes.

    Args:
        is_closed: Explicit closed flag
        open_time: Opening of the first range
        close_time: Closing of the first range
        open_time2: Optional re-opening after a break
        close_time2: Optional closing of the second range

    Returns:
        TimeWindow with zero, one or two ranges
    """
    open_minute = to_minutes(open_time)
    close_minute = to_minutes(close_time)

    if is_closed or open_minute is None or close_minute is None:
        return TimeWindow.closed()
    if open_minute < 0 or close_minute <= open_minute:
        return TimeWindow.closed()

    ranges = [TimeRange(open_minute, close_minute)]

    open_minute2 = to_minutes(open_time2)
    close_minute2 = to_minutes(close_time2)
    if open_minute2 is not None and close_minute2 is not None:
        if open_minute2 >= close_minute and close_minute2 > open_minute2:
            ranges.append(TimeRange(open_minute2, close_minute2))

    return TimeWindow(tuple(ranges))


def _schedule_in_range(time_range: TimeRange, arrival_minute: int, service_minutes: int) -> ScheduleResult:
    wait = max(0, time_range.open_minute - arrival_minute)
    start = arrival_minute + wait
    end = start + service_minutes
    return ScheduleResult(end <= time_range.close_minute, wait, start, end)


def try_schedule(window: TimeWindow, arrival_minute: int, service_minutes: int) -> ScheduleResult:
    """
    Schedule a visit arriving at `arrival_minute` inside the window.

    Sub-ranges are tried in order and the earliest one in which the whole
    service fits (after waiting for it to open) wins.

    Returns:
        ScheduleResult; when infeasible, start/end equal the arrival minute
    """
    for time_range in window.ranges:
        result = _schedule_in_range(time_range, arrival_minute, service_minutes)
        if result.feasible:
            return result

    return ScheduleResult(False, 0, arrival_minute, arrival_minute)


def feasible_ranges(window: TimeWindow, service_minutes: int) -> List[TimeRange]:
    """Sub-ranges long enough to hold the whole service."""
    return [r for r in window.ranges if r.length >= service_minutes]


def day_of_week_index(target_date: date) -> int:
    """0 = Sunday .. 6 = Saturday, the numbering used by opening-hours rows."""
    return (target_date.weekday() + 1) % 7


def resolve_location_window(target_date: date, weekly_hours: Iterable, exceptions: Iterable) -> TimeWindow:
    """
    Resolve a location's window for one date.

    Precedence: an exception for the date replaces everything, then the weekly
    row for that weekday. Without either the location is always open.

    Args:
        target_date: Planning date
        weekly_hours: ServiceLocationOpeningHours-like rows
        exceptions: ServiceLocationException-like rows

    Returns:
        TimeWindow for that date
    """
    for exception in exceptions:
        if exception.date == target_date:
            return build_window(exception.is_closed, exception.open_time, exception.close_time)

    dow = day_of_week_index(target_date)
    for row in weekly_hours:
        if row.day_of_week == dow:
            return build_window(
                row.is_closed,
                row.open_time,
                row.close_time,
                row.open_time2,
                row.close_time2
            )

    return TimeWindow.always_open()
