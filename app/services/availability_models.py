from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
import re
from typing import Any, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.services.booking_errors import UnknownTimeRangeLabel

_CLOCK_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class Interval(Protocol):
    @property
    def start(self) -> datetime: ...

    @property
    def end(self) -> datetime: ...


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    label: str | None = None

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("TimeWindow start must be before end.")


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("BusyInterval start must be before end.")


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    @property
    def label(self) -> str:
        return format_time(self.start)


def overlaps(candidate: Interval, busy: Interval) -> bool:
    """Half-open overlap test: ``[a.start, a.end)`` against ``[b.start, b.end)``.

    Intervals that only touch at an edge do not overlap, so a slot ending at
    10:00 is free next to a meeting starting at 10:00.
    """
    return candidate.start < busy.end and candidate.end > busy.start


def overlaps_any(candidate: Interval, busy: Iterable[Interval]) -> bool:
    return any(overlaps(candidate, interval) for interval in busy)


def generate_slots(
    window: TimeWindow,
    busy: Sequence[Interval],
    slot_length: timedelta,
) -> list[Slot]:
    """Return the free fixed-length slots of ``window``, in order.

    Steps from ``window.start`` by ``slot_length`` and keeps every candidate
    ``[t, t + slot_length)`` that overlaps none of ``busy``. A candidate that
    would run past ``window.end`` is not offered.
    """
    if slot_length <= timedelta(0):
        raise ValueError("slot_length must be positive.")

    slots: list[Slot] = []
    current = window.start
    while current + slot_length <= window.end:
        candidate = Slot(start=current, end=current + slot_length)
        if not overlaps_any(candidate, busy):
            slots.append(candidate)
        current += slot_length
    return slots


def format_time(value: datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def format_time_range(interval: Interval, tz: tzinfo | None = None) -> str:
    start = interval.start.astimezone(tz) if tz else interval.start
    end = interval.end.astimezone(tz) if tz else interval.end
    return f"{format_time(start)} - {format_time(end)}"


def parse_clock_time(raw_value: str) -> time | None:
    match = _CLOCK_TIME_PATTERN.match(raw_value.strip())
    if not match:
        return None
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}.") from exc


def normalize_time_range_label(raw_label: str, periods: Mapping[str, tuple[str, str]]) -> str:
    label = raw_label.strip().lower()
    if label not in periods:
        raise UnknownTimeRangeLabel(
            f"Unknown time range {raw_label!r}. Expected one of: {', '.join(periods)}.",
        )
    return label


def build_time_window(
    day: date,
    label: str,
    *,
    tz: tzinfo,
    periods: Mapping[str, tuple[str, str]],
) -> TimeWindow:
    normalized_label = normalize_time_range_label(label, periods)
    raw_start, raw_end = periods[normalized_label]
    start_clock = parse_clock_time(raw_start)
    end_clock = parse_clock_time(raw_end)
    if start_clock is None or end_clock is None:
        raise ValueError(f"Invalid period bounds for {normalized_label!r}: {raw_start}-{raw_end}.")
    return TimeWindow(
        start=datetime.combine(day, start_clock, tzinfo=tz),
        end=datetime.combine(day, end_clock, tzinfo=tz),
        label=normalized_label,
    )


def busy_intervals_from_events(
    events: Iterable[Mapping[str, Any]],
    default_tz: tzinfo,
) -> list[BusyInterval]:
    """Convert calendar event payloads to busy intervals sorted by start.

    Only events with concrete ``dateTime`` bounds block time; all-day entries
    and cancelled events are skipped.
    """
    intervals: list[BusyInterval] = []
    for event in events:
        if event.get("status") == "cancelled":
            continue
        start = _parse_event_datetime(event.get("start"), default_tz)
        end = _parse_event_datetime(event.get("end"), default_tz)
        if start is None or end is None or start >= end:
            continue
        intervals.append(BusyInterval(start=start, end=end))
    intervals.sort(key=lambda interval: (interval.start, interval.end))
    return intervals


def _parse_event_datetime(raw_bound: Any, default_tz: tzinfo) -> datetime | None:
    if not isinstance(raw_bound, Mapping):
        return None
    raw_value = raw_bound.get("dateTime")
    if not isinstance(raw_value, str) or not raw_value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(raw_value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=default_tz)
    return parsed
