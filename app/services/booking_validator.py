from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
from datetime import datetime, tzinfo
import re
from typing import Any

from app.services.availability_models import BusyInterval, overlaps
from app.services.booking_errors import (
    InvalidEmail,
    InvalidTimeRange,
    SlotNoLongerAvailable,
    UnknownCounselor,
)

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,6}$")


@dataclass(frozen=True)
class BookingRequest:
    start_time: datetime
    end_time: datetime
    counselor_id: str
    user_email: str
    user_name: str | None = None


@dataclass(frozen=True)
class CalendarEventPayload:
    summary: str
    start: datetime
    end: datetime
    time_zone: str
    description: str | None = None
    attendee_emails: tuple[str, ...] = ()

    def to_google_event(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "summary": self.summary,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.time_zone},
        }
        if self.description:
            payload["description"] = self.description
        if self.attendee_emails:
            payload["attendees"] = [{"email": email} for email in self.attendee_emails]
        return payload


def validate_email(email: str) -> bool:
    return bool(_EMAIL_PATTERN.match(email.strip()))


def validate_booking_request(
    request: BookingRequest,
    *,
    known_counselors: Collection[str],
    tz: tzinfo,
) -> BookingRequest:
    """Run the checks that need no calendar data and return the request in ``tz``."""
    if not validate_email(request.user_email):
        raise InvalidEmail(f"Invalid email format: {request.user_email!r}.")
    if request.counselor_id not in known_counselors:
        raise UnknownCounselor(f"Unknown counselor: {request.counselor_id!r}.")

    start_time = _to_zone(request.start_time, tz)
    end_time = _to_zone(request.end_time, tz)
    if start_time >= end_time:
        raise InvalidTimeRange("Appointment start time must be before its end time.")
    return BookingRequest(
        start_time=start_time,
        end_time=end_time,
        counselor_id=request.counselor_id,
        user_email=request.user_email.strip(),
        user_name=(request.user_name or "").strip() or None,
    )


def validate_booking(
    request: BookingRequest,
    fresh_busy: Sequence[BusyInterval],
    *,
    known_counselors: Collection[str],
    tz: tzinfo,
    time_zone_name: str,
    summary: str = "Appointment",
) -> CalendarEventPayload:
    normalized = validate_booking_request(request, known_counselors=known_counselors, tz=tz)
    candidate = BusyInterval(start=normalized.start_time, end=normalized.end_time)
    for interval in fresh_busy:
        if overlaps(candidate, interval):
            raise SlotNoLongerAvailable(
                "The requested time overlaps an existing calendar event.",
            )

    description = None
    if normalized.user_name:
        description = f"Booked by {normalized.user_name} <{normalized.user_email}>"
    return CalendarEventPayload(
        summary=summary,
        start=normalized.start_time,
        end=normalized.end_time,
        time_zone=time_zone_name,
        description=description,
    )


def _to_zone(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)
