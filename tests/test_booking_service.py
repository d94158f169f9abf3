from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from app.core.config import Settings
from app.schemas.appointment import NotificationChannel, NotificationStatus
from app.services.booking_errors import (
    CalendarReadError,
    CalendarWriteError,
    InvalidEmail,
    SlotNoLongerAvailable,
    UnknownCounselor,
    UnknownTimeRangeLabel,
)
from app.services.booking_service import BookingService
from app.services.booking_validator import BookingRequest
from app.services.slot_reservation_store import SlotReservationStore
from booking_fakes import FakeCalendar, FakeMailClient, FakeSmsClient, build_settings

KOLKATA = ZoneInfo("Asia/Kolkata")
DAY = date(2026, 10, 20)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 10, 20, hour, minute, tzinfo=KOLKATA)


def _service(
    settings: Settings,
    calendar: FakeCalendar,
    *,
    mail_client: FakeMailClient | None = None,
    sms_client: FakeSmsClient | None = None,
    reservations: SlotReservationStore | None = None,
) -> BookingService:
    return BookingService(
        settings,
        calendar_factory=lambda counselor_id: calendar,
        mail_client=mail_client,
        sms_client=sms_client,
        reservations=reservations or SlotReservationStore(),
    )


def _booking(**overrides: object) -> BookingRequest:
    values: dict[str, object] = {
        "start_time": _at(9, 30),
        "end_time": _at(10, 30),
        "counselor_id": "counselor1",
        "user_email": "alice@example.com",
        "user_name": "Alice",
    }
    values.update(overrides)
    return BookingRequest(**values)  # type: ignore[arg-type]


def test_check_available_slots_excludes_busy_times(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    fake_calendar.add_busy("2026-10-20T10:00:00+05:30", "2026-10-20T10:30:00+05:30")
    service = _service(settings, fake_calendar)

    result = service.check_available_slots(DAY, "Morning", "counselor1")

    assert result.available_slots == ["09:00", "09:30", "10:30", "11:00", "11:30"]
    assert result.booked_slots == ["10:00 - 10:30"]
    assert result.time_range == "morning"
    assert fake_calendar.list_calls == [(_at(9), _at(12))]


def test_check_available_slots_is_idempotent(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    fake_calendar.add_busy("2026-10-20T13:00:00+05:30", "2026-10-20T14:00:00+05:30")
    service = _service(settings, fake_calendar)

    first = service.check_available_slots(DAY, "afternoon", "counselor2")
    second = service.check_available_slots(DAY, "afternoon", "counselor2")

    assert first == second
    assert fake_calendar.created == []


def test_check_available_slots_rejects_unknown_counselor_before_reading_calendar(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    service = _service(settings, fake_calendar)

    with pytest.raises(UnknownCounselor):
        service.check_available_slots(DAY, "morning", "counselor9")
    with pytest.raises(UnknownTimeRangeLabel):
        service.check_available_slots(DAY, "night", "counselor1")
    assert fake_calendar.list_calls == []


def test_check_available_slots_surfaces_calendar_read_failure(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    fake_calendar.fail_reads = True
    service = _service(settings, fake_calendar)

    with pytest.raises(CalendarReadError) as exc_info:
        service.check_available_slots(DAY, "morning", "counselor1")

    assert "HTTP 500" in str(exc_info.value)


def test_book_appointment_creates_event_and_blocks_the_slot(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    service = _service(settings, fake_calendar)

    confirmation = service.book_appointment(_booking())

    assert confirmation.event_id == "event-1"
    assert confirmation.meet_link == "https://meet.google.com/event-1"
    assert confirmation.start_time == _at(9, 30)
    assert fake_calendar.created[0]["start"] == {
        "dateTime": "2026-10-20T09:30:00+05:30",
        "timeZone": "Asia/Kolkata",
    }

    availability = service.check_available_slots(DAY, "morning", "counselor1")
    assert "09:30" not in availability.available_slots
    assert "10:00" not in availability.available_slots
    assert "10:30" in availability.available_slots

    with pytest.raises(SlotNoLongerAvailable):
        service.book_appointment(_booking(start_time=_at(10), end_time=_at(11)))
    assert len(fake_calendar.created) == 1


def test_book_appointment_with_invalid_email_never_touches_calendar(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    service = _service(settings, fake_calendar)

    with pytest.raises(InvalidEmail):
        service.book_appointment(_booking(user_email="not-an-email"))

    assert fake_calendar.list_calls == []
    assert fake_calendar.created == []


def test_book_appointment_loses_to_an_in_flight_reservation(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    reservations = SlotReservationStore()
    held = reservations.acquire("counselor1", _at(10), _at(11))
    assert held is not None
    service = _service(settings, fake_calendar, reservations=reservations)

    with pytest.raises(SlotNoLongerAvailable):
        service.book_appointment(_booking())

    assert fake_calendar.created == []
    assert reservations.active_count() == 1


def test_book_appointment_releases_reservation_after_write_failure(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    reservations = SlotReservationStore()
    fake_calendar.fail_writes = True
    service = _service(settings, fake_calendar, reservations=reservations)

    with pytest.raises(CalendarWriteError):
        service.book_appointment(_booking())

    assert reservations.active_count() == 0


def test_mail_failure_does_not_undo_the_booking(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    service = _service(settings, fake_calendar, mail_client=FakeMailClient(fail=True))

    confirmation = service.book_appointment(_booking())

    assert confirmation.event_id == "event-1"
    assert len(fake_calendar.created) == 1
    email_outcome = confirmation.notifications[0]
    assert email_outcome.channel == NotificationChannel.email
    assert email_outcome.status == NotificationStatus.failed
    assert "connection refused" in (email_outcome.detail or "")


def test_confirmation_email_goes_to_client_and_counselor(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    mail_client = FakeMailClient()
    service = _service(settings, fake_calendar, mail_client=mail_client)

    confirmation = service.book_appointment(_booking())

    assert confirmation.notifications[0].status == NotificationStatus.sent
    assert mail_client.sent[0]["to"] == ["alice@example.com", "counselor1@example.com"]
    assert mail_client.sent[0]["subject"] == "Appointment Confirmation"
    assert "https://meet.google.com/event-1" in mail_client.sent[0]["body"]
    assert "09:30 to 10:30" in mail_client.sent[0]["body"]


def test_notifications_are_skipped_when_not_configured(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    service = _service(settings, fake_calendar)

    confirmation = service.book_appointment(_booking())

    assert [outcome.status for outcome in confirmation.notifications] == [
        NotificationStatus.skipped,
        NotificationStatus.skipped,
    ]


def test_sms_goes_to_counselor_phone_when_configured(fake_calendar: FakeCalendar) -> None:
    settings = build_settings(
        counselor_directory={
            "counselor1": {"email": "counselor1@example.com", "phone": "+15550001111"},
        },
    )
    sms_client = FakeSmsClient()
    service = _service(settings, fake_calendar, sms_client=sms_client)

    confirmation = service.book_appointment(_booking())

    assert confirmation.notifications[1].status == NotificationStatus.sent
    assert sms_client.sent == [
        {
            "to": "+15550001111",
            "body": "New appointment with Alice on 2026-10-20 from 09:30 to 10:30.",
        },
    ]


def test_sms_failure_is_reported_not_raised(fake_calendar: FakeCalendar) -> None:
    settings = build_settings(
        counselor_directory={"counselor1": {"phone": "+15550001111"}},
    )
    service = _service(settings, fake_calendar, sms_client=FakeSmsClient(fail=True))

    confirmation = service.book_appointment(_booking())

    assert confirmation.notifications[1].status == NotificationStatus.failed
    assert len(fake_calendar.created) == 1


def test_naive_booking_times_are_taken_as_local(
    settings: Settings,
    fake_calendar: FakeCalendar,
) -> None:
    service = _service(settings, fake_calendar)

    confirmation = service.book_appointment(
        _booking(
            start_time=datetime(2026, 10, 20, 15, 0),
            end_time=datetime(2026, 10, 20, 15, 0) + timedelta(hours=1),
        ),
    )

    assert confirmation.start_time == _at(15)
    assert confirmation.end_time == _at(16)
