from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta
import logging
from typing import Any, Protocol

from app.core.config import Settings, get_settings
from app.schemas.appointment import (
    AvailableSlotsResponse,
    BookAppointmentResponse,
    NotificationChannel,
    NotificationOutcome,
    NotificationStatus,
)
from app.services.availability_models import (
    BusyInterval,
    build_time_window,
    busy_intervals_from_events,
    format_time,
    format_time_range,
    generate_slots,
    resolve_timezone,
)
from app.services.booking_errors import (
    CalendarReadError,
    CalendarWriteError,
    MailError,
    SlotNoLongerAvailable,
    SmsError,
    UnknownCounselor,
)
from app.services.booking_validator import (
    BookingRequest,
    CalendarEventPayload,
    validate_booking,
    validate_booking_request,
)
from app.services.counselor_credentials import create_credential_provider
from app.services.google_calendar_client import GoogleCalendarClient, GoogleCalendarError
from app.services.slot_reservation_store import SlotReservationStore, get_slot_reservation_store
from app.services.smtp_mail_client import SmtpMailClient, SmtpMailError
from app.services.twilio_sms_client import TwilioSmsClient, TwilioSmsError

logger = logging.getLogger(__name__)


class CalendarGateway(Protocol):
    def list_events(self, *, time_min: datetime, time_max: datetime) -> list[dict[str, Any]]: ...

    def create_event(self, event_payload: dict[str, Any]) -> dict[str, str | None]: ...


class MailGateway(Protocol):
    def send_mail(self, *, to: list[str], subject: str, body: str) -> list[str]: ...


class SmsGateway(Protocol):
    def send_sms(self, *, to: str, body: str) -> str: ...


class BookingService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        calendar_factory: Callable[[str], CalendarGateway] | None = None,
        mail_client: MailGateway | None = None,
        sms_client: SmsGateway | None = None,
        reservations: SlotReservationStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.tz = resolve_timezone(self.settings.appointment_timezone)
        self.calendar_factory = calendar_factory or self._create_calendar_client
        self.mail_client = mail_client if mail_client is not None else self._create_mail_client()
        self.sms_client = sms_client if sms_client is not None else self._create_sms_client()
        self.reservations = reservations or get_slot_reservation_store(
            self.settings.slot_reservation_ttl_seconds,
        )

    @property
    def known_counselors(self) -> list[str]:
        return self.settings.known_counselors

    @property
    def time_range_labels(self) -> list[str]:
        return list(self.settings.time_range_periods)

    def check_available_slots(
        self,
        day: date,
        time_range_label: str,
        counselor_id: str,
    ) -> AvailableSlotsResponse:
        self._require_known_counselor(counselor_id)
        window = build_time_window(
            day,
            time_range_label,
            tz=self.tz,
            periods=self.settings.time_range_periods,
        )
        busy = self.list_busy_intervals(counselor_id, window.start, window.end)
        slots = generate_slots(
            window,
            busy,
            timedelta(minutes=self.settings.slot_length_minutes),
        )
        available_slots = [slot.label for slot in slots]
        booked_slots = [format_time_range(interval, self.tz) for interval in busy]
        logger.info(
            "Availability checked counselor=%s date=%s time_range=%s available=%s booked=%s",
            counselor_id,
            day.isoformat(),
            window.label,
            ", ".join(available_slots),
            ", ".join(booked_slots),
        )
        return AvailableSlotsResponse(
            date=day,
            time_range=window.label or time_range_label,
            counselor=counselor_id,
            available_slots=available_slots,
            booked_slots=booked_slots,
        )

    def list_busy_intervals(
        self,
        counselor_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        calendar = self.calendar_factory(counselor_id)
        try:
            events = calendar.list_events(time_min=time_min, time_max=time_max)
        except GoogleCalendarError as exc:
            logger.warning("Calendar read failed counselor=%s error=%s", counselor_id, exc)
            raise CalendarReadError("Unable to read the counselor's calendar.", reason=str(exc)) from exc
        return busy_intervals_from_events(events, self.tz)

    def book_appointment(self, request: BookingRequest) -> BookAppointmentResponse:
        normalized = validate_booking_request(
            request,
            known_counselors=self.known_counselors,
            tz=self.tz,
        )
        reservation = self.reservations.acquire(
            normalized.counselor_id,
            normalized.start_time,
            normalized.end_time,
        )
        if reservation is None:
            raise SlotNoLongerAvailable("Another booking for this time is in progress.")
        try:
            fresh_busy = self.list_busy_intervals(
                normalized.counselor_id,
                normalized.start_time,
                normalized.end_time,
            )
            event_payload = validate_booking(
                normalized,
                fresh_busy,
                known_counselors=self.known_counselors,
                tz=self.tz,
                time_zone_name=self.settings.appointment_timezone,
                summary=self.settings.appointment_summary,
            )
            event_details = self._create_event(normalized.counselor_id, event_payload)
        finally:
            self.reservations.release(reservation)

        event_id = event_details.get("event_id") or ""
        meet_link = event_details.get("google_meet_link")
        logger.info(
            "Appointment booked counselor=%s event_id=%s start=%s end=%s",
            normalized.counselor_id,
            event_id,
            event_payload.start.isoformat(),
            event_payload.end.isoformat(),
        )
        notifications = [
            self._notify_by_email(normalized, event_payload, meet_link),
            self._notify_by_sms(normalized, event_payload),
        ]
        return BookAppointmentResponse(
            event_id=event_id,
            counselor=normalized.counselor_id,
            start_time=event_payload.start,
            end_time=event_payload.end,
            meet_link=meet_link,
            notifications=notifications,
        )

    def _create_event(
        self,
        counselor_id: str,
        event_payload: CalendarEventPayload,
    ) -> dict[str, str | None]:
        calendar = self.calendar_factory(counselor_id)
        try:
            return calendar.create_event(event_payload.to_google_event())
        except GoogleCalendarError as exc:
            logger.warning("Calendar write failed counselor=%s error=%s", counselor_id, exc)
            raise CalendarWriteError("Unable to create the calendar event.", reason=str(exc)) from exc

    def _notify_by_email(
        self,
        request: BookingRequest,
        event_payload: CalendarEventPayload,
        meet_link: str | None,
    ) -> NotificationOutcome:
        if self.mail_client is None:
            return NotificationOutcome(
                channel=NotificationChannel.email,
                status=NotificationStatus.skipped,
                detail="Email delivery is not configured.",
            )
        recipients = [request.user_email]
        counselor_email = self._counselor_profile_value(request.counselor_id, "email")
        if counselor_email:
            recipients.append(counselor_email)
        try:
            self._send_mail(
                recipients,
                "Appointment Confirmation",
                self._build_confirmation_body(event_payload, meet_link),
            )
        except MailError as exc:
            logger.warning(
                "Confirmation email failed counselor=%s recipients=%s error=%s",
                request.counselor_id,
                ", ".join(recipients),
                exc,
            )
            return NotificationOutcome(
                channel=NotificationChannel.email,
                status=NotificationStatus.failed,
                detail=str(exc),
            )
        return NotificationOutcome(channel=NotificationChannel.email, status=NotificationStatus.sent)

    def _notify_by_sms(
        self,
        request: BookingRequest,
        event_payload: CalendarEventPayload,
    ) -> NotificationOutcome:
        counselor_phone = self._counselor_profile_value(request.counselor_id, "phone")
        if self.sms_client is None or not counselor_phone:
            return NotificationOutcome(
                channel=NotificationChannel.sms,
                status=NotificationStatus.skipped,
                detail="SMS delivery is not configured for this counselor.",
            )
        body = (
            f"New appointment with {request.user_name or request.user_email} on "
            f"{event_payload.start.strftime('%Y-%m-%d')} from "
            f"{format_time(event_payload.start)} to {format_time(event_payload.end)}."
        )
        try:
            self._send_sms(counselor_phone, body)
        except SmsError as exc:
            logger.warning("Counselor SMS failed counselor=%s error=%s", request.counselor_id, exc)
            return NotificationOutcome(
                channel=NotificationChannel.sms,
                status=NotificationStatus.failed,
                detail=str(exc),
            )
        return NotificationOutcome(channel=NotificationChannel.sms, status=NotificationStatus.sent)

    def _send_mail(self, recipients: list[str], subject: str, body: str) -> None:
        try:
            self.mail_client.send_mail(to=recipients, subject=subject, body=body)
        except SmtpMailError as exc:
            raise MailError("Unable to send the confirmation email.", reason=str(exc)) from exc

    def _send_sms(self, phone: str, body: str) -> None:
        try:
            self.sms_client.send_sms(to=phone, body=body)
        except TwilioSmsError as exc:
            raise SmsError("Unable to send the SMS notification.", reason=str(exc)) from exc

    def _build_confirmation_body(
        self,
        event_payload: CalendarEventPayload,
        meet_link: str | None,
    ) -> str:
        lines = [
            "Hello,",
            "",
            (
                "Your appointment has been booked with the counselor on "
                f"{event_payload.start.strftime('%A, %B %d, %Y')} from "
                f"{format_time(event_payload.start)} to {format_time(event_payload.end)} "
                f"({event_payload.time_zone})."
            ),
        ]
        if meet_link:
            lines.append(f"You can join the meeting using the following link: {meet_link}")
        lines.extend(["", "Thank you."])
        return "\n".join(lines)

    def _require_known_counselor(self, counselor_id: str) -> None:
        if counselor_id not in self.known_counselors:
            raise UnknownCounselor(f"Unknown counselor: {counselor_id!r}.")

    def _counselor_profile_value(self, counselor_id: str, field_name: str) -> str:
        profile = self.settings.counselor_directory.get(counselor_id)
        if profile is None:
            return ""
        return getattr(profile, field_name, "").strip()

    def _create_calendar_client(self, counselor_id: str) -> GoogleCalendarClient:
        self._require_known_counselor(counselor_id)
        profile = self.settings.counselor_directory[counselor_id]
        return GoogleCalendarClient(
            counselor_id=counselor_id,
            credentials=create_credential_provider(self.settings),
            calendar_id=profile.calendar_id,
            timeout_seconds=self.settings.google_calendar_api_timeout_seconds,
            create_meet_link=self.settings.google_calendar_create_meet_link,
            api_base_url=self.settings.google_calendar_api_base_url,
        )

    def _create_mail_client(self) -> SmtpMailClient | None:
        if not self.settings.email_enabled:
            return None
        return SmtpMailClient(
            host=self.settings.smtp_host,
            port=self.settings.smtp_port,
            username=self.settings.smtp_user,
            password=self.settings.smtp_password,
            from_email=self.settings.smtp_from_email,
            timeout_seconds=self.settings.smtp_timeout_seconds,
        )

    def _create_sms_client(self) -> TwilioSmsClient | None:
        if not self.settings.sms_enabled:
            return None
        return TwilioSmsClient(
            account_sid=self.settings.twilio_account_sid,
            auth_token=self.settings.twilio_auth_token,
            from_number=self.settings.twilio_from_number,
            timeout_seconds=self.settings.twilio_api_timeout_seconds,
            api_base_url=self.settings.twilio_api_base_url,
        )
