from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.core.config import get_settings
from app.services.availability_models import resolve_timezone


class NotificationChannel(StrEnum):
    email = "email"
    sms = "sms"


class NotificationStatus(StrEnum):
    sent = "sent"
    failed = "failed"
    skipped = "skipped"


class AvailableSlotsRequest(BaseModel):
    date: date
    time_range: str = Field(validation_alias=AliasChoices("time_range", "timeRange"))
    counselor: str

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        # The chat widget sends the picked day as an ISO timestamp (local midnight in UTC).
        if not isinstance(value, str) or "T" not in value:
            return value
        try:
            moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return value
        if moment.tzinfo is None:
            return moment.date()
        zone = resolve_timezone(get_settings().appointment_timezone)
        return moment.astimezone(zone).date()


class AvailableSlotsResponse(BaseModel):
    date: date
    time_range: str = Field(serialization_alias="timeRange")
    counselor: str
    available_slots: list[str] = Field(default_factory=list, serialization_alias="availableSlots")
    booked_slots: list[str] = Field(default_factory=list, serialization_alias="bookedSlots")


class BookAppointmentRequest(BaseModel):
    start_time: datetime = Field(validation_alias=AliasChoices("start_time", "startTime"))
    end_time: datetime = Field(validation_alias=AliasChoices("end_time", "endTime"))
    counselor: str
    user_email: str = Field(validation_alias=AliasChoices("user_email", "userEmail"))
    user_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("user_name", "userName"),
    )


class NotificationOutcome(BaseModel):
    channel: NotificationChannel
    status: NotificationStatus
    detail: str | None = None


class BookAppointmentResponse(BaseModel):
    message: str = "Appointment booked successfully"
    event_id: str
    counselor: str
    start_time: datetime
    end_time: datetime
    meet_link: str | None = None
    notifications: list[NotificationOutcome] = Field(default_factory=list)


class CounselorsResponse(BaseModel):
    counselors: list[str] = Field(default_factory=list)
