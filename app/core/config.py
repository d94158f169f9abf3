from functools import lru_cache
from typing import Annotated

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_TIME_RANGE_PERIODS = {
    "morning": ("09:00", "12:00"),
    "afternoon": ("12:00", "17:00"),
    "evening": ("17:00", "21:00"),
}


class CounselorProfile(BaseModel):
    calendar_id: str = "primary"
    email: str = ""
    phone: str = ""
    refresh_token: str = ""
    access_token: str = ""


class Settings(BaseSettings):
    app_name: str = "Counselor Booking API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    appointment_timezone: str = "Asia/Kolkata"
    slot_length_minutes: int = 30
    appointment_duration_minutes: int = 60
    time_range_periods: Annotated[dict[str, tuple[str, str]], NoDecode] = dict(
        DEFAULT_TIME_RANGE_PERIODS,
    )
    appointment_summary: str = "Appointment"
    counselor_directory: dict[str, CounselorProfile] = {}

    google_calendar_client_id: str = ""
    google_calendar_client_secret: str = ""
    google_calendar_oauth_token_url: str = "https://oauth2.googleapis.com/token"
    google_calendar_api_base_url: str = "https://www.googleapis.com/calendar/v3"
    google_calendar_api_timeout_seconds: float = 10.0
    google_calendar_create_meet_link: bool = True

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_timeout_seconds: float = 10.0

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"
    twilio_api_timeout_seconds: float = 10.0

    conversation_session_store: str = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "counselor_booking"
    mongodb_conversation_sessions_collection: str = "conversation_sessions"
    mongodb_connect_timeout_ms: int = 2000
    conversation_session_ttl_minutes: int = 30
    slot_reservation_ttl_seconds: int = 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def known_counselors(self) -> list[str]:
        return list(self.counselor_directory)

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_from_email)

    @property
    def sms_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("time_range_periods", mode="before")
    @classmethod
    def parse_time_range_periods(
        cls,
        value: str | dict[str, tuple[str, str]],
    ) -> dict[str, tuple[str, str]]:
        # "morning=09:00-12:00,afternoon=12:00-17:00"
        if not isinstance(value, str):
            return {str(label).strip().lower(): bounds for label, bounds in value.items()}
        periods: dict[str, tuple[str, str]] = {}
        for raw_part in value.split(","):
            if "=" not in raw_part:
                continue
            label, bounds = raw_part.split("=", maxsplit=1)
            if "-" not in bounds:
                raise ValueError(f"Invalid time range bounds for {label.strip()!r}.")
            start, end = bounds.split("-", maxsplit=1)
            periods[label.strip().lower()] = (start.strip(), end.strip())
        if not periods:
            return dict(DEFAULT_TIME_RANGE_PERIODS)
        return periods

    @field_validator("conversation_session_store", mode="before")
    @classmethod
    def normalize_conversation_session_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("google_calendar_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_google_calendar_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("slot_length_minutes", mode="before")
    @classmethod
    def normalize_slot_length(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 30
        return parsed_value

    @field_validator("appointment_duration_minutes", mode="before")
    @classmethod
    def normalize_appointment_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60
        return parsed_value

    @field_validator("conversation_session_ttl_minutes", mode="before")
    @classmethod
    def normalize_session_ttl(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 30
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
