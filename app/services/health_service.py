from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            timestamp=datetime.now(UTC),
            timezone=self.settings.appointment_timezone,
            counselors_configured=len(self.settings.known_counselors),
            email_enabled=self.settings.email_enabled,
            sms_enabled=self.settings.sms_enabled,
        )
