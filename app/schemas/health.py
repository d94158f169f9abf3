from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    timestamp: datetime
    timezone: str
    counselors_configured: int
    email_enabled: bool
    sms_enabled: bool
