class BookingError(Exception):
    code = "booking_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BookingValidationError(BookingError):
    code = "validation_error"


class InvalidEmail(BookingValidationError):
    code = "invalid_email"


class UnknownCounselor(BookingValidationError):
    code = "unknown_counselor"


class UnknownTimeRangeLabel(BookingValidationError):
    code = "unknown_time_range_label"


class InvalidTimeRange(BookingValidationError):
    code = "invalid_time_range"


class SlotNoLongerAvailable(BookingValidationError):
    code = "slot_no_longer_available"


class CollaboratorError(BookingError):
    """A call to the calendar, mail or SMS provider failed; ``reason`` keeps the provider's message."""

    code = "collaborator_error"

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason

    def __str__(self) -> str:
        if self.reason:
            return f"{self.message} ({self.reason})"
        return self.message


class CalendarReadError(CollaboratorError):
    code = "calendar_read_error"


class CalendarWriteError(CollaboratorError):
    code = "calendar_write_error"


class MailError(CollaboratorError):
    code = "mail_error"


class SmsError(CollaboratorError):
    code = "sms_error"
