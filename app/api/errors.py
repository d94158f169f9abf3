from fastapi import HTTPException, status

from app.services.booking_errors import (
    BookingError,
    CollaboratorError,
    SlotNoLongerAvailable,
    UnknownCounselor,
)


def to_http_exception(exc: BookingError) -> HTTPException:
    detail: dict[str, str] = {"code": exc.code, "message": exc.message}
    if isinstance(exc, CollaboratorError):
        if exc.reason:
            detail["reason"] = exc.reason
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
    if isinstance(exc, UnknownCounselor):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(exc, SlotNoLongerAvailable):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
