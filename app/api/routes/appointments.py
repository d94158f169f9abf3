import logging

from fastapi import APIRouter, status

from app.api.errors import to_http_exception
from app.core.config import get_settings
from app.schemas.appointment import (
    AvailableSlotsRequest,
    AvailableSlotsResponse,
    BookAppointmentRequest,
    BookAppointmentResponse,
    CounselorsResponse,
)
from app.services.booking_errors import BookingError
from app.services.booking_service import BookingService
from app.services.booking_validator import BookingRequest

router = APIRouter(tags=["appointments"])
logger = logging.getLogger(__name__)


@router.get("/counselors", response_model=CounselorsResponse)
def list_counselors() -> CounselorsResponse:
    return CounselorsResponse(counselors=get_settings().known_counselors)


@router.post(
    "/appointments/available-slots",
    response_model=AvailableSlotsResponse,
    response_model_by_alias=False,
)
# The chat widget reads camelCase keys (availableSlots, bookedSlots).
@router.post("/check-available-slots", response_model=AvailableSlotsResponse, include_in_schema=False)
def check_available_slots(payload: AvailableSlotsRequest) -> AvailableSlotsResponse:
    service = BookingService(get_settings())
    try:
        return service.check_available_slots(payload.date, payload.time_range, payload.counselor)
    except BookingError as exc:
        logger.warning(
            "Availability check rejected counselor=%s code=%s detail=%s",
            payload.counselor,
            exc.code,
            exc,
        )
        raise to_http_exception(exc) from exc


@router.post(
    "/appointments",
    response_model=BookAppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
@router.post(
    "/book-appointment",
    response_model=BookAppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False,
)
def book_appointment(payload: BookAppointmentRequest) -> BookAppointmentResponse:
    service = BookingService(get_settings())
    try:
        return service.book_appointment(
            BookingRequest(
                start_time=payload.start_time,
                end_time=payload.end_time,
                counselor_id=payload.counselor,
                user_email=payload.user_email,
                user_name=payload.user_name,
            ),
        )
    except BookingError as exc:
        logger.warning(
            "Booking rejected counselor=%s code=%s detail=%s",
            payload.counselor,
            exc.code,
            exc,
        )
        raise to_http_exception(exc) from exc
