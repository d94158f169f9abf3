from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
import threading
from uuid import uuid4

from app.services.availability_models import BusyInterval, overlaps


@dataclass(frozen=True)
class SlotReservation:
    reservation_id: str
    counselor_id: str
    start: datetime
    end: datetime
    expires_at: datetime


class SlotReservationStore:
    """Short-lived in-process holds on (counselor, interval) during a booking round trip.

    The calendar has no conditional create, so two bookings for the same
    counselor and overlapping times are serialized here; the loser sees the
    slot as taken.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.ttl = ttl
        self._clock = clock or (lambda: datetime.now(UTC))
        self._reservations: dict[str, SlotReservation] = {}
        self._lock = threading.Lock()

    def acquire(self, counselor_id: str, start: datetime, end: datetime) -> SlotReservation | None:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            for reservation in self._reservations.values():
                if reservation.counselor_id != counselor_id:
                    continue
                if overlaps(reservation, BusyInterval(start=start, end=end)):
                    return None
            reservation = SlotReservation(
                reservation_id=uuid4().hex,
                counselor_id=counselor_id,
                start=start,
                end=end,
                expires_at=now + self.ttl,
            )
            self._reservations[reservation.reservation_id] = reservation
            return reservation

    def release(self, reservation: SlotReservation) -> None:
        with self._lock:
            self._reservations.pop(reservation.reservation_id, None)

    def active_count(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._reservations)

    def _purge_expired(self, now: datetime) -> None:
        expired_ids = [
            reservation_id
            for reservation_id, reservation in self._reservations.items()
            if reservation.expires_at <= now
        ]
        for reservation_id in expired_ids:
            del self._reservations[reservation_id]


@lru_cache
def get_slot_reservation_store(ttl_seconds: int = 60) -> SlotReservationStore:
    return SlotReservationStore(ttl=timedelta(seconds=max(ttl_seconds, 1)))


def clear_slot_reservation_store_cache() -> None:
    get_slot_reservation_store.cache_clear()
