from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from functools import lru_cache
import logging
import threading
from uuid import uuid4
import weakref

from app.core.config import Settings, get_settings
from app.services.availability_models import parse_clock_time
from app.services.booking_errors import (
    BookingValidationError,
    CollaboratorError,
    InvalidEmail,
    SlotNoLongerAvailable,
)
from app.services.booking_service import BookingService
from app.services.booking_validator import BookingRequest, validate_email
from app.services.conversation_models import (
    ConversationSession,
    ConversationStage,
    ConversationTurn,
    SideEffect,
)
from app.services.conversation_session_store import (
    ConversationSessionStore,
    create_conversation_session_store,
)

logger = logging.getLogger(__name__)

GREETING = "Hey! What's your name?"
RESTART_COMMANDS = frozenset({"restart", "start over"})


class ConversationStateMachine:
    """Question sequence of the booking chat: name, counselor, time of day, slot.

    ``advance`` never mutates its input; every turn returns a new session.
    Failures of the calendar or booking call leave the stage where it was so
    the visitor can repeat the same answer.
    """

    def __init__(self, booking_service: BookingService) -> None:
        self.booking_service = booking_service

    def advance(self, session: ConversationSession, utterance: str) -> ConversationTurn:
        message = utterance.strip()
        if message.lower() in RESTART_COMMANDS:
            return ConversationTurn(session=session.reset(), replies=[GREETING])

        handlers = {
            ConversationStage.awaiting_name: self._handle_name,
            ConversationStage.awaiting_counselor: self._handle_counselor,
            ConversationStage.awaiting_time_window: self._handle_time_window,
            ConversationStage.awaiting_slot_choice: self._handle_slot_choice,
        }
        handler = handlers.get(session.stage)
        if handler is None:
            # completed is transient; treat a stored one as a fresh start
            return self._handle_name(session.reset(), message)
        return handler(session, message)

    def _handle_name(self, session: ConversationSession, message: str) -> ConversationTurn:
        if not message:
            return ConversationTurn(session=session, replies=[GREETING])
        counselors = ", ".join(self.booking_service.known_counselors)
        return ConversationTurn(
            session=session.evolve(
                stage=ConversationStage.awaiting_counselor,
                user_name=message,
            ),
            replies=[f"Welcome {message}, we have the following counselors available: {counselors}"],
        )

    def _handle_counselor(self, session: ConversationSession, message: str) -> ConversationTurn:
        counselor_id = self._match_counselor(message)
        if counselor_id is None:
            counselors = ", ".join(self.booking_service.known_counselors)
            return ConversationTurn(
                session=session,
                replies=[
                    f"Sorry, I do not recognize {message}. "
                    f"Please select a counselor from the list: {counselors}",
                ],
            )
        return ConversationTurn(
            session=session.evolve(
                stage=ConversationStage.awaiting_time_window,
                counselor_id=counselor_id,
            ),
            replies=[
                f"Hello, I am {counselor_id}. When do you want to book an appointment? "
                f"{self._describe_time_ranges()}?",
            ],
        )

    def _handle_time_window(self, session: ConversationSession, message: str) -> ConversationTurn:
        label = message.lower()
        if label not in self.booking_service.time_range_labels:
            return ConversationTurn(
                session=session,
                replies=[
                    "Sorry, I do not recognize that time range. "
                    f"Please select {self._list_time_range_labels()}.",
                ],
            )

        side_effects = [SideEffect.check_available_slots]
        try:
            availability = self.booking_service.check_available_slots(
                session.selected_date,
                label,
                session.counselor_id or "",
            )
        except CollaboratorError as exc:
            logger.warning("Slot lookup failed session=%s error=%s", session.session_id, exc)
            return ConversationTurn(
                session=session,
                replies=["Sorry, I am having trouble fetching the available slots."],
                side_effects=side_effects,
            )
        except BookingValidationError as exc:
            return ConversationTurn(session=session, replies=[exc.message], side_effects=side_effects)

        if not availability.available_slots:
            return ConversationTurn(
                session=session,
                replies=[
                    f"Sorry, there are no available slots in the {label} on "
                    f"{session.selected_date.isoformat()}. Please choose another time range.",
                ],
                side_effects=side_effects,
            )
        return ConversationTurn(
            session=session.evolve(
                stage=ConversationStage.awaiting_slot_choice,
                time_window_label=label,
                candidate_slots=tuple(availability.available_slots),
            ),
            replies=[f"Available slots: {', '.join(availability.available_slots)}"],
            side_effects=side_effects,
        )

    def _handle_slot_choice(self, session: ConversationSession, message: str) -> ConversationTurn:
        if validate_email(message):
            return ConversationTurn(
                session=session.evolve(user_email=message),
                replies=[
                    f"Thanks, I will send the confirmation to {message}. "
                    "Which time would you like?",
                ],
            )

        clock_time = parse_clock_time(message)
        chosen = None if clock_time is None else f"{clock_time.hour:02d}:{clock_time.minute:02d}"
        if chosen is None or chosen not in session.candidate_slots:
            return ConversationTurn(
                session=session,
                replies=[
                    "Please reply with one of the available times in HH:MM format: "
                    f"{', '.join(session.candidate_slots)}",
                ],
            )

        start_time = datetime.combine(session.selected_date, clock_time, tzinfo=self.booking_service.tz)
        end_time = start_time + timedelta(
            minutes=self.booking_service.settings.appointment_duration_minutes,
        )
        side_effects = [SideEffect.book_appointment]
        booking_request = BookingRequest(
            start_time=start_time,
            end_time=end_time,
            counselor_id=session.counselor_id or "",
            user_email=session.user_email or "",
            user_name=session.user_name,
        )
        try:
            confirmation = self.booking_service.book_appointment(booking_request)
        except InvalidEmail:
            return ConversationTurn(
                session=session,
                replies=[
                    "I need a valid email address to confirm the booking. "
                    "Please type your email address.",
                ],
                side_effects=side_effects,
            )
        except SlotNoLongerAvailable:
            remaining = tuple(slot for slot in session.candidate_slots if slot != chosen)
            return ConversationTurn(
                session=session.evolve(candidate_slots=remaining),
                replies=[
                    f"Sorry, {chosen} is no longer available. "
                    f"Please choose another slot: {', '.join(remaining)}",
                ],
                side_effects=side_effects,
            )
        except BookingValidationError as exc:
            return ConversationTurn(session=session, replies=[exc.message], side_effects=side_effects)
        except CollaboratorError as exc:
            logger.warning("Booking failed session=%s error=%s", session.session_id, exc)
            return ConversationTurn(
                session=session,
                replies=["Sorry, I am having trouble booking the appointment."],
                side_effects=side_effects,
            )

        replies = ["Thank you! Your appointment has been booked."]
        if confirmation.meet_link:
            replies.append(f"You can join the meeting using this link: {confirmation.meet_link}")
        replies.append(GREETING)
        return ConversationTurn(session=session.reset(), replies=replies, side_effects=side_effects)

    def _match_counselor(self, message: str) -> str | None:
        wanted = message.casefold()
        for counselor_id in self.booking_service.known_counselors:
            if counselor_id.casefold() == wanted:
                return counselor_id
        return None

    def _describe_time_ranges(self) -> str:
        periods = self.booking_service.settings.time_range_periods
        return ", ".join(
            f"{label.capitalize()} ({start}-{end})" for label, (start, end) in periods.items()
        )

    def _list_time_range_labels(self) -> str:
        labels = [label.capitalize() for label in self.booking_service.time_range_labels]
        if len(labels) <= 1:
            return "".join(labels)
        return f"{', '.join(labels[:-1])}, or {labels[-1]}"


class SessionLockRegistry:
    """Per-session locks; an entry lives only while a caller still references its lock."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def discard(self, session_id: str) -> None:
        with self._guard:
            self._locks.pop(session_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@lru_cache
def get_session_lock_registry() -> SessionLockRegistry:
    return SessionLockRegistry()


class ConversationService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        booking_service: BookingService | None = None,
        store: ConversationSessionStore | None = None,
        locks: SessionLockRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.booking_service = booking_service or BookingService(self.settings)
        self.store = store or create_conversation_session_store(self.settings)
        self.locks = locks or get_session_lock_registry()
        self.state_machine = ConversationStateMachine(self.booking_service)
        self._clock = clock or (lambda: datetime.now(UTC))

    def start_session(
        self,
        *,
        session_id: str | None = None,
        user_email: str | None = None,
        selected_date: date | None = None,
    ) -> ConversationTurn:
        session = self._new_session(session_id or uuid4().hex, user_email, selected_date)
        with self.locks.lock_for(session.session_id):
            self.store.save(session)
        logger.info("Conversation started session=%s", session.session_id)
        return ConversationTurn(session=session, replies=[GREETING])

    def handle_message(
        self,
        session_id: str,
        message: str,
        *,
        user_email: str | None = None,
        selected_date: date | None = None,
    ) -> ConversationTurn:
        with self.locks.lock_for(session_id):
            session = self.store.get(session_id)
            if session is None:
                session = self._new_session(session_id, user_email, selected_date)
            if user_email and user_email.strip():
                session = session.evolve(user_email=user_email.strip())
            if selected_date is not None:
                session = session.evolve(selected_date=selected_date)

            turn = self.state_machine.advance(session, message)
            saved_session = turn.session.evolve(updated_at=self._clock())
            self.store.save(saved_session)
        logger.info(
            "Conversation advanced session=%s stage=%s->%s",
            session_id,
            session.stage.value,
            saved_session.stage.value,
        )
        return ConversationTurn(
            session=saved_session,
            replies=turn.replies,
            side_effects=turn.side_effects,
        )

    def get_session(self, session_id: str) -> ConversationSession | None:
        return self.store.get(session_id)

    def end_session(self, session_id: str) -> bool:
        with self.locks.lock_for(session_id):
            deleted = self.store.delete(session_id)
        self.locks.discard(session_id)
        return deleted

    def _new_session(
        self,
        session_id: str,
        user_email: str | None,
        selected_date: date | None,
    ) -> ConversationSession:
        now = self._clock()
        return ConversationSession(
            session_id=session_id,
            selected_date=selected_date or now.astimezone(self.booking_service.tz).date(),
            user_email=(user_email or "").strip() or None,
            created_at=now,
            updated_at=now,
        )
