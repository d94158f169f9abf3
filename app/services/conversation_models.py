from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any


class ConversationStage(StrEnum):
    awaiting_name = "awaiting_name"
    awaiting_counselor = "awaiting_counselor"
    awaiting_time_window = "awaiting_time_window"
    awaiting_slot_choice = "awaiting_slot_choice"
    completed = "completed"


class SideEffect(StrEnum):
    check_available_slots = "check_available_slots"
    book_appointment = "book_appointment"


@dataclass(frozen=True)
class ConversationSession:
    session_id: str
    selected_date: date
    stage: ConversationStage = ConversationStage.awaiting_name
    user_name: str | None = None
    counselor_id: str | None = None
    time_window_label: str | None = None
    candidate_slots: tuple[str, ...] = ()
    user_email: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def evolve(self, **changes: Any) -> ConversationSession:
        return replace(self, **changes)

    def reset(self) -> ConversationSession:
        """Back to the first question; the client's email and chosen date survive."""
        return replace(
            self,
            stage=ConversationStage.awaiting_name,
            user_name=None,
            counselor_id=None,
            time_window_label=None,
            candidate_slots=(),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "stage": self.stage.value,
            "user_name": self.user_name,
            "counselor_id": self.counselor_id,
            "time_window_label": self.time_window_label,
            "selected_date": self.selected_date.isoformat(),
            "candidate_slots": list(self.candidate_slots),
            "user_email": self.user_email,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> ConversationSession:
        raw_slots = record.get("candidate_slots") or []
        return cls(
            session_id=str(record["session_id"]),
            stage=ConversationStage(record.get("stage") or ConversationStage.awaiting_name),
            user_name=record.get("user_name"),
            counselor_id=record.get("counselor_id"),
            time_window_label=record.get("time_window_label"),
            selected_date=date.fromisoformat(str(record["selected_date"])),
            candidate_slots=tuple(str(slot) for slot in raw_slots),
            user_email=record.get("user_email"),
            created_at=_as_aware(record.get("created_at")),
            updated_at=_as_aware(record.get("updated_at")),
        )


@dataclass(frozen=True)
class ConversationTurn:
    session: ConversationSession
    replies: list[str] = field(default_factory=list)
    side_effects: list[SideEffect] = field(default_factory=list)


def _as_aware(value: Any) -> datetime:
    # MongoDB hands datetimes back naive (UTC).
    if not isinstance(value, datetime):
        return datetime.now(UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
