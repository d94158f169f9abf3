from datetime import date, datetime

from pydantic import AliasChoices, BaseModel, Field

from app.services.conversation_models import ConversationSession, ConversationStage, SideEffect


class ConversationStartRequest(BaseModel):
    session_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    user_email: str | None = Field(
        default=None,
        validation_alias=AliasChoices("user_email", "userEmail"),
    )
    selected_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("selected_date", "date"),
    )


class ConversationMessageRequest(BaseModel):
    message: str
    user_email: str | None = Field(
        default=None,
        validation_alias=AliasChoices("user_email", "userEmail"),
    )
    selected_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("selected_date", "date"),
    )


class ConversationSessionState(BaseModel):
    session_id: str
    stage: ConversationStage
    user_name: str | None = None
    counselor_id: str | None = None
    time_window_label: str | None = None
    selected_date: date
    candidate_slots: list[str] = Field(default_factory=list)
    user_email: str | None = None
    updated_at: datetime

    @classmethod
    def from_session(cls, session: ConversationSession) -> "ConversationSessionState":
        return cls(
            session_id=session.session_id,
            stage=session.stage,
            user_name=session.user_name,
            counselor_id=session.counselor_id,
            time_window_label=session.time_window_label,
            selected_date=session.selected_date,
            candidate_slots=list(session.candidate_slots),
            user_email=session.user_email,
            updated_at=session.updated_at,
        )


class ConversationTurnResponse(BaseModel):
    session: ConversationSessionState
    replies: list[str] = Field(default_factory=list)
    side_effects: list[SideEffect] = Field(default_factory=list)
