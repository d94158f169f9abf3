from fastapi import APIRouter, HTTPException, Response, status

from app.core.config import get_settings
from app.schemas.conversation import (
    ConversationMessageRequest,
    ConversationSessionState,
    ConversationStartRequest,
    ConversationTurnResponse,
)
from app.services.conversation_models import ConversationTurn
from app.services.conversation_service import ConversationService

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationTurnResponse, status_code=status.HTTP_201_CREATED)
def start_conversation(payload: ConversationStartRequest | None = None) -> ConversationTurnResponse:
    payload = payload or ConversationStartRequest()
    service = ConversationService(get_settings())
    turn = service.start_session(
        session_id=payload.session_id,
        user_email=payload.user_email,
        selected_date=payload.selected_date,
    )
    return _to_response(turn)


@router.post("/{session_id}/messages", response_model=ConversationTurnResponse)
def send_message(session_id: str, payload: ConversationMessageRequest) -> ConversationTurnResponse:
    service = ConversationService(get_settings())
    turn = service.handle_message(
        session_id,
        payload.message,
        user_email=payload.user_email,
        selected_date=payload.selected_date,
    )
    return _to_response(turn)


@router.get("/{session_id}", response_model=ConversationSessionState)
def get_conversation(session_id: str) -> ConversationSessionState:
    service = ConversationService(get_settings())
    session = service.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation session not found or expired.",
        )
    return ConversationSessionState.from_session(session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def end_conversation(session_id: str) -> Response:
    service = ConversationService(get_settings())
    if not service.end_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation session not found or expired.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _to_response(turn: ConversationTurn) -> ConversationTurnResponse:
    return ConversationTurnResponse(
        session=ConversationSessionState.from_session(turn.session),
        replies=turn.replies,
        side_effects=turn.side_effects,
    )
