# The module is to define the API endpoints for session management.
# Date: 2025-10-02
# Version: 0.2.0

from fastapi import APIRouter
from arcchat.services.session_manager import session_manager
from arcchat.models.api_models import NewSessionResponse, SessionStateResponse

router = APIRouter()

@router.post("/new",
          response_model=NewSessionResponse)
def create_new_session():
    """
    Initializes a new session and returns a unique session ID.
    """
    session_id = session_manager.new_session()
    return NewSessionResponse(
        session_id=session_id,
        message="New session created successfully."
    )

@router.get("/{session_id}",
         response_model=SessionStateResponse)
def get_session(session_id: str):
    """
    Returns the session's history, story settings and whether a turn is streaming.
    """
    conversation = session_manager.get_conversation(session_id)
    return SessionStateResponse(
        session_id=session_id,
        streaming=session_manager.is_streaming(session_id),
        settings=conversation.settings,
        messages=conversation.messages,
    )
