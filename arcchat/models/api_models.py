# The module is to define the API models for the application.
# Date: 2025-10-02
# Version: 0.2.0

from pydantic import BaseModel, Field
from typing import List, Optional

from arcchat.core.providers import ModelInfo
from arcchat.models.common import ActionResult, ChatMessage, StorySettings
from arcchat.models.streaming import Usage

class ChatRequest(BaseModel):
    """
    Defines the request body for the /v1/chat endpoints.
    Attributes:
        session_id (str): The unique ID for the conversation session.
        user_input (str): The user's text input.
        provider (Optional[str]): Provider id overriding the configured active provider.
    """
    session_id: str = Field(..., description="The unique ID for the conversation session.")
    user_input: str = Field(..., min_length=1, description="The user's text input.")
    provider: Optional[str] = Field(default=None, description="Provider id overriding the active provider.")

class ChatResponse(BaseModel):
    """
    Defines the response body for the /v1/chat endpoint: the finalized
    assistant message of one turn and the actions it ran.
    """
    session_id: str
    role: str
    content: str
    actions: List[ActionResult] = Field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False
    iterations: int = 0
    usage: Optional[Usage] = None

class CancelResponse(BaseModel):
    session_id: str
    cancelled: bool

class NewSessionResponse(BaseModel):
    """
    Defines the response body for the /v1/session/new endpoint.
    Attributes:
        session_id (str): The unique ID for the newly created conversation session.
        message (str): A message indicating the session has been created successfully.
    """
    session_id: str
    message: str

class SessionStateResponse(BaseModel):
    session_id: str
    streaming: bool
    settings: StorySettings
    messages: List[ChatMessage]

class ProviderSummary(BaseModel):
    id: str
    name: str
    protocol: str
    default_model: str
    configured: bool

class ModelListResponse(BaseModel):
    provider: str
    models: List[ModelInfo]
