# The module is to define the common models for the application.
# Date: 2025-10-02
# Version: 0.2.0

import time
from uuid import uuid4
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Literal

Role = Literal["system", "user", "assistant", "tool"]


class ToolCall(BaseModel):
    """
    Represents a tool call requested by the assistant.
    While a response is streaming, `id` and `name` may be known before
    `arguments` is complete; `arguments` is only valid JSON once the call
    is finalized.
    Attributes:
        id (str): The unique ID for the tool call.
        name (str): The name of the requested action.
        arguments (str): The JSON-encoded arguments.
        type (str): The type of the tool call, always 'function'.
    """
    id: str = Field(default="", description="The unique ID for the tool call.")
    name: str = Field(default="", description="The name of the requested action.")
    arguments: str = Field(default="", description="The JSON-encoded arguments.")
    type: str = Field(default="function", description="The type of the tool call, e.g., 'function'.")

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }


class Message(BaseModel):
    """
    Represents a message sent to the model.
    A `tool` message carries exactly one `tool_call_id` that refers to a
    tool call issued by an earlier `assistant` message; a `system` message,
    if present, is the first one.
    Attributes:
        role (Role): The role of the message sender (system, user, assistant, or tool).
        content (Optional[str]): The content of the message.
        tool_calls (Optional[List[ToolCall]]): A list of tool calls requested by the assistant.
        tool_call_id (Optional[str]): The ID of the tool call this message is a result of.
    """
    role: Role = Field(..., description="The role of the message sender.")
    content: Optional[str] = Field(default=None, description="The content of the message.")
    tool_calls: Optional[List[ToolCall]] = Field(default=None, description="A list of tool calls requested by the assistant.")
    tool_call_id: Optional[str] = Field(default=None, description="The ID of the tool call this message is a result of.")

    def to_openai(self) -> Dict[str, Any]:
        """Returns the message in the OpenAI chat/completions wire shape."""
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload


class ActionResult(BaseModel):
    """
    The outcome of one executed tool call, shown to the end user and
    serialized back to the model as a `tool` message.
    """
    success: bool
    type: str
    description: Optional[str] = None
    error: Optional[str] = None


class CompletionOptions(BaseModel):
    """
    Per-request options shared by both protocol adapters.
    `tools` is only sent when the target model supports tool use.
    """
    model: Optional[str] = None
    max_tokens: int = 4096
    temperature: Optional[float] = None
    tools: Optional[List[Dict[str, Any]]] = None


class StorySettings(BaseModel):
    """The story configuration the built-in actions read and change."""
    genre: Optional[str] = None
    subgenre: Optional[str] = None
    modifier: Optional[str] = None
    pacing: Optional[str] = None


class ChatMessage(BaseModel):
    """A message in the user-visible conversation history."""
    id: str = Field(default_factory=lambda: f"msg_{uuid4().hex[:12]}")
    role: Literal["user", "assistant"]
    content: str
    timestamp: float = Field(default_factory=time.time)
    actions: List[ActionResult] = Field(default_factory=list)


class Conversation(BaseModel):
    """
    Represents a complete conversation session: the user-visible history
    and the application state the actions operate on.
    """
    session_id: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list, description="The user-visible history of the conversation.")
    settings: StorySettings = Field(default_factory=StorySettings, description="Story settings changed by actions.")

    def recent_messages(self, max_chars: int) -> List[ChatMessage]:
        """
        Returns the newest messages whose combined content fits in
        `max_chars`, always keeping at least the most recent one.
        """
        total = 0
        result: List[ChatMessage] = []
        for message in reversed(self.messages):
            length = len(message.content or "")
            if total + length > max_chars and result:
                break
            total += length
            result.insert(0, message)
        return result
