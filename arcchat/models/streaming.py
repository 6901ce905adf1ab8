# Events produced by the streaming protocol adapters.
# Date: 2025-10-02
# Version: 0.1.0

from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional, Union

from arcchat.models.common import ToolCall


class Usage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class ChunkEvent(BaseModel):
    """A text delta, emitted as soon as it is decoded."""
    kind: Literal["chunk"] = "chunk"
    text: str


class DoneEvent(BaseModel):
    """
    Successful end of a stream. `tool_calls` is keyed by output index and
    may be empty. Cancellation also ends with a DoneEvent.
    """
    kind: Literal["done"] = "done"
    tool_calls: Dict[int, ToolCall] = Field(default_factory=dict)
    usage: Optional[Usage] = None
    cancelled: bool = False

    def ordered_tool_calls(self) -> List[ToolCall]:
        return [self.tool_calls[index] for index in sorted(self.tool_calls)]


ErrorKind = Literal["auth", "network", "http", "stream"]


class ErrorEvent(BaseModel):
    """Failed end of a stream, carrying a user-readable message."""
    kind: Literal["error"] = "error"
    error_kind: ErrorKind
    message: str
    status: Optional[int] = None


StreamEvent = Union[ChunkEvent, DoneEvent, ErrorEvent]
