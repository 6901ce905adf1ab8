# Streaming adapter for the OpenAI-compatible chat/completions dialect.
# Date: 2025-10-02
# Version: 0.1.0

import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from arcchat.models.common import CompletionOptions, Message, ToolCall
from arcchat.models.streaming import ChunkEvent, DoneEvent, ErrorEvent, StreamEvent, Usage
from arcchat.services.base_adapter import StreamingAdapter
from arcchat.services.sse import SSEFrame

DONE_SENTINEL = "[DONE]"

# o1..o9 and gpt-5..gpt-9, optionally behind an "openai/" prefix
_MAX_COMPLETION_TOKENS_PATTERN = re.compile(r"^(openai/)?(o[1-9]|gpt-[5-9])")


def uses_max_completion_tokens(model_id: Optional[str]) -> bool:
    """Newer OpenAI models reject `max_tokens` and expect `max_completion_tokens`."""
    if not model_id:
        return False
    return bool(_MAX_COMPLETION_TOKENS_PATTERN.match(model_id.lower()))


class _OpenAIStreamState(BaseModel):
    tool_calls: Dict[int, ToolCall] = Field(default_factory=dict)
    usage: Optional[Usage] = None


class OpenAICompatAdapter(StreamingAdapter):
    """
    Speaks `POST <base>/chat/completions` with `stream: true`.

    Each data line is a JSON chunk. Tool calls arrive split by a positional
    `index` inside `choices[0].delta.tool_calls`; fragments are merged per
    index: the first non-empty `id` wins, `function.name` and
    `function.arguments` are concatenated. The stream ends with the literal
    payload `[DONE]`.
    """
    name = "openai-compat"
    auth_failure_message = "API key authentication failed. Please check your key is valid and has credits remaining."
    auth_hints = ("auth", "clerk")

    def __init__(self, url: str, extra_headers: Optional[Dict[str, str]] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 120.0,
                 include_usage: bool = False):
        super().__init__(url, extra_headers=extra_headers, client=client, timeout=timeout)
        self.include_usage = include_usage

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", **self.extra_headers}

    def build_body(self, messages: List[Message], options: CompletionOptions) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": options.model,
            "stream": True,
            "messages": [message.to_openai() for message in messages],
        }
        if self.include_usage:
            body["stream_options"] = {"include_usage": True}
        if uses_max_completion_tokens(options.model):
            body["max_completion_tokens"] = options.max_tokens
        else:
            body["max_tokens"] = options.max_tokens
        if options.tools:
            body["tools"] = options.tools
            body["tool_choice"] = "auto"
        if options.temperature is not None:
            body["temperature"] = options.temperature
        return body

    def request_error(self, exc: httpx.RequestError) -> ErrorEvent:
        return ErrorEvent(
            error_kind="network",
            message="Could not reach the API. Check your internet connection and try again.",
        )

    def stream_error(self, exc: Exception) -> ErrorEvent:
        if isinstance(exc, httpx.TransportError):
            return ErrorEvent(
                error_kind="stream",
                message=(
                    "Connection lost mid-response. This can happen when the output is very long "
                    "or the context is too large. Try again, or reduce context size."
                ),
            )
        return super().stream_error(exc)

    def new_state(self) -> _OpenAIStreamState:
        return _OpenAIStreamState()

    def finish(self, state: _OpenAIStreamState, cancelled: bool = False) -> DoneEvent:
        return DoneEvent(tool_calls=state.tool_calls, usage=state.usage, cancelled=cancelled)

    def handle_frame(self, frame: SSEFrame, state: _OpenAIStreamState) -> List[StreamEvent]:
        if frame.data.strip() == DONE_SENTINEL:
            return [self.finish(state)]

        parsed = self.decode_json(frame)
        if parsed is None:
            return []

        usage = parsed.get("usage")
        if isinstance(usage, dict):
            state.usage = Usage(
                prompt_tokens=usage.get("prompt_tokens"),
                completion_tokens=usage.get("completion_tokens"),
                total_tokens=usage.get("total_tokens"),
            )

        choices = parsed.get("choices") or []
        delta = choices[0].get("delta") if choices and isinstance(choices[0], dict) else None
        if not isinstance(delta, dict):
            return []

        events: List[StreamEvent] = []
        if delta.get("content"):
            events.append(ChunkEvent(text=delta["content"]))

        for fragment in delta.get("tool_calls") or []:
            self._merge_tool_call(state, fragment)
        return events

    @staticmethod
    def _merge_tool_call(state: _OpenAIStreamState, fragment: Any):
        if not isinstance(fragment, dict):
            return
        index = fragment.get("index", 0)
        call = state.tool_calls.setdefault(index, ToolCall())
        if fragment.get("id") and not call.id:
            call.id = fragment["id"]
        function = fragment.get("function") or {}
        if function.get("name"):
            call.name += function["name"]
        if function.get("arguments"):
            call.arguments += function["arguments"]
