# Streaming adapter for Anthropic's native Messages API.
# Date: 2025-10-02
# Version: 0.1.0

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from arcchat.models.common import CompletionOptions, Message, ToolCall
from arcchat.models.streaming import ChunkEvent, DoneEvent, ErrorEvent, StreamEvent, Usage
from arcchat.services.base_adapter import StreamingAdapter
from arcchat.services.sse import SSEFrame

ANTHROPIC_API_VERSION = "2023-06-01"


def to_anthropic_tools(openai_tools: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    """
    Converts OpenAI-shaped tool definitions
    ({type: 'function', function: {name, description, parameters}})
    to Anthropic's {name, description, input_schema}.
    """
    if not openai_tools:
        return None
    return [
        {
            "name": tool["function"]["name"],
            "description": tool["function"].get("description", ""),
            "input_schema": tool["function"].get("parameters") or {"type": "object", "properties": {}},
        }
        for tool in openai_tools
    ]


def to_anthropic_messages(messages: List[Message]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """
    Converts an OpenAI-shaped message list to Anthropic's envelope.

    - `system` messages move to the top-level `system` field.
    - `tool` messages become user messages carrying `tool_result` blocks;
      consecutive results are grouped into one user message.
    - An assistant message with `tool_calls` becomes `text` + `tool_use` blocks.
    """
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for message in messages:
        if message.role == "system":
            if message.content:
                system_parts.append(message.content)
            continue

        if message.role == "tool":
            block = {"type": "tool_result", "tool_use_id": message.tool_call_id, "content": message.content or ""}
            previous = converted[-1] if converted else None
            if previous and previous["role"] == "user" and isinstance(previous["content"], list) \
                    and all(item.get("type") == "tool_result" for item in previous["content"]):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if message.role == "assistant" and message.tool_calls:
            content: List[Dict[str, Any]] = []
            if message.content:
                content.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                try:
                    arguments = json.loads(call.arguments) if call.arguments else {}
                except ValueError:
                    arguments = {}
                content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": arguments})
            converted.append({"role": "assistant", "content": content})
            continue

        converted.append({"role": message.role, "content": message.content or ""})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


class _ToolUseBlock(BaseModel):
    id: str
    name: str
    json_buffer: str = ""


class _AnthropicStreamState(BaseModel):
    blocks: Dict[int, _ToolUseBlock] = Field(default_factory=dict)
    tool_calls: Dict[int, ToolCall] = Field(default_factory=dict)
    next_output_index: int = 0
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class AnthropicAdapter(StreamingAdapter):
    """
    Speaks `POST <base>/messages` with `stream: true`.

    Each `data:` line is preceded by an `event:` line naming its type. Tool
    use is tracked per content block: `content_block_start` captures the
    block's id and name, `content_block_delta` appends text (emitted at
    once) or partial JSON (buffered), and `content_block_stop` freezes a
    tool-use block into the next sequential output slot. `message_stop`
    ends the stream even if the body has not been fully read.
    """
    name = "anthropic-native"
    auth_failure_message = "Anthropic API key authentication failed. Please check your key is valid."
    auth_hints = ("authentication_error",)

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "anthropic-dangerous-direct-browser-access": "true",
            **self.extra_headers,
        }

    def build_body(self, messages: List[Message], options: CompletionOptions) -> Dict[str, Any]:
        system, anthropic_messages = to_anthropic_messages(messages)
        body: Dict[str, Any] = {
            "model": options.model,
            "max_tokens": options.max_tokens,
            "stream": True,
            "messages": anthropic_messages,
        }
        if system:
            body["system"] = system
        if options.temperature is not None:
            body["temperature"] = options.temperature
        tools = to_anthropic_tools(options.tools)
        if tools:
            body["tools"] = tools
            body["tool_choice"] = {"type": "auto"}
        return body

    def fallback_error_message(self, status: int) -> str:
        return f"Anthropic API request failed ({status})"

    def new_state(self) -> _AnthropicStreamState:
        return _AnthropicStreamState()

    def finish(self, state: _AnthropicStreamState, cancelled: bool = False) -> DoneEvent:
        usage = None
        if state.input_tokens is not None or state.output_tokens is not None:
            total = (state.input_tokens or 0) + (state.output_tokens or 0)
            usage = Usage(prompt_tokens=state.input_tokens, completion_tokens=state.output_tokens, total_tokens=total)
        return DoneEvent(tool_calls=state.tool_calls, usage=usage, cancelled=cancelled)

    def handle_frame(self, frame: SSEFrame, state: _AnthropicStreamState) -> List[StreamEvent]:
        if frame.data.strip() == "[DONE]":
            return [self.finish(state)]

        parsed = self.decode_json(frame)
        if parsed is None:
            return []

        event_type = frame.event or parsed.get("type")

        if event_type == "content_block_start":
            block = parsed.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.blocks[parsed.get("index")] = _ToolUseBlock(id=block.get("id", ""), name=block.get("name", ""))
            return []

        if event_type == "content_block_delta":
            delta = parsed.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                return [ChunkEvent(text=delta["text"])]
            if delta.get("type") == "input_json_delta" and delta.get("partial_json"):
                block = state.blocks.get(parsed.get("index"))
                if block is not None:
                    block.json_buffer += delta["partial_json"]
            return []

        if event_type == "content_block_stop":
            block = state.blocks.pop(parsed.get("index"), None)
            if block is not None:
                state.tool_calls[state.next_output_index] = ToolCall(
                    id=block.id, name=block.name, arguments=block.json_buffer,
                )
                state.next_output_index += 1
            return []

        if event_type == "message_start":
            usage = (parsed.get("message") or {}).get("usage") or {}
            if usage.get("input_tokens") is not None:
                state.input_tokens = usage["input_tokens"]
            return []

        if event_type == "message_delta":
            usage = parsed.get("usage") or {}
            if usage.get("output_tokens") is not None:
                state.output_tokens = usage["output_tokens"]
            return []

        if event_type == "message_stop":
            return [self.finish(state)]

        if event_type == "error":
            error = parsed.get("error") or {}
            message = error.get("message") or "Unknown streaming error"
            return [ErrorEvent(error_kind="stream", message=f"Stream error: {message}")]

        # ping and unknown event types
        return []
