# Detects tool invocations in model output and normalizes them to one shape.
# Date: 2025-10-02
# Version: 0.1.0

import json
import re
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Tuple

from arcchat.models.common import ToolCall
from arcchat.utils.logger import console

_TOOL_CALL_TAG = re.compile(r"<tool_call>\s*([\s\S]*?)\s*</tool_call>")
_ACTION_BLOCK = re.compile(r"```action\s*\n([\s\S]*?)\n```")
_INLINE_TOOL_START = '{"tool"'


class ExtractedCall(BaseModel):
    """A tool invocation found in the response, with decoded arguments."""
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None
    raw: Optional[str] = None
    error: Optional[str] = None


class Extraction(BaseModel):
    """
    Result of inspecting one finalized response.
    `source` is "text" when a text syntax matched (the turn ends after
    executing), "structured" for protocol-level tool calls (the loop may
    continue), and "none" otherwise.
    """
    source: Literal["text", "structured", "none"] = "none"
    calls: List[ExtractedCall] = Field(default_factory=list)
    tool_calls: List[ToolCall] = Field(default_factory=list)
    display_text: str = ""


def parse_tool_call_tags(text: str) -> List[ExtractedCall]:
    """
    Parses `<tool_call>{"name": ..., "arguments": ...}</tool_call>` tags.
    `arguments` may be an object or a JSON-encoded string.
    """
    calls: List[ExtractedCall] = []
    for match in _TOOL_CALL_TAG.finditer(text):
        try:
            parsed = json.loads(match.group(1).strip())
        except ValueError as e:
            console.warning(f"Failed to parse <tool_call> tag: {e}")
            continue
        if not isinstance(parsed, dict) or not isinstance(parsed.get("name"), str):
            continue
        arguments = parsed.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except ValueError:
                arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        calls.append(ExtractedCall(name=parsed["name"], arguments=arguments, raw=match.group(0)))
    return calls


def strip_tool_call_tags(text: str) -> str:
    return _TOOL_CALL_TAG.sub("", text).strip()


def _find_tool_json_spans(text: str) -> List[Tuple[int, int]]:
    """
    Locates balanced JSON objects starting with `{"tool"`. Brace depth is
    counted outside string literals only, honouring backslash escapes.
    """
    spans: List[Tuple[int, int]] = []
    position = 0
    while position < len(text):
        start = text.find(_INLINE_TOOL_START, position)
        if start == -1:
            break

        depth, end = 0, -1
        in_string, escaped = False, False
        for index in range(start, len(text)):
            char = text[index]
            if escaped:
                escaped = False
                continue
            if char == "\\" and in_string:
                escaped = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = index + 1
                    break

        if end > start:
            spans.append((start, end))
            position = end
        else:
            position = start + 1
    return spans


def parse_inline_tool_json(text: str) -> List[ExtractedCall]:
    """Parses bare `{"tool": "name", ...args}` objects written as plain text."""
    calls: List[ExtractedCall] = []
    for start, end in _find_tool_json_spans(text):
        raw = text[start:end]
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            console.warning(f"Failed to parse inline tool JSON {raw[:100]!r}: {e}")
            continue
        name = parsed.pop("tool", None)
        if isinstance(name, str):
            calls.append(ExtractedCall(name=name, arguments=parsed, raw=raw))
    return calls


def strip_inline_tool_json(text: str) -> str:
    result = text
    # back to front so earlier offsets stay valid
    for start, end in reversed(_find_tool_json_spans(text)):
        result = result[:start] + result[end:]
    return result.strip()


def parse_action_blocks(text: str) -> List[ExtractedCall]:
    """
    Parses fenced ```action blocks holding one action object or an array of
    them, each naming its handler under `type`. Unparseable blocks are
    returned with `error` set so they can be reported as failed actions.
    """
    calls: List[ExtractedCall] = []
    for match in _ACTION_BLOCK.finditer(text):
        try:
            parsed = json.loads(match.group(1).strip())
        except ValueError as e:
            calls.append(ExtractedCall(name="parse", raw=match.group(0), error=f"Parse error: {e}"))
            continue
        for item in parsed if isinstance(parsed, list) else [parsed]:
            if not isinstance(item, dict):
                continue
            arguments = dict(item)
            name = arguments.pop("type", None)
            calls.append(ExtractedCall(name=str(name), arguments=arguments, raw=match.group(0)))
    return calls


def strip_action_blocks(text: str) -> str:
    return _ACTION_BLOCK.sub("", text).strip()


def strip_text_tool_syntax(text: str) -> str:
    """Removes every text-level tool syntax from text shown to the user."""
    return strip_inline_tool_json(strip_tool_call_tags(strip_action_blocks(text)))


def decode_arguments(call: ToolCall) -> Dict[str, Any]:
    """
    Decodes a finalized structured call's arguments. An empty string means
    no arguments.

    Raises:
        ValueError: If the arguments are not a JSON object.
    """
    if not call.arguments.strip():
        return {}
    arguments = json.loads(call.arguments)
    if not isinstance(arguments, dict):
        raise ValueError("Tool arguments must be a JSON object.")
    return arguments


def extract_tool_calls(text: str, structured: Optional[List[ToolCall]] = None,
                       include_action_blocks: bool = False) -> Extraction:
    """
    Runs the detection strategies in order over one finalized response:

    1. `<tool_call>` tags,
    2. bare inline `{"tool": ...}` JSON,
    3. the adapter's structured tool calls.

    If either text strategy matches, its calls win and structured calls are
    ignored for this turn. Fenced action blocks are included among the text
    strategies when `include_action_blocks` is set.
    """
    text = text or ""
    text_calls: List[ExtractedCall] = []
    remaining = text

    if include_action_blocks:
        text_calls.extend(parse_action_blocks(remaining))
        remaining = strip_action_blocks(remaining)

    tag_calls = parse_tool_call_tags(remaining)
    text_calls.extend(tag_calls)
    remaining = strip_tool_call_tags(remaining)

    text_calls.extend(parse_inline_tool_json(remaining))

    if text_calls:
        return Extraction(source="text", calls=text_calls, display_text=strip_text_tool_syntax(text))

    display_text = text.strip()
    if structured:
        return Extraction(source="structured", tool_calls=list(structured), display_text=display_text)
    return Extraction(source="none", display_text=display_text)


_JSON_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _repair_json(text: str) -> str:
    return _CONTROL_CHARS.sub("", _TRAILING_COMMA.sub(r"\1", text))


def _close_truncated_json(text: str) -> str:
    """Closes JSON cut off mid-way, e.g. when the model ran out of tokens."""
    text = text.rstrip()
    if text.count('"') % 2:
        text = re.sub(r'"[^"]*$', '""', text)
    text = re.sub(r",\s*$", "", text)
    brackets = text.count("[") - text.count("]")
    braces = text.count("{") - text.count("}")
    return text + "]" * max(brackets, 0) + "}" * max(braces, 0)


def parse_json_response(text: str) -> Any:
    """
    Parses JSON out of a model reply that may wrap it in a code fence or
    prose, contain trailing commas, or be truncated.

    Raises:
        ValueError: If no repair attempt yields valid JSON.
    """
    fence = _JSON_FENCE.search(text)
    if fence:
        candidate = fence.group(1).strip()
    else:
        candidate = text.strip()
        first = candidate.find("{")
        if first > 0:
            candidate = candidate[first:]
        last = candidate.rfind("}")
        if 0 < last < len(candidate) - 1:
            candidate = candidate[:last + 1]

    error: Optional[ValueError] = None
    for attempt in (candidate, _repair_json(candidate), _repair_json(_close_truncated_json(candidate))):
        try:
            return json.loads(attempt)
        except ValueError as e:
            error = e
    raise ValueError(f"Failed to parse LLM response as JSON: {error}")
