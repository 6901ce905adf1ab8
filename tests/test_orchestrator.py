import asyncio
import json

import pytest

from arcchat.core.config import get_settings
from arcchat.core.errors import SessionBusyError
from arcchat.core.orchestrator import (
    TRUNCATION_MARKER, AgenticLoop, build_system_prompt, run_conversation_step, serialize_action_result,
    truncate_result,
)
from arcchat.core.tool_registry import ToolRegistry
from arcchat.models.common import ActionResult, CompletionOptions, Conversation, Message, ToolCall
from arcchat.models.streaming import ChunkEvent, DoneEvent, ErrorEvent, Usage
from arcchat.services.session_manager import session_manager
from arcchat.tools.base_tool import BaseTool
from arcchat.tools.set_genre_tool import SetGenreTool, SetSubgenreTool
from arcchat.tools.story_settings_tool import GetGenreConfigTool, SetPacingTool


class ScriptedStream:
    """Replays one scripted list of events per completion request; the last script repeats."""

    def __init__(self, *turns):
        self.turns = turns
        self.requests = []

    async def __call__(self, messages, options, cancel):
        self.requests.append((list(messages), options))
        for event in self.turns[min(len(self.requests), len(self.turns)) - 1]:
            yield event


def structured(*calls, text=None):
    events = [ChunkEvent(text=text)] if text else []
    events.append(DoneEvent(tool_calls={index: call for index, call in enumerate(calls)}))
    return events


def said(*texts):
    return [ChunkEvent(text=text) for text in texts] + [DoneEvent()]


class BigOutputTool(BaseTool):
    name = "dumpLog"
    description = "Returns a very large result."

    async def execute(self, conversation, **kwargs):
        return "x" * 7000


class ExplodingTool(BaseTool):
    name = "explode"
    description = "Always fails."

    async def execute(self, conversation, **kwargs):
        raise RuntimeError("kaboom")


@pytest.fixture
def registry():
    registry = ToolRegistry(discover=False)
    for tool in (SetGenreTool(), SetSubgenreTool(), SetPacingTool(), GetGenreConfigTool(), BigOutputTool(),
                 ExplodingTool()):
        registry.register(tool)
    return registry


@pytest.fixture
def conversation():
    return Conversation(session_id="loop-test")


async def run_loop(stream, registry, conversation, native=True, cancel=None, on_chunk=None):
    loop = AgenticLoop(stream, registry=registry)
    messages = [Message(role="system", content="sys"), Message(role="user", content="hi")]
    return await loop.run(conversation, messages, CompletionOptions(model="m"), use_native_tools=native,
                          cancel=cancel, on_chunk=on_chunk)


async def test_plain_answer_is_one_request(registry, conversation):
    stream = ScriptedStream(said("Hel", "lo"))
    chunks = []
    outcome = await run_loop(stream, registry, conversation, on_chunk=chunks.append)

    assert outcome.message.content == "Hello"
    assert outcome.actions == []
    assert outcome.iterations == 1
    assert outcome.error is None
    assert chunks == ["Hel", "lo"]
    assert len(stream.requests) == 1
    assert {t["function"]["name"] for t in stream.requests[0][1].tools} == {
        "setGenre", "setPacing", "getGenreConfig", "dumpLog", "explode"}


async def test_structured_call_is_fed_back_and_model_is_asked_again(registry, conversation):
    call = ToolCall(id="call_1", name="setGenre", arguments='{"genre": "noir"}')
    stream = ScriptedStream(structured(call, text="Switching."), said("Now it is noir."))
    outcome = await run_loop(stream, registry, conversation)

    assert len(stream.requests) == 2
    second_messages = stream.requests[1][0]
    assistant, tool = second_messages[-2], second_messages[-1]
    assert assistant.role == "assistant"
    assert assistant.content == "Switching."
    assert [c.id for c in assistant.tool_calls] == ["call_1"]
    assert tool.role == "tool"
    assert tool.tool_call_id == "call_1"
    assert "Changed genre to noir" in tool.content
    assert json.loads(tool.content) == {"success": True, "description": "Changed genre to noir"}

    assert conversation.settings.genre == "noir"
    assert outcome.message.content == "Switching.\n\nNow it is noir."
    assert [(a.type, a.success) for a in outcome.actions] == [("setGenre", True)]
    assert outcome.message.actions == outcome.actions


async def test_text_syntax_calls_end_the_turn(registry, conversation):
    text = 'Done! <tool_call>{"name": "setGenre", "arguments": {"genre": "romance"}}</tool_call>'
    ignored = ToolCall(id="c9", name="setPacing", arguments='{"pacing": "fast"}')
    stream = ScriptedStream([ChunkEvent(text=text), DoneEvent(tool_calls={0: ignored})], said("never requested"))
    outcome = await run_loop(stream, registry, conversation)

    assert len(stream.requests) == 1
    assert conversation.settings.genre == "romance"
    assert conversation.settings.pacing is None
    assert outcome.message.content == "Done!"
    assert [a.description for a in outcome.actions] == ["Changed genre to romance"]


async def test_iteration_cap_stops_a_model_that_keeps_calling_tools(registry, conversation):
    stream = ScriptedStream(structured(ToolCall(id="c", name="getGenreConfig", arguments="")))
    outcome = await run_loop(stream, registry, conversation)

    assert len(stream.requests) == 5
    assert outcome.iterations == 5
    assert len(outcome.actions) == 5
    assert outcome.error is None


async def test_large_results_are_truncated(registry, conversation):
    stream = ScriptedStream(structured(ToolCall(id="c1", name="dumpLog")), said("ok"))
    await run_loop(stream, registry, conversation)

    tool_message = stream.requests[1][0][-1]
    assert tool_message.content.endswith(TRUNCATION_MARKER)
    assert len(tool_message.content) == 6000 + len(TRUNCATION_MARKER)


async def test_failures_are_reported_and_remaining_calls_still_run(registry, conversation):
    stream = ScriptedStream(structured(
        ToolCall(id="a", name="launchRocket"),
        ToolCall(id="b", name="explode"),
        ToolCall(id="c", name="setGenre", arguments="{oops"),
        ToolCall(id="d", name="setPacing", arguments='{"pacing": "slow"}'),
    ), said("Handled."))
    outcome = await run_loop(stream, registry, conversation)

    assert [(a.type, a.success) for a in outcome.actions] == [
        ("launchRocket", False), ("explode", False), ("setGenre", False), ("setPacing", True)]
    assert outcome.actions[0].error == "Unknown action: launchRocket"
    assert outcome.actions[1].error == "kaboom"
    assert outcome.actions[2].error.startswith("Invalid tool arguments")
    assert conversation.settings.pacing == "slow"

    tool_messages = [m for m in stream.requests[1][0] if m.role == "tool"]
    assert [m.tool_call_id for m in tool_messages] == ["a", "b", "c", "d"]
    assert json.loads(tool_messages[0].content) == {"success": False, "error": "Unknown action: launchRocket"}
    assert outcome.error is None


async def test_missing_call_ids_are_generated(registry, conversation):
    stream = ScriptedStream(structured(ToolCall(name="getGenreConfig"), ToolCall(name="getGenreConfig")), said("ok"))
    await run_loop(stream, registry, conversation)

    tool_ids = [m.tool_call_id for m in stream.requests[1][0] if m.role == "tool"]
    assert tool_ids == ["call_1_0", "call_1_1"]


async def test_error_event_finalizes_with_error(registry, conversation):
    stream = ScriptedStream([ChunkEvent(text="partial"), ErrorEvent(error_kind="stream", message="Stream error: x")])
    outcome = await run_loop(stream, registry, conversation)

    assert outcome.error == "Stream error: x"
    assert outcome.message.content == "partial"
    assert outcome.iterations == 1


async def test_error_after_tool_turn_keeps_text_from_every_turn(registry, conversation):
    stream = ScriptedStream(
        structured(ToolCall(id="c1", name="getGenreConfig"), text="Working."),
        [ChunkEvent(text="half"), ErrorEvent(error_kind="stream", message="Connection lost mid-response: reset")],
    )
    outcome = await run_loop(stream, registry, conversation)

    assert outcome.error == "Connection lost mid-response: reset"
    assert outcome.message.content == "Working.\n\nhalf"
    assert outcome.iterations == 2


async def test_calls_in_one_response_run_in_order_and_see_earlier_effects(registry, conversation):
    stream = ScriptedStream(structured(
        ToolCall(id="a", name="setGenre", arguments='{"genre": "mystery"}'),
        ToolCall(id="b", name="setSubgenre", arguments='{"subgenre": "cozy"}'),
    ), said("Done."))
    outcome = await run_loop(stream, registry, conversation)

    assert [(a.type, a.success) for a in outcome.actions] == [("setGenre", True), ("setSubgenre", True)]
    assert conversation.settings.genre == "mystery"
    assert conversation.settings.subgenre == "cozy"
    tool_messages = [m for m in stream.requests[1][0] if m.role == "tool"]
    assert [m.tool_call_id for m in tool_messages] == ["a", "b"]


async def test_cancelled_response_does_not_execute_partial_calls(registry, conversation):
    partial = ToolCall(id="c1", name="setGenre", arguments='{"genre": "no')
    stream = ScriptedStream([ChunkEvent(text="Switch"), DoneEvent(tool_calls={0: partial}, cancelled=True)])
    outcome = await run_loop(stream, registry, conversation)

    assert outcome.cancelled is True
    assert outcome.actions == []
    assert outcome.error is None
    assert outcome.message.content == "Switch"
    assert conversation.settings.genre is None


async def test_cancel_before_first_request(registry, conversation):
    cancel = asyncio.Event()
    cancel.set()
    stream = ScriptedStream(said("never"))
    outcome = await run_loop(stream, registry, conversation, cancel=cancel)

    assert stream.requests == []
    assert outcome.cancelled is True
    assert outcome.iterations == 0


async def test_prompt_mode_runs_action_blocks(registry, conversation):
    text = 'Setting it.\n```action\n[{"type": "setGenre", "genre": "horror"}, {"type": "setPacing", "pacing": "fast"}]\n```'
    stream = ScriptedStream(said(text))
    outcome = await run_loop(stream, registry, conversation, native=False)

    assert len(stream.requests) == 1
    assert stream.requests[0][1].tools is None
    assert conversation.settings.genre == "horror"
    assert conversation.settings.pacing == "fast"
    assert outcome.message.content == "Setting it."


async def test_usage_and_async_chunk_callback(registry, conversation):
    received = []

    async def on_chunk(text):
        received.append(text)

    usage = Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)
    stream = ScriptedStream([ChunkEvent(text="hi"), DoneEvent(usage=usage)])
    outcome = await run_loop(stream, registry, conversation, on_chunk=on_chunk)

    assert received == ["hi"]
    assert outcome.usage == usage


def test_truncate_and_serialize():
    assert truncate_result("abc", 3) == "abc"
    assert truncate_result("abcd", 3) == "abc" + TRUNCATION_MARKER
    failed = ActionResult(success=False, type="x", error="bad")
    assert json.loads(serialize_action_result(failed, 100)) == {"success": False, "error": "bad"}


def test_system_prompts(registry):
    conversation = Conversation()
    conversation.settings.genre = "noir"
    native = build_system_prompt(conversation, True, registry)
    prompt_mode = build_system_prompt(conversation, False, registry)

    assert '"genre": "noir"' in native
    assert "```action" not in native
    assert "```action" in prompt_mode
    assert "`setGenre`" in prompt_mode


async def test_conversation_step_records_history(registry):
    stream = ScriptedStream(structured(ToolCall(id="c1", name="setGenre", arguments='{"genre": "noir"}')),
                            said("It is noir now."))
    outcome = await run_conversation_step("s1", "make it noir", stream=stream, registry=registry)

    conversation = session_manager.get_conversation("s1")
    assert [(m.role, m.content) for m in conversation.messages] == [
        ("user", "make it noir"), ("assistant", "It is noir now.")]
    assert conversation.messages[1].actions == outcome.actions
    assert not session_manager.is_streaming("s1")

    first_messages, options = stream.requests[0]
    assert first_messages[0].role == "system"
    assert first_messages[-1].content == "make it noir"
    assert options.model == "anthropic/claude-sonnet-4-5-20250929"
    assert options.tools


async def test_conversation_step_sends_prior_history(registry):
    await run_conversation_step("s2", "first", stream=ScriptedStream(said("one")), registry=registry)
    stream = ScriptedStream(said("two"))
    await run_conversation_step("s2", "second", stream=stream, registry=registry)

    sent = [(m.role, m.content) for m in stream.requests[0][0][1:]]
    assert sent == [("user", "first"), ("assistant", "one"), ("user", "second")]


async def test_conversation_step_uses_prompt_mode_without_tool_support(monkeypatch, registry):
    monkeypatch.setenv("PERPLEXITY_API_KEY", "pplx-test")
    get_settings.cache_clear()
    stream = ScriptedStream(said("hi"))
    await run_conversation_step("s3", "hello", provider_id="perplexity", stream=stream, registry=registry)

    messages, options = stream.requests[0]
    assert options.tools is None
    assert "```action" in messages[0].content


async def test_conversation_step_rejects_concurrent_turn(registry):
    session_manager.begin_turn("busy")
    with pytest.raises(SessionBusyError):
        await run_conversation_step("busy", "hello", stream=ScriptedStream(said("x")), registry=registry)
    # the guard belongs to the first turn
    assert session_manager.is_streaming("busy")
