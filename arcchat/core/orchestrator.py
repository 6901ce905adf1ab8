# The agentic loop: one bounded multi-turn tool cycle per user message.
# Date: 2025-10-02
# Version: 4.0.0

import asyncio
import inspect
import json
from typing import Any, AsyncIterator, Callable, List, Optional, Union

from pydantic import BaseModel, Field

from arcchat.core.config import get_settings
from arcchat.core.providers import model_supports_tools
from arcchat.core.tool_extractor import ExtractedCall, decode_arguments, extract_tool_calls
from arcchat.core.tool_registry import ToolRegistry, tool_registry
from arcchat.models.common import ActionResult, ChatMessage, CompletionOptions, Conversation, Message, ToolCall
from arcchat.models.streaming import DoneEvent, ErrorEvent, StreamEvent, Usage
from arcchat.services.llm_connector import ActiveProvider, get_active_provider, stream_completion
from arcchat.services.session_manager import session_manager
from arcchat.utils.logger import console

TRUNCATION_MARKER = "\n...[truncated]"

SYSTEM_PROMPT = """You are a story-development assistant. You help the user shape the genre, pacing and structure of their story.

Current story settings:
{story_settings}

When a request requires changing or reading the story settings, call the matching tool. After the tools have run you will see their results; explain briefly what changed.
"""

PROMPT_MODE_SYSTEM_PROMPT = """You are a story-development assistant. You help the user shape the genre, pacing and structure of their story.

Current story settings:
{story_settings}

To change the story settings, add a fenced block to your reply:

```action
{{"type": "<action name>", ...arguments}}
```

A block may also hold a JSON array of such objects. Available actions:
{tool_definitions}
"""

CompletionStream = Callable[[List[Message], CompletionOptions, Optional[asyncio.Event]], AsyncIterator[StreamEvent]]
ChunkCallback = Callable[[str], Any]


class AgenticSession(BaseModel):
    """Loop-local state for one user turn. Discarded once finalized."""
    iteration: int = 0
    accumulated_text: List[str] = Field(default_factory=list)
    current_text: str = ""
    action_results: List[ActionResult] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)
    usage: Optional[Usage] = None

    def accumulate(self, text: str):
        if text:
            self.accumulated_text.append(text)


class TurnOutcome(BaseModel):
    """The finalized result of one user turn."""
    message: ChatMessage
    actions: List[ActionResult] = Field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False
    iterations: int = 0
    usage: Optional[Usage] = None
    messages: List[Message] = Field(default_factory=list)


def truncate_result(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def serialize_action_result(result: ActionResult, max_chars: int) -> str:
    """Serializes an action outcome as the content of a `tool` message."""
    if result.success:
        payload = {"success": True, "description": result.description}
    else:
        payload = {"success": False, "error": result.error}
    return truncate_result(json.dumps(payload), max_chars)


async def _notify(callback: Optional[ChunkCallback], text: str):
    if callback is None:
        return
    result = callback(text)
    if inspect.isawaitable(result):
        await result


class AgenticLoop:
    """
    Drives one user turn:

        Requesting -> Inspecting -> (Executing -> Feeding-Back -> Requesting) | Finalizing

    Each iteration issues exactly one completion request. Text-syntax tool
    calls are executed and end the turn at once; structured tool calls are
    executed, fed back as `tool` messages, and the model is asked again.
    The iteration cap is the only progress guarantee against a model that
    keeps requesting tools; reaching it finalizes quietly.
    """

    def __init__(self, stream: CompletionStream, registry: Optional[ToolRegistry] = None,
                 max_iterations: Optional[int] = None, result_max_chars: Optional[int] = None):
        settings = get_settings()
        self.stream = stream
        self.registry = registry or tool_registry
        self.max_iterations = max_iterations or settings.MAX_TOOL_ITERATIONS
        self.result_max_chars = result_max_chars or settings.TOOL_RESULT_MAX_CHARS

    async def run(self, conversation: Conversation, messages: List[Message], options: CompletionOptions,
                  use_native_tools: bool = True, cancel: Optional[asyncio.Event] = None,
                  on_chunk: Optional[ChunkCallback] = None) -> TurnOutcome:
        session = AgenticSession(messages=list(messages))
        tools = self.registry.get_definitions() if use_native_tools else None
        request_options = options.model_copy(update={"tools": tools or None})
        error: Optional[str] = None
        cancelled = False

        while session.iteration < self.max_iterations:
            if cancel is not None and cancel.is_set():
                cancelled = True
                break

            session.iteration += 1
            session.current_text = ""
            console.rule(f"Agentic Turn {session.iteration}")

            terminal = await self._request(session, request_options, cancel, on_chunk)

            if isinstance(terminal, ErrorEvent):
                error = terminal.message
                session.accumulate(session.current_text.strip())
                console.display_error_panel("Completion failed", error)
                break

            structured = terminal.ordered_tool_calls() if use_native_tools else None
            extraction = extract_tool_calls(session.current_text, structured,
                                            include_action_blocks=not use_native_tools)

            if terminal.cancelled:
                # partial calls are never executed
                cancelled = True
                session.accumulate(extraction.display_text)
                break

            if extraction.source == "none":
                session.accumulate(extraction.display_text)
                break

            if extraction.source == "text":
                console.info(f"Found {len(extraction.calls)} text-syntax tool call(s); executing and ending the turn.")
                await self._execute_text_calls(extraction.calls, session, conversation)
                session.accumulate(extraction.display_text)
                break

            await self._execute_structured(extraction.tool_calls, session, conversation)
            session.accumulate(extraction.display_text)
        else:
            console.warning(f"Reached the tool iteration cap ({self.max_iterations}); finalizing.")

        return self._finalize(session, error, cancelled)

    async def _request(self, session: AgenticSession, options: CompletionOptions,
                       cancel: Optional[asyncio.Event], on_chunk: Optional[ChunkCallback]) -> Union[DoneEvent, ErrorEvent]:
        terminal: Optional[Union[DoneEvent, ErrorEvent]] = None
        # drained to the end so the adapter releases its response
        async for event in self.stream(list(session.messages), options, cancel):
            if event.kind == "chunk":
                session.current_text += event.text
                await _notify(on_chunk, event.text)
            elif terminal is None:
                terminal = event
        if isinstance(terminal, DoneEvent) and terminal.usage is not None:
            session.usage = terminal.usage
        return terminal or DoneEvent()

    async def _run_action(self, name: str, arguments: dict, conversation: Conversation) -> ActionResult:
        try:
            description = await self.registry.execute(name, arguments, conversation)
        except Exception as e:
            console.error(f"Action '{name}' failed: {e}")
            return ActionResult(success=False, error=str(e), type=name)
        console.success(f"Action '{name}': {description}")
        return ActionResult(success=True, description=description, type=name)

    async def _execute_structured(self, tool_calls: List[ToolCall], session: AgenticSession,
                                  conversation: Conversation):
        for index, call in enumerate(tool_calls):
            if not call.id:
                call.id = f"call_{session.iteration}_{index}"

        session.messages.append(Message(role="assistant", content=session.current_text or None,
                                        tool_calls=tool_calls))

        # sequential: a handler may read state changed by the previous one
        for call in tool_calls:
            try:
                arguments = decode_arguments(call)
            except ValueError as e:
                result = ActionResult(success=False, error=f"Invalid tool arguments: {e}", type=call.name)
            else:
                result = await self._run_action(call.name, arguments, conversation)
            session.action_results.append(result)
            session.messages.append(Message(
                role="tool",
                tool_call_id=call.id,
                content=serialize_action_result(result, self.result_max_chars),
            ))

    async def _execute_text_calls(self, calls: List[ExtractedCall], session: AgenticSession,
                                  conversation: Conversation):
        for call in calls:
            if call.error:
                session.action_results.append(ActionResult(success=False, error=call.error, type=call.name))
                continue
            session.action_results.append(await self._run_action(call.name, call.arguments, conversation))

    def _finalize(self, session: AgenticSession, error: Optional[str], cancelled: bool) -> TurnOutcome:
        content = "\n\n".join(session.accumulated_text) or session.current_text.strip()
        message = ChatMessage(role="assistant", content=content, actions=session.action_results)
        if session.action_results:
            console.display_actions_table(session.action_results, f"Actions ({session.iteration} request(s))")
        return TurnOutcome(
            message=message,
            actions=session.action_results,
            error=error,
            cancelled=cancelled,
            iterations=session.iteration,
            usage=session.usage,
            messages=session.messages,
        )


def build_system_prompt(conversation: Conversation, native_tools: bool,
                        registry: Optional[ToolRegistry] = None) -> str:
    registry = registry or tool_registry
    story_settings = conversation.settings.model_dump_json(indent=2)
    if native_tools:
        return SYSTEM_PROMPT.format(story_settings=story_settings)
    tool_defs_string = "\n".join(f"  - `{tool.name}`: {tool.description}" for tool in registry.tools.values())
    return PROMPT_MODE_SYSTEM_PROMPT.format(story_settings=story_settings, tool_definitions=tool_defs_string)


def _provider_stream(provider: ActiveProvider) -> CompletionStream:
    return lambda messages, options, cancel: stream_completion(messages, options, provider=provider, cancel=cancel)


async def run_conversation_step(session_id: str, user_input: str, provider_id: Optional[str] = None,
                                on_chunk: Optional[ChunkCallback] = None,
                                stream: Optional[CompletionStream] = None,
                                registry: Optional[ToolRegistry] = None) -> TurnOutcome:
    """
    Runs one user turn for a session and appends both the user message and
    the finalized assistant message to its history.

    Raises:
        SessionBusyError: If a turn is already streaming for the session.
        ProviderConfigError: If the provider is unknown or has no key.
    """
    settings = get_settings()
    conversation = session_manager.get_conversation(session_id)
    cancel = session_manager.begin_turn(session_id)
    try:
        provider = get_active_provider(provider_id)
        use_native_tools = settings.TOOLS_ENABLED and model_supports_tools(provider.model_info)
        console.info(f"Session '{session_id}': provider '{provider.config.id}', model '{provider.model}', "
                     f"native tools {'on' if use_native_tools else 'off'}.")

        messages = [Message(role="system", content=build_system_prompt(conversation, use_native_tools, registry))]
        messages.extend(Message(role=m.role, content=m.content)
                        for m in conversation.recent_messages(settings.HISTORY_CHAR_BUDGET))
        messages.append(Message(role="user", content=user_input))
        conversation.messages.append(ChatMessage(role="user", content=user_input))

        options = CompletionOptions(model=provider.model, max_tokens=settings.MAX_TOKENS,
                                    temperature=settings.TEMPERATURE)
        loop = AgenticLoop(stream or _provider_stream(provider), registry=registry)
        outcome = await loop.run(conversation, messages, options, use_native_tools=use_native_tools,
                                 cancel=cancel, on_chunk=on_chunk)

        if outcome.message.content or outcome.actions:
            conversation.messages.append(outcome.message)
        return outcome
    finally:
        session_manager.end_turn(session_id)


