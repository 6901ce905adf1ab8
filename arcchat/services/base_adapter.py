# Shared request/stream handling for the protocol adapters.
# Date: 2025-10-02
# Version: 0.1.0

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from arcchat.core.errors import StreamCancelled
from arcchat.models.common import CompletionOptions, Message
from arcchat.models.streaming import DoneEvent, ErrorEvent, StreamEvent
from arcchat.services.sse import SSEDecoder, SSEFrame, await_or_cancel, iter_until_cancelled
from arcchat.utils.logger import console


class StreamingAdapter(ABC):
    """
    Base class for a protocol-specific streaming completion adapter.

    `stream()` is an async generator of stream events. Zero or more
    ChunkEvents are followed by exactly one DoneEvent or ErrorEvent, after
    which the generator stops. Cancellation through the `cancel` event is
    reported as a DoneEvent carrying whatever tool calls were accumulated.

    Subclasses shape the request and interpret the decoded SSE frames.
    Per-request parse state lives in the object returned by `new_state()`
    and is never shared between calls.
    """
    name: str = "adapter"
    auth_failure_message: str = "API key authentication failed."
    auth_hints: Tuple[str, ...] = ()

    def __init__(self, url: str, extra_headers: Optional[Dict[str, str]] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 120.0):
        self.url = url
        self.extra_headers = extra_headers or {}
        self._client = client
        self._timeout = timeout

    @abstractmethod
    def build_headers(self, api_key: str) -> Dict[str, str]:
        ...

    @abstractmethod
    def build_body(self, messages: List[Message], options: CompletionOptions) -> Dict[str, Any]:
        ...

    @abstractmethod
    def new_state(self) -> Any:
        ...

    @abstractmethod
    def handle_frame(self, frame: SSEFrame, state: Any) -> List[StreamEvent]:
        """
        Consumes one frame. Returned events are yielded in order; a DoneEvent
        or ErrorEvent in the list ends the stream.
        """

    @abstractmethod
    def finish(self, state: Any, cancelled: bool = False) -> DoneEvent:
        ...

    def request_error(self, exc: httpx.RequestError) -> ErrorEvent:
        return ErrorEvent(error_kind="network", message=f"Network error: {exc}")

    def stream_error(self, exc: Exception) -> ErrorEvent:
        return ErrorEvent(error_kind="stream", message=f"Stream error: {exc}")

    def fallback_error_message(self, status: int) -> str:
        return f"API request failed ({status})"

    def http_error(self, status: int, body: bytes) -> ErrorEvent:
        """Classifies a non-2xx response before any stream reading."""
        message, error_type = None, ""
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            payload = {}
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            message = error.get("message")
            error_type = str(error.get("type") or "")
        message = message or self.fallback_error_message(status)

        lowered = f"{message} {error_type}".lower()
        if status in (401, 403) or any(hint in lowered for hint in self.auth_hints):
            console.error(f"[{self.name}] Authentication failed ({status}): {message}")
            return ErrorEvent(error_kind="auth", message=self.auth_failure_message, status=status)

        console.error(f"[{self.name}] Request failed ({status}): {message}")
        return ErrorEvent(error_kind="http", message=message, status=status)

    @staticmethod
    def decode_json(frame: SSEFrame) -> Optional[Dict[str, Any]]:
        """Decodes a data payload; malformed or non-object payloads yield None."""
        try:
            parsed = json.loads(frame.data)
        except ValueError:
            console.debug(f"Skipping malformed SSE data line: {frame.data[:80]!r}")
            return None
        return parsed if isinstance(parsed, dict) else None

    async def stream(self, api_key: str, messages: List[Message], options: CompletionOptions,
                     cancel: Optional[asyncio.Event] = None) -> AsyncIterator[StreamEvent]:
        body = self.build_body(messages, options)
        headers = {"Content-Type": "application/json", **self.build_headers(api_key)}

        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            console.info(f"[{self.name}] Streaming completion from {self.url} with model '{options.model}'.")
            request = client.build_request("POST", self.url, headers=headers, json=body)
            try:
                response = await await_or_cancel(client.send(request, stream=True), cancel)
            except StreamCancelled:
                console.info(f"[{self.name}] Request cancelled before the response arrived.")
                yield DoneEvent(cancelled=True)
                return
            except httpx.RequestError as exc:
                console.error(f"[{self.name}] Could not reach provider: {exc}")
                yield self.request_error(exc)
                return

            try:
                if response.is_error:
                    yield await self._read_http_error(response, cancel)
                    return
                async for event in self._read_events(response, cancel):
                    yield event
            finally:
                await response.aclose()
        finally:
            if owns_client:
                await client.aclose()

    async def _read_http_error(self, response: httpx.Response, cancel: Optional[asyncio.Event]) -> StreamEvent:
        try:
            body = await await_or_cancel(response.aread(), cancel)
        except StreamCancelled:
            console.info(f"[{self.name}] Cancelled while reading the error response.")
            return self.finish(self.new_state(), cancelled=True)
        except httpx.HTTPError as exc:
            console.warning(f"[{self.name}] Could not read the error response body: {exc}")
            body = b""
        return self.http_error(response.status_code, body)

    def _handle_frame_safely(self, frame: SSEFrame, state: Any) -> List[StreamEvent]:
        """Runs `handle_frame`, skipping a frame whose JSON has an unexpected shape."""
        try:
            return self.handle_frame(frame, state)
        except (AttributeError, TypeError, KeyError, ValueError) as exc:
            console.debug(f"[{self.name}] Skipping unexpected SSE payload {frame.data[:80]!r}: {exc}")
            return []

    async def _read_events(self, response: httpx.Response,
                           cancel: Optional[asyncio.Event]) -> AsyncIterator[StreamEvent]:
        state = self.new_state()
        decoder = SSEDecoder()
        try:
            async for raw in iter_until_cancelled(response.aiter_bytes(), cancel):
                for frame in decoder.feed(raw):
                    for event in self._handle_frame_safely(frame, state):
                        yield event
                        if event.kind != "chunk":
                            return
            for frame in decoder.finish():
                for event in self._handle_frame_safely(frame, state):
                    yield event
                    if event.kind != "chunk":
                        return
        except StreamCancelled:
            console.info(f"[{self.name}] Stream cancelled; keeping partial output.")
            yield self.finish(state, cancelled=True)
            return
        except httpx.HTTPError as exc:
            console.error(f"[{self.name}] Stream failed: {exc}")
            yield self.stream_error(exc)
            return
        except Exception as exc:
            console.exception(f"[{self.name}] Unexpected error while reading the stream.")
            yield ErrorEvent(error_kind="stream", message=f"Stream error: {exc}")
            return

        yield self.finish(state)
