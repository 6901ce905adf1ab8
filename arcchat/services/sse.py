# Incremental server-sent-event decoding shared by both protocol adapters.
# Date: 2025-10-02
# Version: 0.1.0

import asyncio
import codecs
from typing import AsyncIterator, List, NamedTuple, Optional

from arcchat.core.errors import StreamCancelled


class SSEFrame(NamedTuple):
    """One `data:` payload and the `event:` type that preceded it, if any."""
    event: Optional[str]
    data: str


class SSEDecoder:
    """
    Turns arbitrarily fragmented response bytes into SSE frames.

    Network reads do not line up with line boundaries (or even with UTF-8
    character boundaries), so the decoder keeps a text buffer across
    `feed()` calls and only parses lines that have been terminated. The
    last, possibly partial, line is held over until more bytes arrive or
    `finish()` is called at the end of the body.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event: Optional[str] = None

    def feed(self, data: bytes) -> List[SSEFrame]:
        self._buffer += self._decoder.decode(data)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def finish(self) -> List[SSEFrame]:
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._parse_lines([remainder]) if remainder.strip() else []

    def _parse_lines(self, lines: List[str]) -> List[SSEFrame]:
        frames: List[SSEFrame] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith("event:"):
                self._event = stripped[len("event:"):].strip()
                continue
            if not stripped.startswith("data:"):
                # comments (": keep-alive"), id:, retry:
                continue
            data = stripped[len("data:"):]
            if data.startswith(" "):
                data = data[1:]
            frames.append(SSEFrame(self._event, data))
            self._event = None
        return frames


async def iter_until_cancelled(
    chunks: AsyncIterator[bytes],
    cancel: Optional[asyncio.Event],
) -> AsyncIterator[bytes]:
    """
    Yields from `chunks` until it is exhausted. If `cancel` fires while a
    read is pending, the read is abandoned and StreamCancelled is raised.
    """
    iterator = chunks.__aiter__()
    if cancel is None:
        async for chunk in iterator:
            yield chunk
        return

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        while True:
            if cancel.is_set():
                raise StreamCancelled()
            pending = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait({pending, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if pending not in done:
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)
                raise StreamCancelled()
            try:
                chunk = pending.result()
            except StopAsyncIteration:
                return
            yield chunk
    finally:
        waiter.cancel()


async def await_or_cancel(awaitable, cancel: Optional[asyncio.Event]):
    """Awaits `awaitable`, raising StreamCancelled if `cancel` fires first."""
    if cancel is None:
        return await awaitable
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise StreamCancelled()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise StreamCancelled()
        return task.result()
    finally:
        waiter.cancel()
