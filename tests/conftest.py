import json
from typing import Iterable, List, Optional

import httpx
import pytest

from arcchat.core.config import get_settings
from arcchat.services.session_manager import session_manager


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    monkeypatch.setenv("ACTIVE_PROVIDER", "openrouter")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_MODEL", raising=False)
    monkeypatch.delenv("TEMPERATURE", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def clean_sessions():
    session_manager.reset()
    yield
    session_manager.reset()


def split_every(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def openai_stream_bytes(payloads: Iterable, done: bool = True) -> bytes:
    lines = []
    for payload in payloads:
        body = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {body}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def anthropic_stream_bytes(events: Iterable) -> bytes:
    lines = []
    for event_type, payload in events:
        body = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"event: {event_type}\ndata: {body}\n\n")
    return "".join(lines).encode("utf-8")


def text_delta(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def make_stream_client(chunks: List[bytes], status: int = 200,
                       requests: Optional[list] = None) -> httpx.AsyncClient:
    """An AsyncClient whose every POST answers with `chunks` as separate body reads."""
    async def body():
        for chunk in chunks:
            yield chunk

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, content=body(), headers={"content-type": "text/event-stream"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_json_client(status: int, payload, requests: Optional[list] = None) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, json=payload)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def collect(events) -> list:
    return [event async for event in events]
