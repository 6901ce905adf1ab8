import json

import httpx
import pytest

from arcchat.core.config import get_settings
from arcchat.core.errors import AuthenticationError, CompletionError, ProviderConfigError, ProviderError
from arcchat.models.common import CompletionOptions, Message
from arcchat.services.anthropic_stream import AnthropicAdapter
from arcchat.services.llm_connector import (
    call_completion, complete_json, complete_text, fetch_models, get_active_provider, get_adapter, stream_completion,
)
from arcchat.services.openai_stream import OpenAICompatAdapter

from conftest import (
    anthropic_stream_bytes, collect, make_json_client, make_stream_client, openai_stream_bytes, text_delta,
)

MESSAGES = [Message(role="user", content="hi")]


def test_active_provider_defaults_to_configured_provider():
    provider = get_active_provider()
    assert provider.config.id == "openrouter"
    assert provider.api_key == "sk-or-test"
    assert provider.model == "anthropic/claude-sonnet-4-5-20250929"
    assert "tools" in provider.model_info.supported_parameters


def test_model_override_from_environment(monkeypatch):
    monkeypatch.setenv("OPENROUTER_MODEL", "openai/gpt-4o-mini")
    get_settings.cache_clear()
    provider = get_active_provider()
    assert provider.model == "openai/gpt-4o-mini"
    assert provider.model_info is None


def test_missing_key_and_unknown_provider():
    with pytest.raises(ProviderConfigError, match="No API key configured for OpenAI"):
        get_active_provider("openai")
    with pytest.raises(ProviderConfigError, match="Unknown provider"):
        get_active_provider("nonexistent")


def test_adapter_follows_protocol_tag():
    openrouter = get_adapter(get_active_provider("openrouter").config)
    anthropic = get_adapter(get_active_provider("anthropic").config)

    assert isinstance(openrouter, OpenAICompatAdapter)
    assert openrouter.include_usage is True
    assert openrouter.extra_headers == {"HTTP-Referer": "http://localhost:8000"}
    assert openrouter.url == "https://openrouter.ai/api/v1/chat/completions"
    assert isinstance(anthropic, AnthropicAdapter)
    assert anthropic.url == "https://api.anthropic.com/v1/messages"


async def test_stream_completion_fills_the_provider_model():
    requests = []
    client = make_stream_client([anthropic_stream_bytes([("message_stop", {"type": "message_stop"})])],
                                requests=requests)
    events = await collect(stream_completion(MESSAGES, CompletionOptions(), provider=get_active_provider("anthropic"),
                                             client=client))

    assert [e.kind for e in events] == ["done"]
    assert str(requests[0].url) == "https://api.anthropic.com/v1/messages"
    assert json.loads(requests[0].content)["model"] == "claude-sonnet-4-5-20250929"


class Recorder:
    def __init__(self):
        self.chunks, self.done, self.errors = [], [], []

    def on_chunk(self, text):
        self.chunks.append(text)

    async def on_done(self, tool_calls):
        self.done.append(tool_calls)

    def on_error(self, error):
        self.errors.append(error)

    async def call(self, client=None, provider=None):
        await call_completion(MESSAGES, CompletionOptions(), self.on_chunk, self.on_done, self.on_error,
                              provider=provider, client=client)


async def test_callbacks_on_success():
    recorder = Recorder()
    await recorder.call(make_stream_client([openai_stream_bytes([text_delta("a"), text_delta("b")])]))
    assert recorder.chunks == ["a", "b"]
    assert recorder.done == [{}]
    assert recorder.errors == []


async def test_callbacks_on_auth_failure():
    recorder = Recorder()
    await recorder.call(make_json_client(401, {"error": {"message": "bad key"}}))
    assert recorder.done == []
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], AuthenticationError)
    assert recorder.errors[0].status == 401


async def test_callbacks_on_missing_provider_key(monkeypatch):
    monkeypatch.setenv("ACTIVE_PROVIDER", "openai")
    get_settings.cache_clear()
    recorder = Recorder()
    await recorder.call()
    assert recorder.done == []
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], CompletionError)


async def test_complete_text_joins_chunks_and_sends_system_prompt():
    requests = []
    client = make_stream_client([openai_stream_bytes([text_delta("Hello"), text_delta(" there")])],
                                requests=requests)
    text = await complete_text("sys", "hi", client=client)

    assert text == "Hello there"
    sent = json.loads(requests[0].content)["messages"]
    assert sent == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]


async def test_complete_text_raises_mapped_error():
    with pytest.raises(AuthenticationError):
        await complete_text(None, "hi", client=make_json_client(403, {}))


async def test_fetch_openai_compatible_models():
    payload = {"data": [
        {"id": "z-model", "name": "Z", "supported_parameters": ["tools"], "context_length": 8000,
         "top_provider": {"max_completion_tokens": 1000}},
        {"id": "a-model"},
    ]}
    requests = []
    models = await fetch_models("openrouter", client=make_json_client(200, payload, requests=requests))

    assert [m.id for m in models] == ["a-model", "z-model"]
    assert models[0].name == "a-model"
    assert models[1].max_completion_tokens == 1000
    assert requests[0].headers["authorization"] == "Bearer sk-or-test"


async def test_fetch_anthropic_models_paginates():
    pages = {
        None: {"data": [{"id": "claude-sonnet-4-5-20250929", "display_name": "Claude Sonnet 4.5"}],
               "has_more": True},
        "claude-sonnet-4-5-20250929": {"data": [{"id": "claude-3-opus-20240229"}, {"id": "mystery-model"}],
                                       "has_more": False},
    }
    seen = []

    def handler(request):
        after_id = request.url.params.get("after_id")
        seen.append((after_id, request.url.params.get("limit")))
        return httpx.Response(200, json=pages[after_id])

    models = await fetch_models("anthropic", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    assert seen == [(None, "100"), ("claude-sonnet-4-5-20250929", "100")]
    by_id = {m.id: m for m in models}
    assert by_id["claude-sonnet-4-5-20250929"].name == "Claude Sonnet 4.5"
    assert by_id["claude-3-opus-20240229"].max_completion_tokens == 4096
    assert "tools" in by_id["claude-3-opus-20240229"].supported_parameters
    assert by_id["mystery-model"].supported_parameters == ["temperature"]


async def test_fetch_models_for_provider_without_endpoint():
    models = await fetch_models("perplexity")
    assert [m.id for m in models] == ["sonar-pro", "sonar"]


async def test_fetch_models_errors():
    with pytest.raises(ProviderConfigError):
        await fetch_models("nonexistent")
    with pytest.raises(ProviderError):
        await fetch_models("openai", api_key="sk", client=make_json_client(500, {}))


async def test_complete_json_parses_fenced_reply():
    reply = openai_stream_bytes([text_delta('```json\n{"genre": '), text_delta('"noir"}\n```')])
    assert await complete_json("Reply with JSON.", "pick", client=make_stream_client([reply])) == {"genre": "noir"}


class TrackedBody(httpx.AsyncByteStream):
    def __init__(self, data: bytes):
        self.data = data
        self.closed = False

    async def __aiter__(self):
        yield self.data

    async def aclose(self):
        self.closed = True


async def test_call_completion_releases_the_response_before_returning():
    body = TrackedBody(openai_stream_bytes([text_delta("a")]) + openai_stream_bytes([text_delta("late")]))
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=body)))
    recorder = Recorder()
    await recorder.call(client)

    assert recorder.chunks == ["a"]
    assert recorder.done == [{}]
    assert body.closed is True
