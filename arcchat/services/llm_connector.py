# Completion router: picks the protocol adapter for the active provider.
# Date: 2025-10-02
# Version: 0.2.0

import asyncio
import inspect
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from arcchat.core.config import get_settings
from arcchat.core.errors import (
    AuthenticationError, CompletionError, NetworkError, ProviderConfigError, ProviderError, StreamError,
)
from arcchat.core.providers import PROVIDERS, ModelInfo, ProviderConfig
from arcchat.core.tool_extractor import parse_json_response
from arcchat.models.common import CompletionOptions, Message, ToolCall
from arcchat.models.streaming import ErrorEvent, StreamEvent
from arcchat.services.anthropic_stream import ANTHROPIC_API_VERSION, AnthropicAdapter
from arcchat.services.base_adapter import StreamingAdapter
from arcchat.services.openai_stream import OpenAICompatAdapter
from arcchat.utils.logger import console


class ActiveProvider(BaseModel):
    """A provider descriptor resolved together with its key and model."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    config: ProviderConfig
    api_key: str
    model: str

    @property
    def model_info(self) -> Optional[ModelInfo]:
        return self.config.find_model(self.model)


def get_active_provider(provider_id: Optional[str] = None, model: Optional[str] = None) -> ActiveProvider:
    """
    Resolves the provider to use for a request.

    Raises:
        ProviderConfigError: If the provider is unknown or has no API key configured.

    Returns:
        The provider descriptor, its API key and the selected model name.
    """
    settings = get_settings()
    provider_id = provider_id or settings.ACTIVE_PROVIDER
    config = PROVIDERS.get(provider_id)
    if config is None:
        raise ProviderConfigError(f"Unknown provider: {provider_id}")

    api_key = settings.api_key_for(provider_id)
    if not api_key:
        raise ProviderConfigError(f"No API key configured for {config.name}.")

    selected = model or settings.model_for(provider_id) or config.default_model
    return ActiveProvider(config=config, api_key=api_key, model=selected)


def get_adapter(config: ProviderConfig, client: Optional[httpx.AsyncClient] = None) -> StreamingAdapter:
    """Builds the adapter matching the provider's protocol tag."""
    timeout = get_settings().REQUEST_TIMEOUT
    if config.protocol == "anthropic-native":
        return AnthropicAdapter(config.completions_url, client=client, timeout=timeout)
    return OpenAICompatAdapter(
        config.completions_url,
        extra_headers=config.extra_headers(""),
        client=client,
        timeout=timeout,
        include_usage=config.supports_stream_options,
    )


async def stream_completion(
    messages: List[Message],
    options: CompletionOptions,
    provider: Optional[ActiveProvider] = None,
    cancel: Optional[asyncio.Event] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[StreamEvent]:
    """
    Protocol-agnostic streaming completion. Yields chunk events followed by
    exactly one done or error event.
    """
    provider = provider or get_active_provider()
    options = options.model_copy(update={"model": options.model or provider.model})
    adapter = get_adapter(provider.config, client=client)
    async with aclosing(adapter.stream(provider.api_key, messages, options, cancel=cancel)) as events:
        async for event in events:
            yield event


def error_from_event(event: ErrorEvent) -> CompletionError:
    """Maps a terminal error event to the matching exception type."""
    error_types = {
        "auth": AuthenticationError,
        "network": NetworkError,
        "http": ProviderError,
        "stream": StreamError,
    }
    return error_types[event.error_kind](event.message, status=event.status)


async def _invoke(callback: Callable, *args):
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def call_completion(
    messages: List[Message],
    options: CompletionOptions,
    on_chunk: Callable[[str], None],
    on_done: Callable[[Dict[int, ToolCall]], None],
    on_error: Callable[[CompletionError], None],
    provider: Optional[ActiveProvider] = None,
    cancel: Optional[asyncio.Event] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """
    Callback facade over `stream_completion`. Exactly one of `on_done` or
    `on_error` is invoked per call; callbacks may be plain or async.
    """
    try:
        provider = provider or get_active_provider()
    except ProviderConfigError as exc:
        await _invoke(on_error, CompletionError(str(exc)))
        return

    events = stream_completion(messages, options, provider=provider, cancel=cancel, client=client)
    async with aclosing(events):
        async for event in events:
            if event.kind == "chunk":
                await _invoke(on_chunk, event.text)
            elif event.kind == "done":
                await _invoke(on_done, event.tool_calls)
                return
            else:
                await _invoke(on_error, error_from_event(event))
                return


async def complete_text(
    system_prompt: Optional[str],
    user_message: str,
    options: Optional[CompletionOptions] = None,
    provider: Optional[ActiveProvider] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Non-streaming convenience: drains a streamed completion and returns its text.

    Raises:
        CompletionError: The mapped error when the request fails.
    """
    messages: List[Message] = []
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))
    messages.append(Message(role="user", content=user_message))

    options = options or CompletionOptions(max_tokens=get_settings().MAX_TOKENS)
    parts: List[str] = []
    async for event in stream_completion(messages, options, provider=provider, client=client):
        if event.kind == "chunk":
            parts.append(event.text)
        elif event.kind == "error":
            raise error_from_event(event)
    return "".join(parts)


async def complete_json(
    system_prompt: Optional[str],
    user_message: str,
    options: Optional[CompletionOptions] = None,
    provider: Optional[ActiveProvider] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Any:
    """
    Like `complete_text`, but parses the reply as JSON.

    Raises:
        CompletionError: The mapped error when the request fails.
        ValueError: If the reply cannot be parsed as JSON.
    """
    text = await complete_text(system_prompt, user_message, options=options, provider=provider, client=client)
    return parse_json_response(text)


async def fetch_models(
    provider_id: str,
    api_key: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[ModelInfo]:
    """
    Lists the models a provider offers, normalized to ModelInfo and sorted
    by id. Providers without a models endpoint return their hardcoded list.

    Raises:
        ProviderConfigError: If the provider is unknown.
        ProviderError: If the models endpoint answers with an error status.
    """
    config = PROVIDERS.get(provider_id)
    if config is None:
        raise ProviderConfigError(f"Unknown provider: {provider_id}")
    if not config.supports_model_fetch or not config.models_endpoint:
        return list(config.hardcoded_models)

    api_key = api_key or get_settings().api_key_for(provider_id) or ""
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=get_settings().REQUEST_TIMEOUT)
    try:
        if config.protocol == "anthropic-native":
            models = await _fetch_anthropic_models(config, api_key, client)
        else:
            models = await _fetch_openai_models(config, api_key, client)
    finally:
        if owns_client:
            await client.aclose()

    console.info(f"Fetched {len(models)} models from {config.name}.")
    return sorted(models, key=lambda model: model.id)


async def _fetch_openai_models(config: ProviderConfig, api_key: str, client: httpx.AsyncClient) -> List[ModelInfo]:
    response = await client.get(
        f"{config.base_url}{config.models_endpoint}",
        headers={"Authorization": f"Bearer {api_key}", **config.extra_headers(api_key)},
    )
    if response.is_error:
        raise ProviderError(f"Failed to fetch models from {config.name} ({response.status_code})",
                            status=response.status_code)

    models = []
    for item in response.json().get("data") or []:
        top_provider = item.get("top_provider") or {}
        models.append(ModelInfo(
            id=item["id"],
            name=item.get("name") or item["id"],
            supported_parameters=item.get("supported_parameters") or [],
            context_length=item.get("context_length"),
            max_completion_tokens=top_provider.get("max_completion_tokens"),
        ))
    return models


async def _fetch_anthropic_models(config: ProviderConfig, api_key: str, client: httpx.AsyncClient) -> List[ModelInfo]:
    headers = {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_API_VERSION,
        "anthropic-dangerous-direct-browser-access": "true",
    }
    items: List[dict] = []
    after_id: Optional[str] = None
    while True:
        params = {"limit": "100"}
        if after_id:
            params["after_id"] = after_id
        response = await client.get(f"{config.base_url}{config.models_endpoint}", headers=headers, params=params)
        if response.is_error:
            raise ProviderError(f"Failed to fetch models from {config.name} ({response.status_code})",
                                status=response.status_code)
        data = response.json()
        page = data.get("data") or []
        items.extend(page)
        if not data.get("has_more") or not page:
            break
        after_id = page[-1]["id"]

    models = []
    for item in items:
        known = config.find_model(item["id"])
        models.append(ModelInfo(
            id=item["id"],
            name=item.get("display_name") or item["id"],
            supported_parameters=known.supported_parameters if known else ["temperature"],
            context_length=known.context_length if known else None,
            max_completion_tokens=known.max_completion_tokens if known else None,
        ))
    return models
