# Static registry of the LLM providers ArcChat can talk to.
# Date: 2025-10-02
# Version: 0.1.0

from pydantic import BaseModel, Field
from typing import Callable, Dict, List, Literal, Optional

from arcchat.core.config import get_settings

Protocol = Literal["openai-compat", "anthropic-native"]


class ModelInfo(BaseModel):
    """Normalized description of a model offered by a provider."""
    id: str
    name: str
    supported_parameters: List[str] = Field(default_factory=list)
    context_length: Optional[int] = None
    max_completion_tokens: Optional[int] = None


class ProviderConfig(BaseModel):
    """
    Connection details for one provider. The `protocol` tag decides which
    streaming adapter the router uses.
    """
    id: str
    name: str
    protocol: Protocol
    base_url: str
    completions_endpoint: str
    models_endpoint: Optional[str] = None
    default_model: str
    extra_headers: Callable[[str], Dict[str, str]] = lambda api_key: {}
    supports_model_fetch: bool = False
    supports_stream_options: bool = False
    hardcoded_models: List[ModelInfo] = Field(default_factory=list)
    # Anthropic's models endpoint omits capabilities; matched by id prefix.
    known_model_meta: Dict[str, ModelInfo] = Field(default_factory=dict)

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}{self.completions_endpoint}"

    def find_model(self, model_id: str) -> Optional[ModelInfo]:
        for model in self.hardcoded_models:
            if model.id == model_id:
                return model
        for prefix, meta in self.known_model_meta.items():
            if model_id.startswith(prefix):
                return meta.model_copy(update={"id": model_id, "name": model_id})
        return None


def _openrouter_headers(api_key: str) -> Dict[str, str]:
    return {"HTTP-Referer": get_settings().HTTP_REFERER}


def _meta(prefix: str, params: List[str], max_tokens: int) -> ModelInfo:
    return ModelInfo(id=prefix, name=prefix, supported_parameters=params,
                     context_length=200000, max_completion_tokens=max_tokens)


_TOOLS = ["temperature", "tools"]
_REASONING_TOOLS = ["temperature", "tools", "reasoning"]

PROVIDERS: Dict[str, ProviderConfig] = {
    "openrouter": ProviderConfig(
        id="openrouter",
        name="OpenRouter",
        protocol="openai-compat",
        base_url="https://openrouter.ai/api/v1",
        completions_endpoint="/chat/completions",
        models_endpoint="/models",
        default_model="anthropic/claude-sonnet-4-5-20250929",
        extra_headers=_openrouter_headers,
        supports_model_fetch=True,
        supports_stream_options=True,
        hardcoded_models=[
            ModelInfo(id="anthropic/claude-sonnet-4-5-20250929", name="Claude Sonnet 4.5",
                      supported_parameters=_REASONING_TOOLS, context_length=200000, max_completion_tokens=16384),
        ],
    ),
    "openai": ProviderConfig(
        id="openai",
        name="OpenAI",
        protocol="openai-compat",
        base_url="https://api.openai.com/v1",
        completions_endpoint="/chat/completions",
        models_endpoint="/models",
        default_model="gpt-4o",
        supports_model_fetch=True,
        supports_stream_options=True,
        hardcoded_models=[
            ModelInfo(id="gpt-4o", name="GPT-4o", supported_parameters=_TOOLS,
                      context_length=128000, max_completion_tokens=16384),
            ModelInfo(id="gpt-4.1", name="GPT-4.1", supported_parameters=_TOOLS,
                      context_length=1047576, max_completion_tokens=32768),
        ],
    ),
    "anthropic": ProviderConfig(
        id="anthropic",
        name="Anthropic",
        protocol="anthropic-native",
        base_url="https://api.anthropic.com/v1",
        completions_endpoint="/messages",
        models_endpoint="/models",
        default_model="claude-sonnet-4-5-20250929",
        supports_model_fetch=True,
        known_model_meta={
            "claude-opus-4-6": _meta("claude-opus-4-6", _REASONING_TOOLS, 32768),
            "claude-sonnet-4-5": _meta("claude-sonnet-4-5", _REASONING_TOOLS, 16384),
            "claude-opus-4": _meta("claude-opus-4", _REASONING_TOOLS, 32768),
            "claude-sonnet-4": _meta("claude-sonnet-4", _REASONING_TOOLS, 16384),
            "claude-haiku-4-5": _meta("claude-haiku-4-5", _TOOLS, 8192),
            "claude-3-5-sonnet": _meta("claude-3-5-sonnet", _TOOLS, 8192),
            "claude-3-5-haiku": _meta("claude-3-5-haiku", _TOOLS, 8192),
            "claude-3-opus": _meta("claude-3-opus", _TOOLS, 4096),
        },
        hardcoded_models=[
            ModelInfo(id="claude-sonnet-4-5-20250929", name="Claude Sonnet 4.5",
                      supported_parameters=_REASONING_TOOLS, context_length=200000, max_completion_tokens=16384),
            ModelInfo(id="claude-opus-4-20250514", name="Claude Opus 4",
                      supported_parameters=_REASONING_TOOLS, context_length=200000, max_completion_tokens=32768),
            ModelInfo(id="claude-haiku-4-5-20251001", name="Claude Haiku 4.5",
                      supported_parameters=_TOOLS, context_length=200000, max_completion_tokens=8192),
        ],
    ),
    "perplexity": ProviderConfig(
        id="perplexity",
        name="Perplexity",
        protocol="openai-compat",
        base_url="https://api.perplexity.ai",
        completions_endpoint="/chat/completions",
        default_model="sonar-pro",
        hardcoded_models=[
            ModelInfo(id="sonar-pro", name="Sonar Pro", supported_parameters=["temperature"],
                      context_length=200000, max_completion_tokens=8192),
            ModelInfo(id="sonar", name="Sonar", supported_parameters=["temperature"],
                      context_length=128000, max_completion_tokens=8192),
        ],
    ),
}

PROVIDER_ORDER = ["openrouter", "openai", "anthropic", "perplexity"]


def model_supports_tools(model: Optional[ModelInfo]) -> bool:
    return model is not None and "tools" in model.supported_parameters
