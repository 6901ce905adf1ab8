# The module is to define the configuration settings for the application.
# Date: 2025-10-02
# Version: 0.2.0

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    """
    The Settings class defines the runtime configuration of ArcChat.
    Values are read from environment variables and the optional `.env` file.
    Attributes:
        ACTIVE_PROVIDER (str): Provider id used when a request does not name one.
        OPENROUTER_API_KEY (str): API key for OpenRouter.
        OPENROUTER_MODEL (str): Model override for OpenRouter.
        OPENAI_API_KEY (str): API key for OpenAI.
        OPENAI_MODEL (str): Model override for OpenAI.
        ANTHROPIC_API_KEY (str): API key for Anthropic.
        ANTHROPIC_MODEL (str): Model override for Anthropic.
        PERPLEXITY_API_KEY (str): API key for Perplexity.
        PERPLEXITY_MODEL (str): Model override for Perplexity.
        HTTP_REFERER (str): Referer sent to OpenRouter.
        MAX_TOKENS (int): Completion token limit per request.
        TEMPERATURE (float): Sampling temperature; omitted from requests when unset.
        TOOLS_ENABLED (bool): Whether native tool calling may be used at all.
        MAX_TOOL_ITERATIONS (int): Hard cap on completion requests per user turn.
        TOOL_RESULT_MAX_CHARS (int): Serialized tool results above this size are truncated.
        HISTORY_CHAR_BUDGET (int): Character budget for prior conversation messages.
        REQUEST_TIMEOUT (float): Connect/read timeout for provider requests, in seconds.
        LOG_LEVEL (str): Level name for the console logger.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider Switch
    ACTIVE_PROVIDER: str = "openrouter"

    # OpenRouter
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_MODEL: Optional[str] = None

    # OpenAI
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: Optional[str] = None

    # Anthropic
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: Optional[str] = None

    # Perplexity
    PERPLEXITY_API_KEY: Optional[str] = None
    PERPLEXITY_MODEL: Optional[str] = None

    HTTP_REFERER: str = "http://localhost:8000"

    # Completion defaults
    MAX_TOKENS: int = 4096
    TEMPERATURE: Optional[float] = None
    TOOLS_ENABLED: bool = True

    # Agentic loop bounds
    MAX_TOOL_ITERATIONS: int = 5
    TOOL_RESULT_MAX_CHARS: int = 6000
    HISTORY_CHAR_BUDGET: int = 32000

    REQUEST_TIMEOUT: float = 120.0

    LOG_LEVEL: str = "INFO"

    def api_key_for(self, provider_id: str) -> Optional[str]:
        return getattr(self, f"{provider_id.upper()}_API_KEY", None)

    def model_for(self, provider_id: str) -> Optional[str]:
        return getattr(self, f"{provider_id.upper()}_MODEL", None)

# lru_cache to cache the settings instance.
@lru_cache
def get_settings() -> Settings:
    return Settings()
