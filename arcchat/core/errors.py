# Exception hierarchy shared by the adapters, the router and the agentic loop.
# Date: 2025-10-02
# Version: 0.1.0

from typing import Optional


class ArcChatError(Exception):
    """Base class for all ArcChat errors."""


class CompletionError(ArcChatError):
    """
    A completion request failed. The message is short and safe to show
    to the end user.
    """
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class AuthenticationError(CompletionError):
    """The provider rejected the API key (HTTP 401/403 or an auth hint)."""


class NetworkError(CompletionError):
    """The provider could not be reached."""


class ProviderError(CompletionError):
    """The provider answered with a non-2xx status."""


class StreamError(CompletionError):
    """The response stream broke after it started."""


class StreamCancelled(ArcChatError):
    """The caller fired the cancel signal. Never surfaced as a failure."""


class ProviderConfigError(ArcChatError):
    """The requested provider is unknown or has no API key configured."""


class UnknownToolError(ArcChatError):
    """No handler is registered under the requested action name."""
    def __init__(self, name: str):
        super().__init__(f"Unknown action: {name}")
        self.name = name


class ToolExecutionError(ArcChatError):
    """A handler reported a failure that should be shown to the model."""


class SessionBusyError(ArcChatError):
    """A turn is already streaming for this session."""
    def __init__(self, session_id: str):
        super().__init__(f"A response is already streaming for session '{session_id}'.")
        self.session_id = session_id
