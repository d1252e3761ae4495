"""Error types raised by the AI service and its provider adapters."""

from __future__ import annotations


class AIServiceError(Exception):
    """Base class for AI service failures."""


class ConfigurationError(AIServiceError):
    """Provider configuration is incomplete; raised before any network I/O."""


class BackendError(AIServiceError):
    """The backend answered with a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, body: str, kind: str = "API"):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} {kind} error ({status_code}): {body}")


class ProviderConnectionError(AIServiceError, ConnectionError):
    """A local model server could not be reached."""


class RequestAborted(AIServiceError):
    """The request was cancelled before it completed."""

    def __init__(self, message: str = "Request aborted", reason: str = "aborted"):
        self.reason = reason
        super().__init__(message)


class RequestTimedOut(RequestAborted):
    """The request ran past its deadline and was cancelled."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Request timed out after {timeout:g}s", reason="timeout")
