"""
Error taxonomy for Loreweave.

Defines a consistent hierarchy of exceptions used throughout the engine.
Public engine entry points never let these escape; internal components
raise them so the facade can pick the right degraded return value.
"""

from __future__ import annotations

import asyncio


class LoreweaveError(Exception):
    """Base exception for all Loreweave errors.

    All custom exceptions in Loreweave inherit from this class
    to enable catch-all error handling when needed.
    """

    pass


class ProviderError(LoreweaveError):
    """An embedding or AI collaborator call failed.

    Attributes:
        message: Human-readable error description
        provider: Name of the collaborator call (e.g., "embed", "extract_metadata")
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: BaseException | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.original_error = original_error

    def __str__(self) -> str:
        parts = [self.args[0]]
        if self.provider:
            parts.append(f"provider={self.provider}")
        return ": ".join(parts)


class RateLimitedError(ProviderError):
    """The collaborator refused the call because of quota or rate limiting."""

    pass


class UnavailableError(ProviderError):
    """No backend or credentials are configured, or the backend is unreachable.

    Also raised while a provider is cooling down after a rate limit.
    """

    pass


class ProviderTimeoutError(ProviderError):
    """The per-call timeout elapsed before the collaborator answered."""

    pass


class MalformedResponseError(ProviderError):
    """The collaborator answered, but its output could not be parsed.

    Attributes:
        raw: The raw text returned by the model, when available.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: BaseException | None = None,
        raw: str | None = None,
    ):
        super().__init__(message, provider=provider, original_error=original_error)
        self.raw = raw


class ProjectNotFoundError(LoreweaveError):
    """Requested project does not exist in the project store.

    Note: sync_project_context() returns None instead of raising this
    exception, since "no profile yet" is a normal state.
    """

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class PersistenceError(LoreweaveError):
    """Snapshot read or write failed.

    Attributes:
        message: Human-readable error description
        path: Snapshot path involved in the failure
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        original_error: BaseException | None = None,
    ):
        super().__init__(message)
        self.path = path
        self.original_error = original_error

    def __str__(self) -> str:
        parts = [self.args[0]]
        if self.path:
            parts.append(f"path={self.path}")
        return ": ".join(parts)


class ConfigurationError(LoreweaveError):
    """Invalid configuration or settings.

    Raised when configuration values are invalid, conflicting,
    or missing required parameters.
    """

    pass


DEGRADING_ERRORS: tuple[type[ProviderError], ...] = (
    RateLimitedError,
    UnavailableError,
    ProviderTimeoutError,
)

_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate_limit", "ratelimit", "quota", "too many requests")
_UNAVAILABLE_MARKERS = ("api key", "api_key", "credentials", "connection", "unavailable", "503")


def is_degrading(error: BaseException) -> bool:
    """Return True when the error should trigger a fallback path."""
    return isinstance(error, DEGRADING_ERRORS)


def classify_provider_error(error: BaseException, provider: str | None = None) -> BaseException:
    """Map an arbitrary collaborator exception onto the taxonomy.

    openai SDK exceptions are matched by class name so that wrappers
    (langchain, httpx) raising look-alike errors classify the same way.
    Errors that match nothing are returned unchanged.
    """
    if isinstance(error, LoreweaveError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeoutError("Provider call timed out", provider, error)

    name = type(error).__name__
    message = str(error).lower()
    status = getattr(error, "status_code", None)

    if name == "RateLimitError" or status == 429:
        return RateLimitedError("Provider rate limited", provider, error)
    if name in {"APITimeoutError", "ReadTimeout", "ConnectTimeout"}:
        return ProviderTimeoutError("Provider call timed out", provider, error)
    if name in {"AuthenticationError", "PermissionDeniedError", "APIConnectionError", "ConnectError"}:
        return UnavailableError("Provider unavailable", provider, error)
    if any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return RateLimitedError("Provider rate limited", provider, error)
    if any(marker in message for marker in _UNAVAILABLE_MARKERS):
        return UnavailableError("Provider unavailable", provider, error)
    return error


# Error Handling Guidelines:
#
# 1. Raise typed errors from internal components; convert them at the engine
#    facade into degraded-but-valid return values.
#
# 2. RateLimitedError, UnavailableError and ProviderTimeoutError mean "use the
#    deterministic path": lexical search, rule-based enrichment.
#
# 3. MalformedResponseError gets one secondary parse attempt before falling
#    back to rule-based extraction.
#
# 4. PersistenceError is logged and never rolls back the in-memory mutation.
#
# 5. Always chain with `raise ... from e` when wrapping another exception.
