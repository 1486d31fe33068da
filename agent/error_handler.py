"""Provider error classification, retry backoff, and cancellation state.

Pure functions over error values plus a small per-agent cancellation flag.
The execution engine uses these to decide whether a failed model call is
worth retrying and how long to wait first.

Classification reads a structured ``type`` tag from the error. Supported
shapes, checked in order:

    ProviderError(type="rate_limit_error")                 # our own
    err.error == {"type": "overloaded_error", ...}         # nested object
    err.body == {"error": {"type": "rate_limit_error"}}    # openai SDK
    {"error": {"type": "rate_limit_error", ...}}           # plain dict

Anything without a recognized tag is ``ErrorKind.OTHER`` and is not retried.
"""

import enum
import logging
import random
from typing import Any, Optional

logger = logging.getLogger(__name__)

RATE_LIMIT_ERROR_TYPE = "rate_limit_error"
OVERLOADED_ERROR_TYPE = "overloaded_error"

BASE_BACKOFF_MS = 1000
OVERLOADED_BACKOFF_MS = 2000
MAX_BACKOFF_EXPONENT = 5
JITTER_FRACTION = 0.25

# Client identifiers known to break server-sent streaming.
INCOMPATIBLE_CLIENT_PATTERNS = ("problematic-browser",)


class ErrorKind(enum.Enum):
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    OTHER = "other"


class ProviderError(Exception):
    """A classifiable error raised by model providers."""

    def __init__(self, message: str, type: str = "api_error", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.type = type
        self.status_code = status_code
        self.retry_attempt = 0

    @property
    def error(self) -> dict:
        return {"type": self.type, "message": self.message}


class ExecutionState:
    """Cancellation flag owned by a single agent.

    Set from outside at any time; the execution loop only looks at it between
    steps.
    """

    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def reset_cancel(self) -> None:
        self.cancelled = False

    def is_cancelled(self) -> bool:
        return self.cancelled


def _lookup(container: Any, key: str) -> Any:
    if isinstance(container, dict):
        return container.get(key)
    return getattr(container, key, None)


def _error_payload(error: Any) -> Any:
    """Return the nested object carrying ``type``/``message``, if any."""
    if error is None:
        return None
    if isinstance(error, ProviderError):
        return error.error

    nested = _lookup(error, "error")
    if nested is not None and _lookup(nested, "type"):
        return nested

    body = None if isinstance(error, dict) else getattr(error, "body", None)
    if isinstance(body, dict):
        inner = body.get("error")
        if isinstance(inner, dict) and inner.get("type"):
            return inner
        if body.get("type"):
            return body

    if isinstance(error, dict) and error.get("type"):
        return error
    return None


def _error_type(error: Any) -> Optional[str]:
    payload = _error_payload(error)
    if payload is None:
        return None
    error_type = _lookup(payload, "type")
    return error_type if isinstance(error_type, str) else None


def _error_detail(error: Any) -> str:
    payload = _error_payload(error)
    message = _lookup(payload, "message") if payload is not None else None
    if message:
        return str(message)
    return str(error)


def classify_error(error: Any) -> ErrorKind:
    error_type = _error_type(error)
    if error_type == RATE_LIMIT_ERROR_TYPE:
        return ErrorKind.RATE_LIMITED
    if error_type == OVERLOADED_ERROR_TYPE:
        return ErrorKind.OVERLOADED
    return ErrorKind.OTHER


def is_rate_limit_error(error: Any) -> bool:
    return classify_error(error) is ErrorKind.RATE_LIMITED


def is_overloaded_error(error: Any) -> bool:
    return classify_error(error) is ErrorKind.OVERLOADED


def is_retryable(error: Any) -> bool:
    """Only rate-limit and overload errors are worth retrying."""
    return classify_error(error) in (ErrorKind.RATE_LIMITED, ErrorKind.OVERLOADED)


def format_error_message(error: Any) -> str:
    """Render an error for display to the user."""
    kind = classify_error(error)
    if kind is ErrorKind.RATE_LIMITED:
        return f"Rate limit error: {_error_detail(error)}"
    if kind is ErrorKind.OVERLOADED:
        return f"Anthropic servers overloaded: {_error_detail(error)}. Retrying..."
    return f"Error: {error}"


def calculate_backoff(error: Any, attempt_index: int = 0) -> int:
    """Milliseconds to wait before retry number ``attempt_index`` (0-based).

    ``base * 2**min(attempt, 5)`` plus up to 25% of base as random jitter.
    """
    base = OVERLOADED_BACKOFF_MS if classify_error(error) is ErrorKind.OVERLOADED else BASE_BACKOFF_MS
    exponent = min(max(attempt_index, 0), MAX_BACKOFF_EXPONENT)
    jitter = random.uniform(0, JITTER_FRACTION * base)
    return max(0, int(base * (2 ** exponent) + jitter))


def is_streaming_supported(provider: Any = None, client_identifier: Optional[str] = None) -> bool:
    """Whether incremental (server-push) responses can be used.

    False when the provider has no ``stream`` method or when the client
    identifier matches a known-incompatible pattern.
    """
    try:
        if provider is not None and not callable(getattr(provider, "stream", None)):
            return False
        if client_identifier:
            lowered = client_identifier.lower()
            if any(pattern in lowered for pattern in INCOMPATIBLE_CLIENT_PATTERNS):
                return False
        return True
    except Exception as e:
        logger.warning("Error checking streaming support: %s", e)
        return False
