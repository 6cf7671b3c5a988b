"""Error taxonomy for taskpilot.

Every error that can end a chat turn carries a kind, a retryable flag, the
HTTP status it maps to and a templated user-facing message. Internal exception
text is kept on the exception for logging but never rendered to the client.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import litellm


class ErrorKind(Enum):
    """Categories of failure a request can end in."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    CONCURRENCY = "concurrency"
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_PERMANENT = "provider_permanent"
    TOOL = "tool"
    PERSISTENCE = "persistence"
    INTERNAL = "internal"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.CONFIGURATION: (
        "The assistant is not configured yet: no model or API credential is selected. "
        "Please finish the model setup and try again."
    ),
    ErrorKind.VALIDATION: "The request was incomplete. Please send a message and try again.",
    ErrorKind.CONCURRENCY: (
        "Another reply is still in progress for this conversation. "
        "Please wait a moment and try again."
    ),
    ErrorKind.PROVIDER_TRANSIENT: (
        "The language model is temporarily unavailable or rate limited. "
        "Please try again in a few seconds."
    ),
    ErrorKind.PROVIDER_PERMANENT: (
        "The language model rejected the request (invalid credentials or unknown model). "
        "Please check the model configuration."
    ),
    ErrorKind.TOOL: "One of the requested actions could not be completed.",
    ErrorKind.PERSISTENCE: (
        "Your reply was delivered but could not be saved to the conversation history."
    ),
    ErrorKind.INTERNAL: "Something went wrong while handling your message. Please try again.",
}


class TaskpilotError(Exception):
    """Base class for classified taskpilot errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.user_message)
        self.details = details

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]

    def to_payload(self) -> dict[str, Any]:
        """Render the client-facing error body."""
        return {
            "error": self.kind.value,
            "message": self.user_message,
            "retryable": self.retryable,
        }


class ConfigurationError(TaskpilotError):
    """No model or credential selected. Terminal, never retried."""

    kind = ErrorKind.CONFIGURATION
    status_code = 400


class RequestValidationError(TaskpilotError):
    """Missing request id or empty user text."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class SessionLockedError(TaskpilotError):
    """Another request holds the session lock."""

    kind = ErrorKind.CONCURRENCY
    status_code = 409

    def __init__(self, owner_request_id: str, expires_at: float) -> None:
        super().__init__(
            f"session locked by {owner_request_id} until {expires_at}",
        )
        self.owner_request_id = owner_request_id
        self.expires_at = expires_at

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": "session_locked",
            "ownerRequestId": self.owner_request_id,
            "expiresAt": self.expires_at,
            "message": self.user_message,
        }


class HistoryConflictError(TaskpilotError):
    """The caller's history version is stale."""

    kind = ErrorKind.CONCURRENCY
    status_code = 409

    def __init__(self, version: int) -> None:
        super().__init__(f"history version conflict, current version is {version}")
        self.version = version

    @property
    def user_message(self) -> str:
        return "The conversation changed since your last view. Please refresh and resend."

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": "history_conflict",
            "version": self.version,
            "message": self.user_message,
        }


class ProviderError(TaskpilotError):
    """Base for classified LLM provider failures."""


class ProviderTransientError(ProviderError):
    """Rate limiting, timeouts and transport errors."""

    kind = ErrorKind.PROVIDER_TRANSIENT
    status_code = 503
    retryable = True


class ProviderPermanentError(ProviderError):
    """Authentication failures and unknown models."""

    kind = ErrorKind.PROVIDER_PERMANENT
    status_code = 502


class ToolExecutionError(TaskpilotError):
    kind = ErrorKind.TOOL


class PersistenceError(TaskpilotError):
    kind = ErrorKind.PERSISTENCE


class ServiceOperationError(TaskpilotError):
    """A task/calendar service rejected an operation."""

    kind = ErrorKind.TOOL


class BatchTooLargeError(TaskpilotError):
    """A batch exceeded the command cap. Raised before any service call."""

    kind = ErrorKind.TOOL
    status_code = 400

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Batch size too large: {size} commands. Maximum is {limit} commands per batch."
        )
        self.size = size
        self.limit = limit


class ModeRegistrationError(TaskpilotError):
    """Attempt to overwrite a built-in mode."""


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)

_PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    litellm.AuthenticationError,
    litellm.PermissionDeniedError,
    litellm.NotFoundError,
    litellm.BadRequestError,
)


def classify_provider_error(exc: BaseException) -> ProviderError:
    """Map a raw provider exception onto the taxonomy.

    Order matters: litellm's permanent errors subclass its generic API error,
    so explicit types are checked before the status-code fallback.
    """
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, _TRANSIENT_TYPES):
        error: ProviderError = ProviderTransientError(str(exc))
    elif isinstance(exc, _PERMANENT_TYPES):
        error = ProviderPermanentError(str(exc))
    elif isinstance(exc, (TimeoutError, ConnectionError)):
        error = ProviderTransientError(str(exc))
    else:
        status = getattr(exc, "status_code", None)
        if isinstance(status, int) and (status == 429 or status >= 500):
            error = ProviderTransientError(str(exc))
        else:
            error = ProviderPermanentError(str(exc))
    error.__cause__ = exc
    return error


def client_error_message(exc: BaseException) -> str:
    """Text safe to show the model and the client for a failed action.

    Classified errors carry messages written for the user; anything else is
    replaced by the templated tool message and only reaches the log.
    """
    if isinstance(exc, TaskpilotError):
        return str(exc)
    return USER_MESSAGES[ErrorKind.TOOL]
