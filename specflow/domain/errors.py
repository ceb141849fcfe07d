"""Error taxonomy - validation, upstream, precondition and workflow errors."""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes surfaced to callers."""

    MISSING_API_KEY = "MISSING_API_KEY"
    MISSING_MODEL = "MISSING_MODEL"
    MISSING_PROMPTS = "MISSING_PROMPTS"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_API_KEY = "INVALID_API_KEY"
    RATE_LIMITED = "RATE_LIMITED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    CONTEXT_TOO_LONG = "CONTEXT_TOO_LONG"
    NETWORK_ERROR = "NETWORK_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_CODE_STATUS = {
    ErrorCode.MISSING_API_KEY.value: 400,
    ErrorCode.MISSING_MODEL.value: 400,
    ErrorCode.MISSING_PROMPTS.value: 400,
    ErrorCode.INVALID_REQUEST.value: 400,
    ErrorCode.INVALID_API_KEY.value: 401,
    ErrorCode.RATE_LIMITED.value: 429,
    ErrorCode.MODEL_NOT_FOUND.value: 404,
    ErrorCode.INSUFFICIENT_CREDITS.value: 402,
    ErrorCode.CONTEXT_TOO_LONG.value: 413,
    ErrorCode.NETWORK_ERROR.value: 502,
    ErrorCode.INTERNAL_ERROR.value: 500,
}

# Upstream status -> taxonomy code. Anything else passes through as HTTP_{status}.
_STATUS_CODE = {
    401: ErrorCode.INVALID_API_KEY,
    402: ErrorCode.INSUFFICIENT_CREDITS,
    404: ErrorCode.MODEL_NOT_FOUND,
    413: ErrorCode.CONTEXT_TOO_LONG,
    429: ErrorCode.RATE_LIMITED,
}


def http_status_for_code(code: str) -> int:
    """Map an error code to the HTTP status used at the server boundary.

    Passthrough ``HTTP_{status}`` codes keep client statuses and collapse
    upstream 5xx to 502 (bad gateway). Unknown codes map to 500.
    """
    if code in _CODE_STATUS:
        return _CODE_STATUS[code]
    if code.startswith("HTTP_"):
        try:
            status = int(code[5:])
        except ValueError:
            return 500
        if status >= 500:
            return 502
        if 400 <= status < 500:
            return status
    return 500


def code_for_status(status: int) -> str:
    """Classify an upstream HTTP status into an error code (0 = network failure)."""
    if status == 0:
        return ErrorCode.NETWORK_ERROR.value
    if status in _STATUS_CODE:
        return _STATUS_CODE[status].value
    return f"HTTP_{status}"


def is_retryable_status(status: int) -> bool:
    """Whether a caller should offer "try again" for this status (0 = network)."""
    return status == 0 or status >= 500 or status in (408, 429)


class SpecFlowError(Exception):
    """Base error for the spec workflow."""


class CompletionError(SpecFlowError):
    """Typed failure from the completion API or its request validation."""

    def __init__(
        self,
        message: str,
        status: int = 0,
        code: str | None = None,
        upstream_code: str | int | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code or code_for_status(status)
        self.upstream_code = upstream_code
        self.retryable = is_retryable_status(status) if retryable is None else retryable
        self.retry_after = retry_after
        self.details = details

    @property
    def http_status(self) -> int:
        """Status to return at a server boundary."""
        return http_status_for_code(self.code)

    def to_payload(self) -> dict:
        """JSON error envelope body."""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            error["details"] = self.details
        return {"error": error}

    def __repr__(self) -> str:
        return f"CompletionError(status={self.status}, code={self.code!r}, message={self.message!r})"


class InvalidRequestError(CompletionError):
    """Request rejected before any network call (missing or malformed fields)."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> None:
        super().__init__(message, status=400, code=code.value, retryable=False)


class TokenBudgetError(SpecFlowError, ValueError):
    """Prompt cannot fit the model's context window."""

    code = ErrorCode.CONTEXT_TOO_LONG.value


class GenerationTimeoutError(SpecFlowError, TimeoutError):
    """A generation call exceeded its timeout."""


class WorkflowError(SpecFlowError):
    """Invalid operation for the current workflow state."""


class PreconditionError(WorkflowError):
    """Phase cannot be generated yet (missing or unapproved input)."""


class PhaseTransitionError(WorkflowError):
    """Phase transition rejected by the approval gate."""


class GenerationInProgressError(WorkflowError):
    """Another generation is already in flight."""
