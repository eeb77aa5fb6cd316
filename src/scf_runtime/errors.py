"""
Error taxonomy for the runtime.

Every failure is classified where it is detected:
- PollError: retried by the runtime loop (fatal once transport retries run out)
- ReportError: logged and absorbed, the loop moves on to the next poll
- HandlerError: reported to the control plane as an invocation error
- InitializationError: reported as an init error, then the process ends
"""

import traceback
from enum import Enum
from typing import Optional

from .constants import INVALID_ERROR_SHAPE_STATUS
from .protocol import ErrorResponse


class PollErrorKind(str, Enum):
    BAD_REQUEST = "BadRequest"
    TOO_MANY_REQUESTS = "TooManyRequests"
    INTERNAL_SERVER_ERROR = "InternalServerError"
    UNEXPECTED_STATUS = "UnexpectedStatus"
    PROTOCOL_ERROR = "ProtocolError"
    TRANSPORT_FAILURE = "TransportFailure"


class ReportErrorKind(str, Enum):
    INVALID_ERROR_SHAPE = "InvalidErrorShape"
    BAD_REQUEST = "BadRequest"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    TOO_MANY_REQUESTS = "TooManyRequests"
    INTERNAL_SERVER_ERROR = "InternalServerError"
    UNEXPECTED_STATUS = "UnexpectedStatus"
    TRANSPORT_FAILURE = "TransportFailure"


POLL_STATUS_KINDS = {
    400: PollErrorKind.BAD_REQUEST,
    429: PollErrorKind.TOO_MANY_REQUESTS,
    500: PollErrorKind.INTERNAL_SERVER_ERROR,
}

REPORT_STATUS_KINDS = {
    400: ReportErrorKind.BAD_REQUEST,
    413: ReportErrorKind.PAYLOAD_TOO_LARGE,
    429: ReportErrorKind.TOO_MANY_REQUESTS,
    500: ReportErrorKind.INTERNAL_SERVER_ERROR,
}


class RuntimeClientError(Exception):
    """Base class for failures talking to the control plane."""

    def __init__(self, kind: Enum, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, status={self.status})"


class PollError(RuntimeClientError):
    """Fetching the next invocation failed."""

    kind: PollErrorKind

    @property
    def is_transport_failure(self) -> bool:
        return self.kind is PollErrorKind.TRANSPORT_FAILURE

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500

    @classmethod
    def from_status(cls, status: int) -> "PollError":
        kind = POLL_STATUS_KINDS.get(status, PollErrorKind.UNEXPECTED_STATUS)
        return cls(kind, f"Control plane answered poll with HTTP {status}", status)


class ReportError(RuntimeClientError):
    """Reporting a response, error, or init error failed."""

    kind: ReportErrorKind

    @classmethod
    def from_status(cls, status: int) -> "ReportError":
        if status == INVALID_ERROR_SHAPE_STATUS:
            kind = ReportErrorKind.INVALID_ERROR_SHAPE
        else:
            kind = REPORT_STATUS_KINDS.get(status, ReportErrorKind.UNEXPECTED_STATUS)
        return cls(kind, f"Control plane rejected report with HTTP {status}", status)


class RuntimeClientStateError(RuntimeError):
    """A protocol call was made out of sequence."""


class HandlerError(Exception):
    """
    Base class for per-invocation failures.

    ``error_type`` is what the control plane sees as ``errorType``; it
    defaults to the exception's class name.
    """

    error_type: Optional[str] = None

    @property
    def classification(self) -> str:
        return self.error_type or type(self).__name__


class DecodeError(HandlerError):
    """The payload could not be converted to the handler's input type."""

    error_type = "DecodeError"


class EncodeError(HandlerError):
    """The handler's output could not be converted to a response body."""

    error_type = "EncodeError"


class InvocationTimeoutError(HandlerError):
    """The handler did not finish before the invocation deadline."""

    error_type = "Timeout"

    def __init__(self, request_id: str, time_limit_ms: int):
        super().__init__(
            f"Invocation {request_id} exceeded its time limit of {time_limit_ms} ms"
        )
        self.request_id = request_id
        self.time_limit_ms = time_limit_ms


class HandlerCancelledError(HandlerError):
    """The handler task was cancelled from inside user code."""

    error_type = "Cancelled"

    def __init__(self, request_id: str):
        super().__init__(f"Handler for invocation {request_id} was cancelled")
        self.request_id = request_id


class InitializationError(Exception):
    """The handler factory failed; the sandbox can never serve an invocation."""

    def __init__(self, cause: BaseException):
        super().__init__(describe_exception(cause))
        self.cause = cause


def describe_exception(error: BaseException) -> str:
    """
    Render ``error`` for messages and logs without ever raising.

    An empty message becomes the class name. When ``__str__`` itself raises,
    ``repr()`` is tried before giving up on the class name.
    """
    try:
        return str(error) or type(error).__name__
    except Exception:
        pass
    try:
        return repr(error)
    except Exception:
        return type(error).__name__


def classify(error: BaseException) -> str:
    """Return the errorType reported for ``error``."""
    if isinstance(error, HandlerError):
        return error.classification
    if isinstance(error, InitializationError):
        return classify(error.cause)
    return type(error).__name__


def error_response_from_exception(
    error: BaseException, include_stack_trace: bool = True
) -> ErrorResponse:
    """
    Convert any exception into the ErrorResponse reported to the control plane.

    Args:
        error: The exception raised by a handler, a codec, or a factory
        include_stack_trace: Attach the formatted traceback when one exists

    Returns:
        ErrorResponse with errorType from the error's classification and
        errorMessage from its description
    """
    source = error.cause if isinstance(error, InitializationError) else error
    message = describe_exception(source)

    stack_trace = None
    if include_stack_trace and source.__traceback__ is not None:
        stack_trace = [
            line.rstrip("\n")
            for line in traceback.format_exception(
                type(source), source, source.__traceback__
            )
        ]

    return ErrorResponse(
        error_type=classify(error),
        error_message=message,
        stack_trace=stack_trace,
    )
