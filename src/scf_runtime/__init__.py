from .context import CancellationSignal, InitializationContext, InvocationContext, build_context
from .errors import (
    DecodeError,
    EncodeError,
    HandlerCancelledError,
    HandlerError,
    InitializationError,
    InvocationTimeoutError,
    PollError,
    PollErrorKind,
    ReportError,
    ReportErrorKind,
)
from .handler_protocol import (
    ByteHandler,
    EventHandler,
    Handler,
    HandlerFactory,
    JSONHandler,
    ModelHandler,
    StringHandler,
    handler_from_callable,
)
from .protocol import ErrorResponse, InvocationRequest
from .runtime import Runtime, RuntimePhase
from .runtime_client import RuntimeClient
from .settings import RuntimeSettings

__all__ = [
    "ByteHandler",
    "CancellationSignal",
    "DecodeError",
    "EncodeError",
    "ErrorResponse",
    "EventHandler",
    "Handler",
    "HandlerCancelledError",
    "HandlerError",
    "HandlerFactory",
    "InitializationContext",
    "InitializationError",
    "InvocationContext",
    "InvocationRequest",
    "InvocationTimeoutError",
    "JSONHandler",
    "ModelHandler",
    "PollError",
    "PollErrorKind",
    "ReportError",
    "ReportErrorKind",
    "Runtime",
    "RuntimeClient",
    "RuntimePhase",
    "RuntimeSettings",
    "StringHandler",
    "build_context",
    "handler_from_callable",
]
