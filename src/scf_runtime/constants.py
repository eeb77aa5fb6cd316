# Logger Configuration
NAMESPACE = "scf"
"""Application logger namespace for all components."""

# Control Plane Endpoints
GET_NEXT_INVOCATION_PATH = "/runtime/invocation/next"
"""Long-poll endpoint returning the next invocation payload."""

POST_RESPONSE_PATH = "/runtime/invocation/{request_id}/response"
"""Endpoint accepting the raw result body of an invocation."""

POST_ERROR_PATH = "/runtime/invocation/{request_id}/error"
"""Endpoint accepting an ErrorResponse for a failed invocation."""

POST_INIT_ERROR_PATH = "/runtime/init/error"
"""Endpoint accepting an ErrorResponse for a failed initialization."""

# Invocation Headers (matched case-insensitively)
REQUEST_ID_HEADER = "request_id"
"""Header carrying the opaque invocation id."""

TIME_LIMIT_HEADER = "time_limit_in_ms"
"""Header carrying the remaining execution budget in milliseconds."""

MEMORY_LIMIT_HEADER = "memory_limit_in_mb"
"""Header carrying the sandbox memory ceiling in megabytes."""

# Test-only Sentinel Request Ids
TIMEOUT_REQUEST_ID = "timeout"
"""Control plane pauses for the body's milliseconds before answering."""

DISCONNECT_REQUEST_ID = "disconnect"
"""Control plane closes the connection without answering."""

INVALID_ERROR_SHAPE_STATUS = 299
"""Status a control plane answers when it rejects the error envelope itself."""

# Environment Variables
RUNTIME_API_ENV = "SCF_RUNTIME_API"
RUNTIME_API_PORT_ENV = "SCF_RUNTIME_API_PORT"
MAX_POLL_ATTEMPTS_ENV = "SCF_RUNTIME_MAX_POLL_ATTEMPTS"
POLL_RETRY_DELAY_ENV = "SCF_RUNTIME_POLL_RETRY_DELAY"
REPORT_TIMEOUT_ENV = "SCF_RUNTIME_REPORT_TIMEOUT"
MAX_INVOCATIONS_ENV = "SCF_RUNTIME_MAX_INVOCATIONS"
HANDLER_MODULE_ENV = "HANDLER_MODULE"
HANDLER_FALLBACK_ENV = "_HANDLER"
LOG_LEVEL_ENV = "LOG_LEVEL"

# Defaults
DEFAULT_RUNTIME_API_HOST = "127.0.0.1"
"""Control plane host used when SCF_RUNTIME_API is not set."""

DEFAULT_RUNTIME_API_PORT = 9001
"""Control plane port used when SCF_RUNTIME_API_PORT is not set."""

DEFAULT_MAX_POLL_ATTEMPTS = 5
"""Consecutive transport failures tolerated while polling before giving up."""

DEFAULT_POLL_RETRY_DELAY = 0.5
"""Seconds to wait before re-polling after a 5xx or transport failure."""

DEFAULT_REPORT_TIMEOUT = 30.0
"""Seconds allowed for a response/error report round trip."""

DEFAULT_HANDLER_MODULE = "index"
"""Module imported for the handler when nothing else is configured."""
