"""
Wire models for the SCF custom-runtime protocol.

The control plane hands out invocations as a raw body plus metadata headers
and accepts failures as a small JSON envelope. Both shapes live here so the
client, the runtime loop and the mock control plane agree on them.
"""

from typing import List, Mapping, Optional, Union

from pydantic import BaseModel, Field

from .constants import MEMORY_LIMIT_HEADER, REQUEST_ID_HEADER, TIME_LIMIT_HEADER


class MalformedHeaderError(ValueError):
    """Raised when invocation metadata headers cannot be mapped to typed fields."""

    def __init__(self, header: str, value: Optional[str]):
        self.header = header
        self.value = value
        if value is None:
            super().__init__(f"Missing required header '{header}'")
        else:
            super().__init__(f"Malformed value for header '{header}': {value!r}")


class ErrorResponse(BaseModel):
    """
    Failure envelope reported to the control plane.

    Serialized with camelCase keys. An absent stack trace is omitted from the
    JSON rather than encoded as an empty list.

    Example:
        {
            "errorType": "ValueError",
            "errorMessage": "boom",
            "stackTrace": ["Traceback (most recent call last):", "..."]
        }
    """

    error_type: str = Field(alias="errorType", description="Error classification")
    error_message: str = Field(alias="errorMessage", description="Human readable description")
    stack_trace: Optional[List[str]] = Field(
        default=None, alias="stackTrace", description="Formatted traceback lines"
    )

    model_config = {"populate_by_name": True, "frozen": True}

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "ErrorResponse":
        return cls.model_validate_json(data)


class InvocationRequest(BaseModel):
    """One unit of work handed out by the control plane."""

    request_id: str = Field(min_length=1, description="Opaque per-invocation id")
    payload: bytes = Field(default=b"", description="Raw request body")
    time_limit_ms: int = Field(default=0, ge=0, description="Remaining budget at receipt")
    memory_limit_mb: int = Field(default=0, ge=0, description="Sandbox memory ceiling")

    model_config = {"frozen": True}

    @classmethod
    def from_http(cls, headers: Mapping[str, str], body: bytes) -> "InvocationRequest":
        """
        Map a next-invocation response onto an InvocationRequest.

        Rules:
            request_id: required and non-empty.
            time_limit_in_ms: absent means 0 (already expired).
            memory_limit_in_mb: absent means 0 (unknown).
        A present but non-integer or negative limit is malformed.

        Raises:
            MalformedHeaderError: If a header violates the rules above.
        """
        normalized = {key.lower(): value for key, value in headers.items()}

        request_id = (normalized.get(REQUEST_ID_HEADER) or "").strip()
        if not request_id:
            raise MalformedHeaderError(REQUEST_ID_HEADER, None)

        return cls(
            request_id=request_id,
            payload=body,
            time_limit_ms=_parse_limit(normalized, TIME_LIMIT_HEADER),
            memory_limit_mb=_parse_limit(normalized, MEMORY_LIMIT_HEADER),
        )


def _parse_limit(headers: Mapping[str, str], name: str) -> int:
    raw = headers.get(name)
    if raw is None:
        return 0
    value = raw.strip()
    if not (value.isascii() and value.isdigit()):
        raise MalformedHeaderError(name, raw)
    return int(value)
