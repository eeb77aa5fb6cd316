"""Runtime configuration read from the sandbox environment."""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_RETRY_DELAY,
    DEFAULT_REPORT_TIMEOUT,
    DEFAULT_RUNTIME_API_HOST,
    DEFAULT_RUNTIME_API_PORT,
    MAX_INVOCATIONS_ENV,
    MAX_POLL_ATTEMPTS_ENV,
    POLL_RETRY_DELAY_ENV,
    REPORT_TIMEOUT_ENV,
    RUNTIME_API_ENV,
    RUNTIME_API_PORT_ENV,
)


class RuntimeSettings(BaseModel):
    """
    Settings for the runtime client and loop.

    Environment variables:
        SCF_RUNTIME_API: Control plane host, or a full http:// URL
        SCF_RUNTIME_API_PORT: Control plane port when only a host is given
        SCF_RUNTIME_MAX_POLL_ATTEMPTS: Consecutive poll transport failures tolerated
        SCF_RUNTIME_POLL_RETRY_DELAY: Seconds between retries after 5xx/transport failures
        SCF_RUNTIME_REPORT_TIMEOUT: Seconds allowed for a report round trip
        SCF_RUNTIME_MAX_INVOCATIONS: Stop cleanly after this many invocations
    """

    runtime_api: str = Field(
        default=f"http://{DEFAULT_RUNTIME_API_HOST}:{DEFAULT_RUNTIME_API_PORT}",
        description="Base URL of the control plane",
    )
    max_poll_attempts: int = Field(default=DEFAULT_MAX_POLL_ATTEMPTS, ge=1)
    poll_retry_delay: float = Field(default=DEFAULT_POLL_RETRY_DELAY, ge=0)
    poll_timeout: Optional[float] = Field(default=None, gt=0)
    report_timeout: float = Field(default=DEFAULT_REPORT_TIMEOUT, gt=0)
    max_invocations: Optional[int] = Field(default=None, ge=1)

    model_config = {"frozen": True}

    @field_validator("runtime_api")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RuntimeSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        values = {"runtime_api": runtime_api_url(env)}

        optional = {
            "max_poll_attempts": MAX_POLL_ATTEMPTS_ENV,
            "poll_retry_delay": POLL_RETRY_DELAY_ENV,
            "report_timeout": REPORT_TIMEOUT_ENV,
            "max_invocations": MAX_INVOCATIONS_ENV,
        }
        for field_name, env_name in optional.items():
            raw = env.get(env_name)
            if raw not in (None, ""):
                values[field_name] = raw

        return cls(**values)


def runtime_api_url(environ: Mapping[str, str]) -> str:
    """Resolve the control plane base URL from SCF_RUNTIME_API and its port."""
    host = environ.get(RUNTIME_API_ENV) or DEFAULT_RUNTIME_API_HOST
    if host.startswith(("http://", "https://")):
        return host.rstrip("/")

    port = environ.get(RUNTIME_API_PORT_ENV) or str(DEFAULT_RUNTIME_API_PORT)
    if ":" in host:
        return f"http://{host}"
    return f"http://{host}:{port}"
