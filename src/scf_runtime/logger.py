"""
Logging configuration for scf-runtime.

Provides centralized logging setup with level-based formatting and a
request-scoped adapter that stamps correlation fields on every record.
"""

import logging
import os
import sys
from typing import Any, MutableMapping, Optional, Tuple, Union

from .constants import LOG_LEVEL_ENV, NAMESPACE


def get_log_level() -> int:
    """Read LOG_LEVEL; unknown names fall back to INFO."""
    return _level_from_name(os.environ.get(LOG_LEVEL_ENV, "INFO"))


def _level_from_name(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def get_log_format(level: int) -> str:
    """Get appropriate log format based on level."""
    if level == logging.DEBUG:
        return "%(asctime)s | %(levelname)-5s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
    return "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s"


def setup_logging(
    level: Optional[Union[int, str]] = None,
    stream=sys.stdout,
    fmt: Optional[str] = None,
) -> None:
    """
    Setup logging configuration for the runtime process.

    Args:
        level: Log level (defaults to LOG_LEVEL env var or INFO)
        stream: Output stream for logs
        fmt: Custom format string (auto-selected based on level if None)
    """
    if level is None:
        level = get_log_level()
    elif isinstance(level, str):
        level = _level_from_name(level)

    if fmt is None:
        fmt = get_log_format(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not root_logger.hasHandlers():
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(fmt))
        root_logger.addHandler(handler)

    # aiohttp access/connection chatter drowns out invocation logs
    if level == logging.DEBUG:
        logging.getLogger("aiohttp").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the runtime namespace, keyed by the module's short name."""
    return logging.getLogger(f"{NAMESPACE}.{name.split('.')[-1]}")


class InvocationLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter carrying the correlation fields of one invocation.

    The fields are attached to each record's ``extra`` (so structured
    handlers can pick them up) and prefixed to the message text.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        fields = dict(self.extra or {})
        extra = kwargs.get("extra") or {}
        kwargs["extra"] = {**fields, **extra}
        request_id = fields.get("request_id")
        if request_id:
            msg = f"[{request_id}] {msg}"
        return msg, kwargs


def invocation_logger(
    request_id: str, base: Optional[logging.Logger] = None
) -> InvocationLoggerAdapter:
    """Build the per-invocation logger handed to user handlers."""
    if base is None:
        base = logging.getLogger(f"{NAMESPACE}.invocation")
    return InvocationLoggerAdapter(base, {"request_id": request_id})
