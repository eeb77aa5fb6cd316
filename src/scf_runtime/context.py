"""Per-invocation context handed to user handlers."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from .logger import get_logger, invocation_logger
from .protocol import InvocationRequest

Clock = Callable[[], float]

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class CancellationSignal:
    """
    Cooperative cancellation token bound to an invocation deadline.

    The signal fires on its own once the clock reaches the deadline, or
    earlier when the runtime calls ``cancel()``. Handlers observe it; nothing
    here interrupts running code.
    """

    def __init__(self, deadline: float, clock: Clock = time.time, poll_interval: float = 0.05):
        self.deadline = deadline
        self._clock = clock
        self._poll_interval = poll_interval
        self._cancelled = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set() or self._clock() >= self.deadline

    def cancel(self) -> None:
        self._cancelled.set()

    def wait_blocking(self, timeout: Optional[float] = None) -> bool:
        """Block the calling thread until cancelled or ``timeout`` elapses. For sync handlers."""
        remaining: Optional[float] = max(self.deadline - self._clock(), 0.0)
        if timeout is not None:
            remaining = min(remaining, timeout)
        if remaining == float("inf"):
            remaining = None
        self._cancelled.wait(remaining)
        return self.is_cancelled

    async def wait(self) -> None:
        """Suspend until the signal fires."""
        while not self.is_cancelled:
            remaining = self.deadline - self._clock()
            await asyncio.sleep(max(min(remaining, self._poll_interval), 0))

    def __repr__(self) -> str:
        return f"CancellationSignal(deadline={self.deadline}, cancelled={self.is_cancelled})"


@dataclass(frozen=True)
class InvocationContext:
    """
    Immutable bundle describing one invocation.

    ``deadline`` is an absolute epoch timestamp in seconds. The context is
    never reused across invocations.
    """

    request_id: str
    memory_limit_mb: int
    time_limit_ms: int
    deadline: float
    logger: LoggerLike
    cancellation: CancellationSignal = field(repr=False)
    clock: Clock = field(default=time.time, repr=False, compare=False)

    def remaining_time_ms(self, now: Optional[float] = None) -> int:
        """Milliseconds left before the deadline, never negative."""
        current = self.clock() if now is None else now
        return max(int((self.deadline - current) * 1000), 0)

    def is_expired(self, now: Optional[float] = None) -> bool:
        current = self.clock() if now is None else now
        return current >= self.deadline


@dataclass(frozen=True)
class InitializationContext:
    """Handed to handler factories during the one-time initialization phase."""

    logger: LoggerLike


def build_context(
    request: InvocationRequest,
    now: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
    clock: Clock = time.time,
) -> InvocationContext:
    """
    Derive the InvocationContext for a freshly polled request.

    A zero time limit yields a deadline equal to ``now``: the invocation is
    already expired and the handler is timed out immediately.

    Args:
        request: The polled invocation
        now: Receipt timestamp in epoch seconds (defaults to ``clock()``)
        logger: Base logger the per-invocation adapter wraps
        clock: Time source used by the context helpers and cancellation signal
    """
    received_at = clock() if now is None else now
    if request.time_limit_ms > 0:
        deadline = received_at + request.time_limit_ms / 1000.0
    else:
        deadline = received_at

    return InvocationContext(
        request_id=request.request_id,
        memory_limit_mb=request.memory_limit_mb,
        time_limit_ms=request.time_limit_ms,
        deadline=deadline,
        logger=invocation_logger(request.request_id, logger),
        cancellation=CancellationSignal(deadline, clock=clock),
        clock=clock,
    )


def build_init_context(logger: Optional[logging.Logger] = None) -> InitializationContext:
    return InitializationContext(logger=logger or get_logger("init"))
