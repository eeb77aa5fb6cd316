"""
Runtime loop driving one SCF function sandbox.

Lifecycle:
    Initializing -> Polling -> Invoking -> Reporting -> Polling -> ... -> Terminated

Exactly one invocation is in flight at a time. The report for invocation N
is always sent (or abandoned) before the poll for invocation N+1 starts.
"""

import asyncio
import inspect
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from .context import Clock, InvocationContext, build_context, build_init_context
from .errors import (
    HandlerCancelledError,
    InitializationError,
    InvocationTimeoutError,
    PollError,
    ReportError,
    describe_exception,
    error_response_from_exception,
)
from .handler_protocol import Handler, HandlerFactory
from .logger import get_logger
from .protocol import InvocationRequest
from .runtime_client import RuntimeClient
from .settings import RuntimeSettings

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

PHASE_HISTORY_LIMIT = 256


class RuntimePhase(str, Enum):
    UNINITIALIZED = "Uninitialized"
    INITIALIZING = "Initializing"
    POLLING = "Polling"
    INVOKING = "Invoking"
    REPORTING = "Reporting"
    TERMINATED = "Terminated"


class Runtime:
    """
    Orchestrates initialization and the invoke/report cycle.

    Every failure is turned into exactly one of: retry (poll errors),
    report-and-continue (handler, decode and timeout errors), or
    report-and-terminate (initialization errors, exhausted poll retries).
    """

    def __init__(
        self,
        factory: HandlerFactory,
        client: Optional[RuntimeClient] = None,
        settings: Optional[RuntimeSettings] = None,
        clock: Clock = time.time,
    ):
        self.factory = factory
        self.settings = settings or (client.settings if client else RuntimeSettings())
        self.client = client or RuntimeClient(self.settings)
        self._owns_client = client is None
        self.clock = clock
        self.logger = get_logger(__name__)

        self._phase = RuntimePhase.UNINITIALIZED
        self._phase_history: Deque[RuntimePhase] = deque(
            [self._phase], maxlen=PHASE_HISTORY_LIMIT
        )
        self._stop_requested = False
        self._poll_task: Optional[asyncio.Task] = None
        self.invocation_count = 0
        self.exit_code: Optional[int] = None

    @property
    def phase(self) -> RuntimePhase:
        return self._phase

    @property
    def phase_history(self) -> Tuple[RuntimePhase, ...]:
        return tuple(self._phase_history)

    def _set_phase(self, phase: RuntimePhase) -> None:
        self._phase = phase
        self._phase_history.append(phase)

    def stop(self) -> None:
        """
        Request a graceful stop.

        A pending long poll is abandoned; an invocation in progress is
        finished and reported first.
        """
        self._stop_requested = True
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()

    async def run(self) -> int:
        """
        Run until a fatal error, a stop request, or ``max_invocations``.

        Returns:
            Process exit status: 0 for a clean stop, 1 for a fatal failure
        """
        try:
            try:
                handler = await self._initialize()
            except InitializationError as e:
                await self._report_init_error(e)
                return self._terminate(EXIT_FAILURE)

            return await self._serve(handler)
        finally:
            if self._owns_client:
                await self.client.close()

    async def _initialize(self) -> Handler:
        self._set_phase(RuntimePhase.INITIALIZING)
        self.logger.info("Initializing handler")

        try:
            handler: Any = self.factory(build_init_context())
            if inspect.isawaitable(handler):
                handler = await handler
            if not isinstance(handler, Handler):
                raise TypeError(
                    f"Handler factory returned {type(handler).__name__}, expected a Handler"
                )
        except Exception as e:
            self.logger.error(f"Handler initialization failed: {describe_exception(e)}", exc_info=True)
            raise InitializationError(e) from e

        self.logger.info(f"Handler initialized: {type(handler).__name__}")
        return handler

    async def _report_init_error(self, error: InitializationError) -> None:
        self._set_phase(RuntimePhase.REPORTING)
        try:
            await self.client.post_init_error(error_response_from_exception(error))
        except ReportError as e:
            self.logger.error(f"Failed to report initialization error: {e}")

    def _terminate(self, exit_code: int) -> int:
        self._set_phase(RuntimePhase.TERMINATED)
        self.exit_code = exit_code
        self.logger.info(
            f"Runtime terminated with exit code {exit_code} "
            f"after {self.invocation_count} invocation(s)"
        )
        return exit_code

    async def _serve(self, handler: Handler) -> int:
        transport_failures = 0

        while not self._stop_requested:
            self._set_phase(RuntimePhase.POLLING)
            try:
                request = await self._poll()
            except PollError as e:
                if not e.is_transport_failure:
                    transport_failures = 0
                else:
                    transport_failures += 1
                    if transport_failures >= self.settings.max_poll_attempts:
                        self.logger.error(
                            f"Giving up after {transport_failures} consecutive "
                            f"transport failures: {e}"
                        )
                        return self._terminate(EXIT_FAILURE)

                # 4xx points at a client bug, waiting will not change the answer
                delay = 0.0 if e.is_client_error else self.settings.poll_retry_delay
                self.logger.warning(f"Polling failed ({e.kind.value}): {e}; retrying")
                if delay:
                    await asyncio.sleep(delay)
                continue
            except asyncio.CancelledError:
                if self._stop_requested:
                    break
                raise

            transport_failures = 0
            await self._process(handler, request)
            self.invocation_count += 1

            max_invocations = self.settings.max_invocations
            if max_invocations is not None and self.invocation_count >= max_invocations:
                self.logger.info(f"Reached max invocations ({max_invocations}), stopping")
                break

        return self._terminate(EXIT_SUCCESS)

    async def _poll(self) -> InvocationRequest:
        self._poll_task = asyncio.ensure_future(self.client.get_next_invocation())
        try:
            return await self._poll_task
        finally:
            self._poll_task = None

    async def _process(self, handler: Handler, request: InvocationRequest) -> None:
        self._set_phase(RuntimePhase.INVOKING)
        context = build_context(request, clock=self.clock)
        context.logger.debug(
            f"Invoking handler ({context.remaining_time_ms()} ms remaining)"
        )

        error: Optional[BaseException] = None
        body = b""
        try:
            body = await self._invoke_with_deadline(handler, context, request.payload)
        except Exception as e:
            error = e

        self._set_phase(RuntimePhase.REPORTING)
        if error is None:
            await self._report(
                "response", self.client.post_response, request.request_id, body
            )
        else:
            context.logger.warning(
                f"Invocation failed: {type(error).__name__}: {describe_exception(error)}"
            )
            await self._report(
                "error",
                self.client.post_error,
                request.request_id,
                error_response_from_exception(error),
            )

    async def _invoke_with_deadline(
        self, handler: Handler, context: InvocationContext, payload: bytes
    ) -> bytes:
        """
        Race the handler against the context deadline.

        On expiry the handler task is left running (its cancellation signal
        is fired so it can stop itself) and InvocationTimeoutError is raised.
        """
        remaining = context.deadline - self.clock()
        if remaining <= 0:
            context.cancellation.cancel()
            raise InvocationTimeoutError(context.request_id, context.time_limit_ms)

        task = asyncio.ensure_future(handler.invoke(context, payload))
        done, _ = await asyncio.wait({task}, timeout=remaining)
        if task in done:
            # cancellation raised inside user code is a handler failure, not a stop
            if task.cancelled():
                raise HandlerCancelledError(context.request_id)
            return task.result()

        context.cancellation.cancel()
        task.add_done_callback(self._abandoned_task_done(context))
        raise InvocationTimeoutError(context.request_id, context.time_limit_ms)

    def _abandoned_task_done(self, context: InvocationContext) -> Callable[[asyncio.Task], None]:
        def _done(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                context.logger.info(f"Timed-out handler finished with {type(exc).__name__}: {describe_exception(exc)}")
            else:
                context.logger.info("Timed-out handler finished; result discarded")

        return _done

    async def _report(
        self, what: str, post: Callable[..., Awaitable[None]], request_id: str, payload: Any
    ) -> None:
        # rejected reports are never retried: the slot may already be reassigned
        try:
            await post(request_id, payload)
        except ReportError as e:
            self.logger.warning(
                f"Control plane did not accept {what} for {request_id} ({e.kind.value}): {e}"
            )
