"""
Testing helpers.

- MockControlPlane: an aiohttp application implementing the four control
  plane endpoints against a pluggable behavior, including the ``timeout``
  and ``disconnect`` sentinel request ids.
- invoke_handler / run_handler: run a handler once against a synthesized
  context without any control plane.

Example:
    behavior = ScriptedBehavior([Invocation("abc-123", "hello")])
    server = TestServer(MockControlPlane(behavior).app)
"""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from aiohttp import web
from pydantic import ValidationError

from .constants import (
    DISCONNECT_REQUEST_ID,
    GET_NEXT_INVOCATION_PATH,
    MEMORY_LIMIT_HEADER,
    POST_ERROR_PATH,
    POST_INIT_ERROR_PATH,
    POST_RESPONSE_PATH,
    REQUEST_ID_HEADER,
    TIME_LIMIT_HEADER,
    TIMEOUT_REQUEST_ID,
)
from .context import build_context
from .handler_protocol import EventHandler, Handler, call_handler
from .logger import get_logger
from .protocol import ErrorResponse, InvocationRequest


@dataclass
class Invocation:
    """One scripted answer to a next-invocation poll."""

    request_id: str
    body: Union[str, bytes] = b""
    time_limit_ms: Optional[int] = 3000
    memory_limit_mb: Optional[int] = 128
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def payload(self) -> bytes:
        return self.body.encode("utf-8") if isinstance(self.body, str) else self.body

    def response_headers(self) -> Dict[str, str]:
        headers = {REQUEST_ID_HEADER: self.request_id}
        if self.time_limit_ms is not None:
            headers[TIME_LIMIT_HEADER] = str(self.time_limit_ms)
        if self.memory_limit_mb is not None:
            headers[MEMORY_LIMIT_HEADER] = str(self.memory_limit_mb)
        headers.update(self.headers)
        return headers


PollAnswer = Union[Invocation, int]
"""An Invocation to hand out, or an HTTP status to fail the poll with."""


class ControlPlaneBehavior(ABC):
    """What the mock control plane answers. Status 200 means accepted."""

    @abstractmethod
    async def get_invocation(self) -> PollAnswer:
        pass

    @abstractmethod
    def process_response(self, request_id: str, body: bytes) -> int:
        pass

    @abstractmethod
    def process_error(self, request_id: str, error: ErrorResponse) -> int:
        pass

    @abstractmethod
    def process_init_error(self, error: ErrorResponse) -> int:
        pass


class ScriptedBehavior(ControlPlaneBehavior):
    """
    Replays a fixed list of poll answers and records every report.

    Once the script is exhausted, polls block like an idle long poll until
    ``close()`` is called.
    """

    def __init__(
        self,
        answers: Iterable[PollAnswer] = (),
        response_status: int = 200,
        error_status: int = 200,
        init_error_status: int = 200,
    ):
        self.answers: List[PollAnswer] = list(answers)
        self.response_status = response_status
        self.error_status = error_status
        self.init_error_status = init_error_status

        self.polls = 0
        self.responses: List[Tuple[str, bytes]] = []
        self.errors: List[Tuple[str, ErrorResponse]] = []
        self.init_errors: List[ErrorResponse] = []
        self.idle = asyncio.Event()
        self._closed = asyncio.Event()

    async def get_invocation(self) -> PollAnswer:
        self.polls += 1
        if self.answers:
            return self.answers.pop(0)
        self.idle.set()
        await self._closed.wait()
        return 503

    def close(self) -> None:
        """Release polls blocked on an exhausted script with a 503."""
        self._closed.set()

    def process_response(self, request_id: str, body: bytes) -> int:
        self.responses.append((request_id, body))
        return self.response_status

    def process_error(self, request_id: str, error: ErrorResponse) -> int:
        self.errors.append((request_id, error))
        return self.error_status

    def process_init_error(self, error: ErrorResponse) -> int:
        self.init_errors.append(error)
        return self.init_error_status


class MockControlPlane:
    """aiohttp application speaking the control plane side of the protocol."""

    def __init__(self, behavior: ControlPlaneBehavior):
        self.behavior = behavior
        self.logger = get_logger(__name__)
        self.app = web.Application()
        self.app.router.add_get(GET_NEXT_INVOCATION_PATH, self.next_invocation)
        self.app.router.add_post(
            POST_RESPONSE_PATH.format(request_id="{request_id}"), self.invocation_response
        )
        self.app.router.add_post(
            POST_ERROR_PATH.format(request_id="{request_id}"), self.invocation_error
        )
        self.app.router.add_post(POST_INIT_ERROR_PATH, self.init_error)

    async def next_invocation(self, request: web.Request) -> web.StreamResponse:
        answer = await self.behavior.get_invocation()
        if isinstance(answer, int):
            return web.Response(status=answer)

        if answer.request_id == TIMEOUT_REQUEST_ID:
            delay_ms = _pause_ms(answer.payload)
            self.logger.info(f"Sentinel '{TIMEOUT_REQUEST_ID}': pausing {delay_ms} ms")
            await asyncio.sleep(delay_ms / 1000.0)
        elif answer.request_id == DISCONNECT_REQUEST_ID:
            self.logger.info(f"Sentinel '{DISCONNECT_REQUEST_ID}': closing connection")
            if request.transport is not None:
                request.transport.close()
            return web.Response(status=200)

        return web.Response(
            status=200, body=answer.payload, headers=answer.response_headers()
        )

    async def invocation_response(self, request: web.Request) -> web.Response:
        body = await request.read()
        status = self.behavior.process_response(request.match_info["request_id"], body)
        return web.Response(status=status)

    async def invocation_error(self, request: web.Request) -> web.Response:
        error = await self._read_error(request)
        if error is None:
            return web.Response(status=400)
        status = self.behavior.process_error(request.match_info["request_id"], error)
        return web.Response(status=status)

    async def init_error(self, request: web.Request) -> web.Response:
        error = await self._read_error(request)
        if error is None:
            return web.Response(status=400)
        return web.Response(status=self.behavior.process_init_error(error))

    async def _read_error(self, request: web.Request) -> Optional[ErrorResponse]:
        try:
            return ErrorResponse.from_json(await request.read())
        except ValidationError as e:
            self.logger.warning(f"Rejecting malformed error envelope: {e}")
            return None


def _pause_ms(body: bytes) -> int:
    # an unreadable duration means no pause
    text = body.decode("utf-8", errors="replace").strip()
    return int(text) if text.isascii() and text.isdigit() else 0


@dataclass
class TestConfig:
    """Invocation metadata used by invoke_handler."""

    __test__ = False

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    memory_limit_mb: int = 128
    time_limit_ms: int = 5000


async def invoke_handler(
    handler: Handler, event: Any, config: Optional[TestConfig] = None
) -> Any:
    """
    Run ``handler`` once with ``event`` and return its result.

    Typed handlers receive ``event`` as their input type and return their
    output type; byte-level handlers receive and return bytes. Errors raised
    by the handler propagate to the caller.
    """
    config = config or TestConfig()
    request = InvocationRequest(
        request_id=config.request_id,
        time_limit_ms=config.time_limit_ms,
        memory_limit_mb=config.memory_limit_mb,
    )
    context = build_context(request, now=time.time())

    if isinstance(handler, EventHandler):
        return await call_handler(handler.target, context, event)
    return await handler.invoke(context, event)


def run_handler(handler: Handler, event: Any, config: Optional[TestConfig] = None) -> Any:
    """Synchronous wrapper around invoke_handler."""
    return asyncio.run(invoke_handler(handler, event, config))
