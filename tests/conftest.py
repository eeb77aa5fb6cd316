import asyncio

import pytest

from scf_runtime.context import build_context
from scf_runtime.handler_protocol import (
    ByteHandler,
    StringHandler,
    handler_from_callable,
)
from scf_runtime.protocol import InvocationRequest


class EchoHandler(ByteHandler):
    def handle(self, context, event):
        return event


class UpperHandler(StringHandler):
    async def handle(self, context, event):
        return event.upper()


class BoomError(Exception):
    pass


@pytest.fixture
def echo_handler():
    """Raw handler returning its payload unchanged."""
    return EchoHandler()


@pytest.fixture
def upper_handler():
    """Async string handler upper-casing its input."""
    return UpperHandler()


@pytest.fixture
def failing_handler():
    """Handler raising a business error with message 'boom'."""

    def fail(context, event):
        raise BoomError("boom")

    return handler_from_callable(fail)


@pytest.fixture
def slow_handler():
    """Async handler that keeps working a little past its cancellation signal."""

    async def wait_for_deadline(context, event):
        await context.cancellation.wait()
        await asyncio.sleep(0.1)
        return b"too late"

    return handler_from_callable(wait_for_deadline)


@pytest.fixture
def invocation_request():
    """Invocation as handed out by a well-behaved control plane."""
    return InvocationRequest(
        request_id="abc-123",
        payload=b"hello",
        time_limit_ms=3000,
        memory_limit_mb=128,
    )


@pytest.fixture
def invocation_context(invocation_request):
    return build_context(invocation_request, now=1_000.0)


@pytest.fixture
def sleep_calls(monkeypatch):
    """Record asyncio.sleep delays made by the runtime without waiting."""
    calls = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        calls.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("scf_runtime.runtime.asyncio.sleep", fake_sleep)
    return calls
