"""RuntimeClient against the mock control plane over real HTTP."""

import asyncio
import time

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from scf_runtime.errors import (
    PollError,
    PollErrorKind,
    ReportError,
    ReportErrorKind,
    RuntimeClientStateError,
)
from scf_runtime.protocol import ErrorResponse
from scf_runtime.settings import RuntimeSettings
from scf_runtime.testing import Invocation


class TestGetNextInvocation:
    @pytest.mark.asyncio
    async def test_receives_invocation(self, control_plane, runtime_client):
        behavior, settings = await control_plane(Invocation("abc-123", "hello"))
        client = runtime_client(settings)

        request = await client.get_next_invocation()

        assert request.request_id == "abc-123"
        assert request.payload == b"hello"
        assert request.time_limit_ms == 3000
        assert request.memory_limit_mb == 128
        assert behavior.polls == 1

    @pytest.mark.asyncio
    async def test_missing_time_limit_means_expired(self, control_plane, runtime_client):
        _behavior, settings = await control_plane(
            Invocation("abc", b"", time_limit_ms=None, memory_limit_mb=None)
        )

        request = await runtime_client(settings).get_next_invocation()

        assert request.time_limit_ms == 0
        assert request.memory_limit_mb == 0

    @pytest.mark.asyncio
    async def test_malformed_header_is_a_protocol_error(self, control_plane, runtime_client):
        _behavior, settings = await control_plane(
            Invocation("abc", b"", headers={"time_limit_in_ms": "soon"})
        )

        with pytest.raises(PollError) as exc_info:
            await runtime_client(settings).get_next_invocation()

        assert exc_info.value.kind is PollErrorKind.PROTOCOL_ERROR
        assert "time_limit_in_ms" in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,kind",
        [
            (400, PollErrorKind.BAD_REQUEST),
            (429, PollErrorKind.TOO_MANY_REQUESTS),
            (500, PollErrorKind.INTERNAL_SERVER_ERROR),
        ],
    )
    async def test_error_statuses(self, control_plane, runtime_client, status, kind):
        _behavior, settings = await control_plane(status)

        with pytest.raises(PollError) as exc_info:
            await runtime_client(settings).get_next_invocation()

        assert exc_info.value.kind is kind
        assert exc_info.value.status == status

    @pytest.mark.asyncio
    async def test_connection_refused_is_a_transport_failure(self, runtime_client):
        settings = RuntimeSettings(runtime_api=f"http://127.0.0.1:{unused_port()}")

        with pytest.raises(PollError) as exc_info:
            await runtime_client(settings).get_next_invocation()

        assert exc_info.value.is_transport_failure

    @pytest.mark.asyncio
    async def test_chunked_body_is_reassembled(self, runtime_client):
        async def next_invocation(request):
            response = web.StreamResponse(
                headers={"request_id": "chunky", "time_limit_in_ms": "1000"}
            )
            response.enable_chunked_encoding()
            await response.prepare(request)
            for chunk in (b"he", b"ll", b"o ", b"world"):
                await response.write(chunk)
                await asyncio.sleep(0)
            await response.write_eof()
            return response

        app = web.Application()
        app.router.add_get("/runtime/invocation/next", next_invocation)
        server = TestServer(app)
        await server.start_server()
        try:
            settings = RuntimeSettings(runtime_api=f"http://{server.host}:{server.port}")
            request = await runtime_client(settings).get_next_invocation()
        finally:
            await server.close()

        assert request.request_id == "chunky"
        assert request.payload == b"hello world"

    @pytest.mark.asyncio
    async def test_uses_a_single_connection(self, control_plane, runtime_client):
        _behavior, settings = await control_plane(Invocation("a"), Invocation("b"))
        client = runtime_client(settings)

        await client.get_next_invocation()
        await client.post_response("a", b"")
        await client.get_next_invocation()

        assert client.session.connector.limit == 1


class TestSentinels:
    @pytest.mark.asyncio
    async def test_timeout_sentinel_suspends_for_the_duration(
        self, control_plane, runtime_client
    ):
        _behavior, settings = await control_plane(Invocation("timeout", "200"))

        started = time.monotonic()
        request = await runtime_client(settings).get_next_invocation()

        assert time.monotonic() - started >= 0.2
        assert request.request_id == "timeout"

    @pytest.mark.asyncio
    async def test_timeout_sentinel_past_poll_timeout_is_a_transport_failure(
        self, control_plane, runtime_client
    ):
        _behavior, settings = await control_plane(
            Invocation("timeout", "500"), settings_overrides={"poll_timeout": 0.05}
        )

        with pytest.raises(PollError) as exc_info:
            await runtime_client(settings).get_next_invocation()

        assert exc_info.value.kind is PollErrorKind.TRANSPORT_FAILURE

    @pytest.mark.asyncio
    async def test_unreadable_timeout_duration_means_no_pause(
        self, control_plane, runtime_client
    ):
        _behavior, settings = await control_plane(
            Invocation("timeout", "soon"), settings_overrides={"poll_timeout": 2}
        )

        request = await runtime_client(settings).get_next_invocation()

        assert request.request_id == "timeout"
        assert request.payload == b"soon"

    @pytest.mark.asyncio
    async def test_disconnect_sentinel_surfaces_transport_failure(
        self, control_plane, runtime_client
    ):
        _behavior, settings = await control_plane(
            Invocation("disconnect"), Invocation("abc-123", "after")
        )
        client = runtime_client(settings)

        with pytest.raises(PollError) as exc_info:
            await client.get_next_invocation()

        assert exc_info.value.kind is PollErrorKind.TRANSPORT_FAILURE

        # a fresh connection is opened for the next call
        request = await client.get_next_invocation()
        assert request.payload == b"after"


class TestReports:
    @pytest.mark.asyncio
    async def test_request_id_with_reserved_characters(self, control_plane, runtime_client):
        behavior, settings = await control_plane()

        await runtime_client(settings).post_response("a b?c#d", b"ok")

        assert behavior.responses == [("a b?c#d", b"ok")]

    @pytest.mark.asyncio
    async def test_post_response(self, control_plane, runtime_client):
        behavior, settings = await control_plane()

        await runtime_client(settings).post_response("abc-123", b"hello")

        assert behavior.responses == [("abc-123", b"hello")]

    @pytest.mark.asyncio
    async def test_post_error(self, control_plane, runtime_client):
        behavior, settings = await control_plane()
        error = ErrorResponse(error_type="ValueError", error_message="boom")

        await runtime_client(settings).post_error("abc-123", error)

        assert behavior.errors == [("abc-123", error)]

    @pytest.mark.asyncio
    async def test_post_init_error(self, control_plane, runtime_client):
        behavior, settings = await control_plane()
        error = ErrorResponse(
            error_type="ImportError", error_message="no index", stack_trace=["a", "b"]
        )

        await runtime_client(settings).post_init_error(error)

        assert behavior.init_errors == [error]

    @pytest.mark.asyncio
    async def test_init_error_after_first_invocation_is_refused(
        self, control_plane, runtime_client
    ):
        behavior, settings = await control_plane(Invocation("abc"))
        client = runtime_client(settings)
        await client.get_next_invocation()

        with pytest.raises(RuntimeClientStateError):
            await client.post_init_error(ErrorResponse(error_type="X", error_message="y"))

        assert behavior.init_errors == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,kind",
        [
            (400, ReportErrorKind.BAD_REQUEST),
            (413, ReportErrorKind.PAYLOAD_TOO_LARGE),
            (429, ReportErrorKind.TOO_MANY_REQUESTS),
            (500, ReportErrorKind.INTERNAL_SERVER_ERROR),
        ],
    )
    async def test_rejected_response(self, control_plane, runtime_client, status, kind):
        _behavior, settings = await control_plane(response_status=status)

        with pytest.raises(ReportError) as exc_info:
            await runtime_client(settings).post_response("abc", b"x" * 10)

        assert exc_info.value.kind is kind

    @pytest.mark.asyncio
    async def test_invalid_error_shape(self, control_plane, runtime_client):
        _behavior, settings = await control_plane(error_status=299)

        with pytest.raises(ReportError) as exc_info:
            await runtime_client(settings).post_error(
                "abc", ErrorResponse(error_type="X", error_message="y")
            )

        assert exc_info.value.kind is ReportErrorKind.INVALID_ERROR_SHAPE


class TestMockControlPlaneContract:
    @pytest.mark.asyncio
    async def test_malformed_error_envelope_is_rejected(self, control_plane, runtime_client):
        behavior, settings = await control_plane()
        client = runtime_client(settings)

        async with client.session.post(
            f"{settings.runtime_api}/runtime/invocation/abc/error", data=b'{"nope": 1}'
        ) as response:
            assert response.status == 400

        assert behavior.errors == []

    @pytest.mark.asyncio
    async def test_unknown_path_is_not_found(self, control_plane, runtime_client):
        _behavior, settings = await control_plane()
        client = runtime_client(settings)

        async with client.session.get(f"{settings.runtime_api}/runtime/unknown") as response:
            assert response.status == 404
