"""
HTTP client for the SCF custom-runtime control plane.

All four protocol calls share one aiohttp session whose connector holds a
single keep-alive connection. Calls are never pipelined: the runtime loop
awaits each one before issuing the next.
"""

import asyncio
from typing import Optional
from urllib.parse import quote

import aiohttp

from .constants import (
    GET_NEXT_INVOCATION_PATH,
    POST_ERROR_PATH,
    POST_INIT_ERROR_PATH,
    POST_RESPONSE_PATH,
)
from .errors import (
    PollError,
    PollErrorKind,
    ReportError,
    ReportErrorKind,
    RuntimeClientStateError,
)
from .logger import get_logger
from .protocol import ErrorResponse, InvocationRequest, MalformedHeaderError
from .settings import RuntimeSettings

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)

JSON_HEADERS = {"Content-Type": "application/json"}
BINARY_HEADERS = {"Content-Type": "application/octet-stream"}


def invocation_path(template: str, request_id: str) -> str:
    """Fill a per-invocation path, escaping the opaque id as one path segment."""
    return template.format(request_id=quote(request_id, safe=""))


class RuntimeClient:
    """
    Client side of the invocation protocol.

    Usage:
        async with RuntimeClient(settings) as client:
            request = await client.get_next_invocation()
            await client.post_response(request.request_id, b"result")
    """

    def __init__(
        self,
        settings: Optional[RuntimeSettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or RuntimeSettings()
        self.base_url = self.settings.runtime_api
        self.logger = get_logger(__name__)
        self._session = session
        self._owns_session = session is None
        self._served_invocation = False

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=1, force_close=False)
            self._session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "RuntimeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def get_next_invocation(self) -> InvocationRequest:
        """
        Long-poll the control plane for the next invocation.

        Returns:
            InvocationRequest built from the response headers and body

        Raises:
            PollError: On a non-200 status, malformed metadata headers, or a
                transport failure (kind TRANSPORT_FAILURE)
        """
        timeout = aiohttp.ClientTimeout(total=self.settings.poll_timeout)
        url = self._url(GET_NEXT_INVOCATION_PATH)
        self.logger.debug(f"Polling {url}")

        try:
            async with self.session.get(url, timeout=timeout) as response:
                # read() reassembles a chunked body before dispatch
                body = await response.read()
                status = response.status
                headers = response.headers
        except TRANSPORT_ERRORS as e:
            raise PollError(
                PollErrorKind.TRANSPORT_FAILURE,
                f"Transport failure while polling: {type(e).__name__}: {e}",
            ) from e

        if status != 200:
            raise PollError.from_status(status)

        try:
            request = InvocationRequest.from_http(headers, body)
        except MalformedHeaderError as e:
            raise PollError(PollErrorKind.PROTOCOL_ERROR, str(e), status) from e

        self._served_invocation = True
        self.logger.debug(
            f"Received invocation {request.request_id} "
            f"({len(body)} bytes, {request.time_limit_ms} ms, {request.memory_limit_mb} MB)"
        )
        return request

    async def post_response(self, request_id: str, body: bytes) -> None:
        """
        Report a successful invocation result.

        Raises:
            ReportError: If the control plane rejects the result or the transport fails
        """
        path = invocation_path(POST_RESPONSE_PATH, request_id)
        await self._post(path, body, BINARY_HEADERS)

    async def post_error(self, request_id: str, error: ErrorResponse) -> None:
        """
        Report a failed invocation.

        Raises:
            ReportError: If the control plane rejects the envelope (kind
                INVALID_ERROR_SHAPE for status 299) or the transport fails
        """
        path = invocation_path(POST_ERROR_PATH, request_id)
        await self._post(path, error.to_json(), JSON_HEADERS)

    async def post_init_error(self, error: ErrorResponse) -> None:
        """
        Report that initialization failed. Only legal before the first
        successful poll.

        Raises:
            RuntimeClientStateError: If an invocation has already been received
            ReportError: If the control plane rejects the report or the transport fails
        """
        if self._served_invocation:
            raise RuntimeClientStateError(
                "post_init_error called after an invocation was received"
            )
        await self._post(POST_INIT_ERROR_PATH, error.to_json(), JSON_HEADERS)

    async def _post(self, path: str, body: bytes, headers: dict) -> None:
        timeout = aiohttp.ClientTimeout(total=self.settings.report_timeout)
        url = self._url(path)
        self.logger.debug(f"POST {url} ({len(body)} bytes)")

        try:
            async with self.session.post(
                url, data=body, headers=headers, timeout=timeout
            ) as response:
                await response.read()
                status = response.status
        except TRANSPORT_ERRORS as e:
            raise ReportError(
                ReportErrorKind.TRANSPORT_FAILURE,
                f"Transport failure while posting to {path}: {type(e).__name__}: {e}",
            ) from e

        if status != 200:
            raise ReportError.from_status(status)
