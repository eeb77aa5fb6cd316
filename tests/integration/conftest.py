"""Automatically apply integration marker to all tests in tests/integration/"""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from scf_runtime.runtime_client import RuntimeClient
from scf_runtime.settings import RuntimeSettings
from scf_runtime.testing import MockControlPlane, ScriptedBehavior


def pytest_collection_modifyitems(config, items):
    """Add integration marker to all tests in the integration directory"""
    for item in items:
        if "tests/integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest_asyncio.fixture
async def control_plane():
    """
    Factory starting a MockControlPlane on a free local port.

    Returns (behavior, settings) pointing at the started server.
    """
    started = []

    async def start(*answers, settings_overrides=None, **behavior_kwargs):
        behavior = ScriptedBehavior(answers, **behavior_kwargs)
        server = TestServer(MockControlPlane(behavior).app)
        await server.start_server()
        started.append((behavior, server))

        settings = RuntimeSettings(
            runtime_api=f"http://{server.host}:{server.port}",
            poll_retry_delay=0.01,
            report_timeout=5,
            **(settings_overrides or {}),
        )
        return behavior, settings

    yield start

    for behavior, server in started:
        behavior.close()
        await server.close()


@pytest_asyncio.fixture
async def runtime_client():
    """Factory for RuntimeClients closed at teardown."""
    clients = []

    def make(settings):
        client = RuntimeClient(settings)
        clients.append(client)
        return client

    yield make

    for client in clients:
        await client.close()
