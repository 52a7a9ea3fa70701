"""Test configuration and fixtures."""

import os
import socket

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from distribution_client import RegistryClient, check_registry_connectivity
from tests.helpers import FakeRegistry


def is_port_open(host, port):
    """Check if a port is open."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(1)
            result = sock.connect_ex((host, port))
            return result == 0
    except OSError:
        return False


@pytest.fixture
def registry_port():
    """Get registry port for testing."""
    return int(os.getenv("REGISTRY_PORT", "15000"))


@pytest_asyncio.fixture
async def registry_url(registry_port):
    """Get a live registry URL, skipping when none is running."""
    url = f"http://localhost:{registry_port}"
    if is_port_open("localhost", registry_port):
        if await check_registry_connectivity(url):
            return url
    pytest.skip(f"Registry not available at {url}")


@pytest_asyncio.fixture
async def fake_registry():
    """Start an in-process registry and yield its controller."""
    registry = FakeRegistry()
    server = TestServer(registry.make_app())
    await server.start_server()
    registry.url = str(server.make_url("")).rstrip("/")
    try:
        yield registry
    finally:
        await server.close()


@pytest_asyncio.fixture
async def client(fake_registry):
    """Open a client against the fake registry."""
    async with RegistryClient(fake_registry.url, timeout=5) as registry_client:
        yield registry_client


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring registry"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    # Skip integration tests if no registry
    skip_integration = pytest.mark.skip(reason="Registry not available")

    for item in items:
        if (
            "integration" in item.keywords
            and os.getenv("REGISTRY_AVAILABLE", "false").lower() != "true"
        ):
            item.add_marker(skip_integration)
