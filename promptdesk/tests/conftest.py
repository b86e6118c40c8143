"""Shared fixtures."""

import tempfile
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient, TestServer

from promptdesk.server.api import create_api_app
from promptdesk.server.config import Config
from promptdesk.server.main import PromptDeskServer


@pytest.fixture
def temp_data_dir():
    """Create a temporary data directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_data_dir):
    return Config(data_dir=temp_data_dir)


@pytest.fixture
def desk(test_config):
    return PromptDeskServer(test_config)


@pytest.fixture
async def client(desk):
    """Test client bound to the full API application."""
    await desk.store.load()
    async with TestClient(TestServer(create_api_app(desk))) as client:
        yield client
