"""Shared pytest fixtures and configuration.

Integration tests are skipped by default. Run them with:
    pytest --run-integration

They need a running Letta server (LETTA_SERVER_URL) and LETTA_AGENT_ID.

Unit tests never talk to a real memory service: HTTP traffic goes through
pytest-httpx's httpx_mock, or through the FakeLettaClient substitute below.
"""

import asyncio
import json
from typing import Any

import pytest

from letta_proxy.config import Settings
from letta_proxy.services.memory import MemoryBlock, MemoryConfig

LETTA_URL = "http://letta.test"
AGENT_ID = "agent-1234"
UPSTREAM_URL = "http://upstream.test/v1"


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires running services)",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires running services)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture(autouse=True)
def clear_proxy_env(monkeypatch, request):
    """Keep the developer's environment out of unit tests."""
    if "integration" in request.keywords:
        return
    for name in (
        "LETTA_ENABLED",
        "LETTA_SERVER_URL",
        "LETTA_AGENT_ID",
        "LETTA_TIMEOUT_MS",
        "LETTA_UPDATE_TIMEOUT_S",
        "LETTA_MAX_PENDING_UPDATES",
        "UPSTREAM_BASE_URL",
        "UPSTREAM_API_KEY",
        "UPSTREAM_TIMEOUT_S",
        "HOST",
        "PORT",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def memory_config() -> MemoryConfig:
    """Active memory configuration pointing at the mocked Letta server."""
    return MemoryConfig(enabled=True, server_url=LETTA_URL, agent_id=AGENT_ID, timeout_ms=300)


@pytest.fixture
def make_settings():
    """Factory for Settings that ignore ~/.env.local."""

    def _create(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "upstream_base_url": UPSTREAM_URL,
            "letta_enabled": True,
            "letta_server_url": LETTA_URL,
            "letta_agent_id": AGENT_ID,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _create


class FakeLettaClient:
    """In-memory stand-in for LettaClient.

    Records update calls and can be told to fail or stall either call.
    """

    def __init__(
        self,
        config: MemoryConfig,
        blocks: list[MemoryBlock] | None = None,
        fetch_error: Exception | None = None,
        fetch_delay: float = 0.0,
        update_error: Exception | None = None,
        update_delay: float = 0.0,
    ) -> None:
        self.config = config
        self.blocks = blocks or []
        self.fetch_error = fetch_error
        self.fetch_delay = fetch_delay
        self.update_error = update_error
        self.update_delay = update_delay
        self.fetch_calls = 0
        self.updates: list[tuple[str, str]] = []
        self.closed = False

    async def get_memory(self) -> list[MemoryBlock]:
        self.fetch_calls += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fetch_error:
            raise self.fetch_error
        return list(self.blocks)

    async def update_memory(self, user_message: str, assistant_response: str) -> None:
        if self.update_delay:
            await asyncio.sleep(self.update_delay)
        if self.update_error:
            raise self.update_error
        self.updates.append((user_message, assistant_response))

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client_factory(memory_config):
    """Factory for FakeLettaClient bound to the active test config."""

    def _create(**kwargs: Any) -> FakeLettaClient:
        config = kwargs.pop("config", memory_config)
        return FakeLettaClient(config, **kwargs)

    return _create


def completion_request(messages: list[dict[str, Any]], **extra: Any) -> bytes:
    """Serialize a chat completion request body."""
    return json.dumps({"model": "gpt-4o", "messages": messages, **extra}).encode()


def completion_response(content: str) -> dict[str, Any]:
    """Build a non-streaming chat completion response."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }
