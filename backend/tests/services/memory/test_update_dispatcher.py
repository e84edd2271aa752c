"""Tests for detached memory updates."""

import json

from letta_proxy.services.memory.client import MemoryStatusError
from letta_proxy.services.memory.update_dispatcher import MemoryUpdateDispatcher
from tests.conftest import completion_response

RESPONSE = json.dumps(completion_response("The answer is 4")).encode()


class TestMemoryUpdateDispatcher:
    """Tests for MemoryUpdateDispatcher."""

    async def test_pushes_extracted_assistant_text(self, fake_client_factory):
        client = fake_client_factory()
        dispatcher = MemoryUpdateDispatcher(client)

        task = dispatcher.submit("What is 2+2?", RESPONSE)
        assert task is not None
        await dispatcher.drain()

        assert client.updates == [("What is 2+2?", "The answer is 4")]
        assert dispatcher.pending == 0

    async def test_streamed_response_skips_update(self, fake_client_factory):
        client = fake_client_factory()
        dispatcher = MemoryUpdateDispatcher(client)

        dispatcher.submit("hi", b'data: {"choices":[{"delta":{"content":"x"}}]}\n\n')
        await dispatcher.drain()

        assert client.updates == []

    async def test_update_error_is_logged_not_raised(self, fake_client_factory, caplog):
        client = fake_client_factory(
            update_error=MemoryStatusError("Letta returned status 503", "update", 503)
        )
        dispatcher = MemoryUpdateDispatcher(client)

        task = dispatcher.submit("hi", RESPONSE)
        await dispatcher.drain()

        assert task.exception() is None
        assert "Memory update error" in caplog.text

    async def test_slow_update_times_out(self, fake_client_factory, caplog):
        client = fake_client_factory(update_delay=5.0)
        dispatcher = MemoryUpdateDispatcher(client, timeout_s=0.05)

        dispatcher.submit("hi", RESPONSE)
        await dispatcher.drain(timeout=2.0)

        assert client.updates == []
        assert "timed out" in caplog.text

    async def test_submit_does_not_wait(self, fake_client_factory):
        client = fake_client_factory(update_delay=0.5)
        dispatcher = MemoryUpdateDispatcher(client)

        dispatcher.submit("hi", RESPONSE)

        assert dispatcher.pending == 1
        assert client.updates == []
        await dispatcher.drain()
        assert len(client.updates) == 1

    async def test_drops_updates_over_capacity(self, fake_client_factory, caplog):
        client = fake_client_factory(update_delay=0.2)
        dispatcher = MemoryUpdateDispatcher(client, max_pending=2)

        assert dispatcher.submit("one", RESPONSE) is not None
        assert dispatcher.submit("two", RESPONSE) is not None
        assert dispatcher.submit("three", RESPONSE) is None

        assert dispatcher.dropped == 1
        assert "Dropping memory update" in caplog.text
        await dispatcher.drain()
        assert sorted(user for user, _ in client.updates) == ["one", "two"]

    async def test_unbounded_when_cap_disabled(self, fake_client_factory):
        client = fake_client_factory(update_delay=0.05)
        dispatcher = MemoryUpdateDispatcher(client, max_pending=0)

        tasks = [dispatcher.submit(f"msg {i}", RESPONSE) for i in range(10)]

        assert all(task is not None for task in tasks)
        await dispatcher.drain()
        assert len(client.updates) == 10

    async def test_drain_cancels_stragglers(self, fake_client_factory):
        client = fake_client_factory(update_delay=10.0)
        dispatcher = MemoryUpdateDispatcher(client, timeout_s=30.0)

        task = dispatcher.submit("hi", RESPONSE)
        await dispatcher.drain(timeout=0.05)

        assert task.cancelled()
        assert dispatcher.pending == 0

    async def test_aclose_closes_client(self, fake_client_factory):
        client = fake_client_factory()
        dispatcher = MemoryUpdateDispatcher(client)

        dispatcher.submit("hi", RESPONSE)
        await dispatcher.aclose()

        assert client.updates == [("hi", "The answer is 4")]
        assert client.closed is True
