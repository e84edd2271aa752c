"""
Detached memory updates.

After a response has been sent, the captured exchange is summarized and
pushed to the memory service in a background task. Updates are best effort:
each task has its own timeout, failures are logged and never retried, and
the request path never waits on them.
"""

import asyncio
import logging
from dataclasses import dataclass

from .client import DEFAULT_UPDATE_TIMEOUT_S, LettaClient
from .extractor import extract_assistant_text

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING_UPDATES = 64


@dataclass(frozen=True)
class CapturedExchange:
    """A user message paired with the raw response bytes it produced."""

    user_message: str
    response_body: bytes


class MemoryUpdateDispatcher:
    """
    Spawns and tracks fire-and-forget memory update tasks.

    At most max_pending updates run at once; further updates are dropped
    rather than queued. max_pending <= 0 disables the cap.
    """

    def __init__(
        self,
        client: LettaClient,
        timeout_s: float = DEFAULT_UPDATE_TIMEOUT_S,
        max_pending: int = DEFAULT_MAX_PENDING_UPDATES,
    ) -> None:
        self.client = client
        self.timeout_s = timeout_s
        self.max_pending = max_pending
        # Strong references so running tasks are not garbage collected
        self._tasks: set[asyncio.Task[None]] = set()
        self.dropped = 0

    @property
    def pending(self) -> int:
        """Number of update tasks still in flight."""
        return len(self._tasks)

    def submit(self, user_message: str, response_body: bytes) -> asyncio.Task[None] | None:
        """
        Start a detached update for one exchange.

        Returns:
            The spawned task, or None when the update was dropped
        """
        if 0 < self.max_pending <= len(self._tasks):
            self.dropped += 1
            logger.warning(
                f"Dropping memory update: {len(self._tasks)} updates already in flight"
            )
            return None

        exchange = CapturedExchange(user_message=user_message, response_body=response_body)
        task = asyncio.create_task(self._run(exchange))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, exchange: CapturedExchange) -> None:
        try:
            await asyncio.wait_for(self._push(exchange), timeout=self.timeout_s)
        except TimeoutError:
            logger.warning(f"Memory update timed out after {self.timeout_s:.1f}s")
        except Exception as e:
            logger.warning(f"Memory update error: {e}")

    async def _push(self, exchange: CapturedExchange) -> None:
        assistant_response = extract_assistant_text(exchange.response_body)
        if not assistant_response:
            # Streamed or error responses carry no extractable assistant text
            logger.debug("No assistant text in response, skipping memory update")
            return
        await self.client.update_memory(exchange.user_message, assistant_response)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight updates. Only used at shutdown and in tests."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _done, still_running = await asyncio.wait(tasks, timeout=timeout)
        if still_running:
            logger.warning(f"Cancelling {len(still_running)} unfinished memory updates")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    async def aclose(self, timeout: float | None = None) -> None:
        """Drain pending updates and close the memory client."""
        await self.drain(timeout)
        await self.client.aclose()
