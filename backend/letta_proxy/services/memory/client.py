"""
Letta memory service client.

Fetches labeled memory blocks for a single agent and pushes conversation
summaries back so the agent can update its own memory. Both calls are
bounded by explicit timeouts and never touch the network when memory
injection is disabled or no agent is configured.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from letta_proxy.config import DEFAULT_LETTA_SERVER_URL, Settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 300
DEFAULT_UPDATE_TIMEOUT_S = 5.0

# Truncation limits for the synthetic update message (characters)
USER_MESSAGE_LIMIT = 500
ASSISTANT_RESPONSE_LIMIT = 1000
TRUNCATION_MARKER = "..."

UPDATE_MESSAGE_TEMPLATE = (
    "[Memory Update] User asked: {user}\n\nAssistant responded (summary): {assistant}"
)


class MemoryServiceError(Exception):
    """Base exception for memory service failures."""

    def __init__(self, message: str, operation: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status_code = status_code


class MemoryTransportError(MemoryServiceError):
    """Network failure or timeout talking to the memory service."""

    pass


class MemoryStatusError(MemoryServiceError):
    """Memory service answered with an unexpected status code."""

    pass


@dataclass(frozen=True)
class MemoryConfig:
    """Memory injection configuration, fixed at process start.

    Fields:
        enabled: Master switch (LETTA_ENABLED=true)
        server_url: Letta server base URL
        agent_id: Agent whose memory blocks are injected
        timeout_ms: Fetch timeout in milliseconds (0 = default 300ms)
    """

    enabled: bool = False
    server_url: str = DEFAULT_LETTA_SERVER_URL
    agent_id: str = ""
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @property
    def active(self) -> bool:
        """True when memory calls are allowed to reach the network."""
        return self.enabled and bool(self.agent_id)

    @property
    def timeout_seconds(self) -> float:
        timeout_ms = self.timeout_ms if self.timeout_ms > 0 else DEFAULT_TIMEOUT_MS
        return timeout_ms / 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "MemoryConfig":
        return cls(
            enabled=settings.letta_enabled,
            server_url=settings.letta_server_url.rstrip("/"),
            agent_id=settings.letta_agent_id.strip(),
            timeout_ms=settings.letta_timeout_ms,
        )


@dataclass(frozen=True)
class MemoryBlock:
    """A labeled unit of persistent agent memory."""

    label: str
    value: str


def truncate(text: str, max_len: int) -> str:
    """Truncate text to max_len characters, marking the cut with an ellipsis."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + TRUNCATION_MARKER


def build_update_message(user_message: str, assistant_response: str) -> str:
    """Compose the synthetic summary message sent to the agent."""
    return UPDATE_MESSAGE_TEMPLATE.format(
        user=truncate(user_message, USER_MESSAGE_LIMIT),
        assistant=truncate(assistant_response, ASSISTANT_RESPONSE_LIMIT),
    )


def _text_field(data: Any, key: str) -> str:
    if not isinstance(data, dict):
        return ""
    value = data.get(key)
    return value if isinstance(value, str) else ""


def parse_memory_blocks(payload: Any) -> list[MemoryBlock]:
    """
    Extract memory blocks from an agent payload.

    Reads memory.blocks[*].label/value. Missing or non-string fields become
    empty strings; a missing or non-list blocks field yields no blocks.
    """
    memory = payload.get("memory") if isinstance(payload, dict) else None
    blocks = memory.get("blocks") if isinstance(memory, dict) else None
    if not isinstance(blocks, list):
        return []
    return [
        MemoryBlock(label=_text_field(block, "label"), value=_text_field(block, "value"))
        for block in blocks
    ]


class LettaClient:
    """Client for a single Letta agent.

    One instance is shared by all requests. The underlying httpx client is
    safe for concurrent use and its settings never change after construction.

    Example:
        client = LettaClient(MemoryConfig(enabled=True, agent_id="agent-123"))
        blocks = await client.get_memory()
    """

    def __init__(
        self,
        config: MemoryConfig,
        http_client: httpx.AsyncClient | None = None,
        update_timeout_s: float = DEFAULT_UPDATE_TIMEOUT_S,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Memory configuration
            http_client: Optional pre-built httpx client; the caller keeps ownership
            update_timeout_s: Timeout for the memory update POST
        """
        self.config = config
        self.update_timeout_s = update_timeout_s
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)

    @property
    def agent_url(self) -> str:
        return f"{self.config.server_url}/v1/agents/{self.config.agent_id}"

    async def get_memory(self) -> list[MemoryBlock]:
        """
        Retrieve memory blocks from the agent.

        Returns:
            Blocks in the order the service returned them (empty when inactive)

        Raises:
            MemoryTransportError: Network failure or timeout
            MemoryStatusError: Non-200 response
        """
        if not self.config.active:
            return []

        try:
            response = await self._client.get(self.agent_url, timeout=self.config.timeout_seconds)
        except httpx.TimeoutException as e:
            raise MemoryTransportError(
                f"Memory fetch timed out after {self.config.timeout_seconds:.3f}s", "fetch"
            ) from e
        except httpx.HTTPError as e:
            raise MemoryTransportError(f"Memory fetch failed: {e}", "fetch") from e

        if response.status_code != 200:
            raise MemoryStatusError(
                f"Letta returned status {response.status_code}",
                "fetch",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            logger.debug(f"Agent {self.config.agent_id} returned a non-JSON body")
            return []

        return parse_memory_blocks(payload)

    async def update_memory(self, user_message: str, assistant_response: str) -> None:
        """
        Send an exchange summary to the agent so it can update its memory.

        Args:
            user_message: Last user message of the request
            assistant_response: Assistant text from the response

        Raises:
            MemoryTransportError: Network failure or timeout
            MemoryStatusError: Non-2xx response
        """
        if not self.config.active:
            return

        payload = {
            "messages": [
                {"role": "user", "content": build_update_message(user_message, assistant_response)}
            ]
        }

        try:
            response = await self._client.post(
                f"{self.agent_url}/messages",
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.update_timeout_s,
            )
        except httpx.TimeoutException as e:
            raise MemoryTransportError(
                f"Memory update timed out after {self.update_timeout_s:.1f}s", "update"
            ) from e
        except httpx.HTTPError as e:
            raise MemoryTransportError(f"Memory update failed: {e}", "update") from e

        if not 200 <= response.status_code < 300:
            raise MemoryStatusError(
                f"Letta returned status {response.status_code}",
                "update",
                status_code=response.status_code,
            )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
