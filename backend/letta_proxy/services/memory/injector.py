"""
Memory injection into chat completion requests.

Fetches the agent's memory blocks and merges them into the request's system
message. Any failure leaves the original body untouched so the request is
never blocked by the memory service.
"""

import asyncio
import json
import logging
from typing import Any

from .client import LettaClient
from .extractor import load_json
from .formatter import format_memory_blocks

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are an AI assistant."


def merge_memory_into_messages(
    messages: list[Any], memory_context: str
) -> list[Any]:
    """
    Merge memory context into the first system message.

    Appends to an existing system message, or prepends a new one with the
    default persona when none exists. Returns a new list; other messages are
    kept as-is and in order.
    """
    modified = list(messages)

    for index, message in enumerate(modified):
        if isinstance(message, dict) and message.get("role") == "system":
            existing = message.get("content")
            if isinstance(existing, list):
                content: Any = [*existing, {"type": "text", "text": memory_context}]
            elif isinstance(existing, str):
                content = existing + memory_context
            else:
                content = memory_context
            modified[index] = {**message, "content": content}
            return modified

    modified.insert(0, {"role": "system", "content": DEFAULT_SYSTEM_PROMPT + memory_context})
    return modified


async def inject_memory(
    client: LettaClient, body: bytes, timeout: float | None = None
) -> bytes:
    """
    Inject agent memory into a raw chat completion request body.

    Args:
        client: Memory service client
        body: Original request body (JSON)
        timeout: Fetch budget in seconds (defaults to the client's timeout)

    Returns:
        The modified body, or the original body when there is nothing to
        inject or anything goes wrong
    """
    if not client.config.active:
        return body

    effective_timeout = timeout if timeout is not None else client.config.timeout_seconds
    try:
        blocks = await asyncio.wait_for(client.get_memory(), timeout=effective_timeout)
    except TimeoutError:
        logger.warning(
            f"Memory query timed out after {effective_timeout:.3f}s (continuing without)"
        )
        return body
    except Exception as e:
        logger.warning(f"Memory query error (continuing without): {e}")
        return body

    if not blocks:
        return body

    memory_context = format_memory_blocks(blocks)

    payload = load_json(body)
    if not isinstance(payload, dict) or not isinstance(payload.get("messages"), list):
        logger.debug("Request body has no messages array, skipping memory injection")
        return body

    payload["messages"] = merge_memory_into_messages(payload["messages"], memory_context)
    try:
        modified = json.dumps(payload, separators=(",", ":")).encode("ascii")
    except (TypeError, ValueError, RecursionError) as e:
        logger.warning(f"Failed to serialize injected request (continuing without): {e}")
        return body

    logger.info(f"Injected {len(blocks)} memory blocks")
    return modified
