"""Letta memory integration: fetch, format, inject, and update agent memory."""

from .client import (
    LettaClient,
    MemoryBlock,
    MemoryConfig,
    MemoryServiceError,
    MemoryStatusError,
    MemoryTransportError,
)
from .extractor import extract_assistant_text, extract_user_message
from .formatter import format_memory_blocks
from .injector import inject_memory
from .update_dispatcher import CapturedExchange, MemoryUpdateDispatcher

__all__ = [
    "CapturedExchange",
    "LettaClient",
    "MemoryBlock",
    "MemoryConfig",
    "MemoryServiceError",
    "MemoryStatusError",
    "MemoryTransportError",
    "MemoryUpdateDispatcher",
    "extract_assistant_text",
    "extract_user_message",
    "format_memory_blocks",
    "inject_memory",
]
