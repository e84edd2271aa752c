"""Render memory blocks into a system prompt section."""

from collections.abc import Sequence

from .client import MemoryBlock

MEMORY_CONTEXT_HEADER = (
    "\n\n--- Agent Memory Context ---\n"
    "The following is context from your persistent memory. Use it to maintain continuity:\n\n"
)
MEMORY_CONTEXT_FOOTER = "--- End Memory Context ---\n"


def format_memory_blocks(blocks: Sequence[MemoryBlock]) -> str:
    """
    Format memory blocks for system prompt injection.

    Blocks with an empty value are skipped. Returns an empty string for an
    empty sequence, in which case nothing should be injected.
    """
    if not blocks:
        return ""

    sections = [f"[{block.label}]\n{block.value}\n\n" for block in blocks if block.value]
    return MEMORY_CONTEXT_HEADER + "".join(sections) + MEMORY_CONTEXT_FOOTER
