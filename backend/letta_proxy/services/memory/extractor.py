"""
Message extraction from chat completion payloads.

Pulls the last user message out of a request body and the assistant text
out of a non-streaming response body. Anything unexpected yields "".
"""

import json
from typing import Any


def load_json(body: bytes | str) -> Any:
    """Parse a JSON body, returning None when it is not valid JSON.

    Nesting too deep for the decoder counts as invalid.
    """
    try:
        return json.loads(body)
    except (ValueError, TypeError, RecursionError):
        return None


def content_text(content: Any) -> str:
    """Get plain text from a message content field.

    Handles both string content and OpenAI-style lists of content parts.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        text_parts = [
            part["text"]
            for part in content
            if isinstance(part, dict)
            and part.get("type") == "text"
            and isinstance(part.get("text"), str)
        ]
        return "\n".join(text_parts)
    return ""


def extract_user_message(body: bytes | str) -> str:
    """Return the content of the last message with role "user"."""
    payload = load_json(body)
    messages = payload.get("messages") if isinstance(payload, dict) else None
    if not isinstance(messages, list):
        return ""

    for message in reversed(messages):
        if isinstance(message, dict) and message.get("role") == "user":
            return content_text(message.get("content"))
    return ""


def extract_assistant_text(body: bytes | str) -> str:
    """
    Return choices[0].message.content from a completion response.

    Streamed (server-sent event) bodies are not parsed and yield "".
    """
    payload = load_json(body)
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices:
        return ""

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        return ""
    return content_text(message.get("content"))
