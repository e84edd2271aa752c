"""Memory injection middleware for chat completion requests.

Pre-request: query Letta agent memory and merge it into the system prompt.
Post-response: capture the response and update Letta memory in the background.

Implemented as a plain ASGI middleware because the request body has to be
replaced before the downstream handler reads it.
"""

import asyncio
import logging

from fastapi import FastAPI
from starlette.datastructures import MutableHeaders
from starlette.requests import ClientDisconnect, Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from letta_proxy.services.memory.client import DEFAULT_UPDATE_TIMEOUT_S, LettaClient, MemoryConfig
from letta_proxy.services.memory.extractor import extract_user_message
from letta_proxy.services.memory.injector import inject_memory
from letta_proxy.services.memory.update_dispatcher import (
    DEFAULT_MAX_PENDING_UPDATES,
    MemoryUpdateDispatcher,
)

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"


def is_chat_completion_path(path: str) -> bool:
    """Check if path targets a chat completion endpoint."""
    return CHAT_COMPLETIONS_PATH in path


class ResponseCapture:
    """ASGI send wrapper that keeps a copy of every response body chunk.

    Messages are forwarded unchanged and in order; the copy is taken first.
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self._buffer = bytearray()
        self.status_code: int | None = None

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status_code = message["status"]
        elif message["type"] == "http.response.body":
            self._buffer.extend(message.get("body", b""))
        await self._send(message)

    @property
    def body(self) -> bytes:
        return bytes(self._buffer)


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Build a receive channel that yields body once, then defers to receive."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


async def _wait_for_disconnect(receive: Receive) -> None:
    """Return once the client disconnects. The request body must already be read."""
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            return


def _with_content_length(scope: Scope, length: int) -> Scope:
    """Copy scope with content-length set to length and chunked framing removed."""
    scope = dict(scope)
    scope["headers"] = list(scope.get("headers", []))
    headers = MutableHeaders(scope=scope)
    del headers["transfer-encoding"]
    headers["content-length"] = str(length)
    return scope


class MemoryInjectionMiddleware:
    """Injects Letta memory into chat completions and schedules memory updates.

    Requests to other paths, non-HTTP scopes, and all traffic while memory is
    inactive (disabled or no agent id) pass through untouched. A client that
    disconnects during the memory fetch cancels it and is never forwarded.
    """

    def __init__(
        self,
        app: ASGIApp,
        client: LettaClient,
        dispatcher: MemoryUpdateDispatcher | None = None,
    ) -> None:
        self.app = app
        self.client = client
        self.dispatcher = dispatcher or MemoryUpdateDispatcher(client)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_chat_completion_path(scope["path"]):
            await self.app(scope, receive, send)
            return

        if not self.client.config.active:
            await self.app(scope, receive, send)
            return

        try:
            body = await Request(scope, receive).body()
        except ClientDisconnect:
            logger.debug(f"Client disconnected before request body was read: {scope['path']}")
            return

        try:
            modified_body = await self._inject_until_disconnect(body, receive)
        except Exception as e:
            logger.warning(f"Memory injection failed (continuing without): {e}")
            modified_body = body

        if modified_body is None:
            logger.debug(f"Client disconnected during memory fetch: {scope['path']}")
            return

        user_message = extract_user_message(body)

        capture = ResponseCapture(send)
        await self.app(
            _with_content_length(scope, len(modified_body)),
            _replay_body(modified_body, receive),
            capture,
        )

        if user_message and capture.body:
            self.dispatcher.submit(user_message, capture.body)

    async def _inject_until_disconnect(self, body: bytes, receive: Receive) -> bytes | None:
        """Run memory injection, abandoning it if the client disconnects first.

        Returns None when the client went away before injection finished.
        """
        injection = asyncio.create_task(inject_memory(self.client, body))
        disconnect = asyncio.create_task(_wait_for_disconnect(receive))
        try:
            await asyncio.wait({injection, disconnect}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (injection, disconnect):
                task.cancel()
            await asyncio.gather(injection, disconnect, return_exceptions=True)

        if not injection.cancelled():
            return injection.result()
        if disconnect.cancelled():
            return body
        error = disconnect.exception()
        if error is None:
            return None
        logger.warning(f"Disconnect listener failed (continuing without memory): {error}")
        return body


def install_memory_injection(
    app: FastAPI,
    config: MemoryConfig,
    client: LettaClient | None = None,
    update_timeout_s: float = DEFAULT_UPDATE_TIMEOUT_S,
    max_pending_updates: int = DEFAULT_MAX_PENDING_UPDATES,
) -> MemoryUpdateDispatcher | None:
    """
    Register the memory injection middleware on app.

    Args:
        app: Host application
        config: Memory configuration
        client: Optional client to use instead of building one from config
        update_timeout_s: Lifetime budget of each background update
        max_pending_updates: Cap on concurrent background updates (0 = unbounded)

    Returns:
        The update dispatcher (also stored on app.state.memory_dispatcher),
        or None when memory injection is disabled
    """
    if not config.enabled:
        logger.info("Memory injection disabled (set LETTA_ENABLED=true to enable)")
        return None

    if not config.agent_id:
        logger.warning("Memory injection enabled but LETTA_AGENT_ID is empty; passing through")

    client = client or LettaClient(config, update_timeout_s=update_timeout_s)
    dispatcher = MemoryUpdateDispatcher(
        client, timeout_s=update_timeout_s, max_pending=max_pending_updates
    )
    app.add_middleware(MemoryInjectionMiddleware, client=client, dispatcher=dispatcher)
    app.state.memory_dispatcher = dispatcher

    logger.info(f"Memory injection enabled: server={config.server_url}, agent={config.agent_id}")
    return dispatcher
