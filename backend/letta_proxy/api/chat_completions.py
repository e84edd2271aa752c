"""OpenAI-compatible chat completion passthrough.

Forwards /v1/chat/completions to the configured upstream provider and streams
the upstream response back unchanged, so memory injection sits in front of
any OpenAI-compatible backend.
"""

import logging

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["openai-compat"])

# Headers that must not be copied between hops.
# content-length/content-encoding are dropped because bodies are re-framed and decoded.
HOP_BY_HOP_HEADERS = frozenset(
    [
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
        "content-encoding",
        "host",
    ]
)


def _error_response(status_code: int, message: str, error_type: str) -> JSONResponse:
    """Build an OpenAI-style error envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": error_type}},
    )


def filter_headers(headers: httpx.Headers | dict[str, str]) -> dict[str, str]:
    """Drop hop-by-hop headers."""
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


def upstream_request_headers(request: Request, api_key: str) -> dict[str, str]:
    """Headers to send upstream: caller's headers plus a fallback bearer token."""
    headers = filter_headers(dict(request.headers))
    headers.pop("accept-encoding", None)
    if api_key and "authorization" not in {k.lower() for k in headers}:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


@router.post("/chat/completions")
async def chat_completions(request: Request) -> Response:
    """Forward a chat completion request to the upstream provider."""
    client: httpx.AsyncClient = request.app.state.upstream_client
    api_key: str = request.app.state.upstream_api_key

    body = await request.body()
    upstream_request = client.build_request(
        "POST",
        "chat/completions",
        content=body,
        headers=upstream_request_headers(request, api_key),
    )

    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.TimeoutException:
        logger.warning(f"Upstream timed out: {upstream_request.url}")
        return _error_response(504, "Upstream provider timed out", "upstream_timeout")
    except httpx.HTTPError as e:
        logger.warning(f"Upstream request failed: {e}")
        return _error_response(502, f"Upstream provider unavailable: {e}", "upstream_error")

    return StreamingResponse(
        upstream.aiter_bytes(),
        status_code=upstream.status_code,
        headers=filter_headers(upstream.headers),
        background=BackgroundTask(upstream.aclose),
    )
