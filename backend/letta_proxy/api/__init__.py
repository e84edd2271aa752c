"""API routers."""

from fastapi import APIRouter

from letta_proxy.api.chat_completions import router as chat_completions_router

router = APIRouter()
router.include_router(chat_completions_router)

__all__ = ["router"]
