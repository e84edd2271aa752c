"""Middleware modules for letta-proxy."""

from letta_proxy.middleware.memory_injection import (
    MemoryInjectionMiddleware,
    ResponseCapture,
    install_memory_injection,
)

__all__ = ["MemoryInjectionMiddleware", "ResponseCapture", "install_memory_injection"]
