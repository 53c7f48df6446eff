"""Routes for the basketllm service."""

from .admin import router as admin_router
from .chat import router as chat_router
from .health import router as health_router
from .rate_limits import router as rate_limits_router

__all__ = [
    "admin_router",
    "chat_router",
    "health_router",
    "rate_limits_router",
]
