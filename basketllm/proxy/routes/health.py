"""Health check routes."""

from fastapi import APIRouter

from basketllm import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "version": __version__,
    }


@router.get("/health/liveness")
async def liveness_check():
    """Liveness probe."""
    return {
        "status": "alive",
    }
