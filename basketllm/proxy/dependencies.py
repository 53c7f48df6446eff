"""FastAPI dependencies."""

from fastapi import Request

from basketllm.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    """Get the orchestrator from app state."""
    return request.app.state.orchestrator
