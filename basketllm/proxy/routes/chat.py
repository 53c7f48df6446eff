"""Chat route."""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from basketllm.orchestrator import Orchestrator
from basketllm.proxy.dependencies import get_orchestrator
from basketllm.proxy.schemas import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.post("/chat")
async def chat(
    body: ChatRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Run one orchestrated chat request.

    Rate-limit rejections answer 429 with ``reset_at``; configuration
    problems answer 400. Provider exhaustion is handled by the app's
    exception handler (503).
    """
    result = await orchestrator.chat(
        body.messages,
        body.task_type,
        body.options,
        user_id=body.user_id,
        tier=body.tier,
        metadata=body.metadata,
    )

    if result.ok:
        return result.response.model_dump(mode="json")

    error = result.error
    if error.type == "rate_limit_exceeded":
        headers = {}
        if error.reset_at is not None:
            headers["X-RateLimit-Reset"] = str(int(error.reset_at.timestamp()))
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": error.model_dump(mode="json")},
            headers=headers,
        )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": error.model_dump(mode="json")},
    )
