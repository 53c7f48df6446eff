"""Rate-limit status routes."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends

from basketllm.orchestrator import Orchestrator
from basketllm.proxy.dependencies import get_orchestrator
from basketllm.proxy.schemas import RateLimitStatus, UsageResponse
from basketllm.types import SubscriptionTier

router = APIRouter(tags=["rate-limits"])


@router.get("/rate-limits/{user_id}", response_model=RateLimitStatus)
async def get_rate_limit(
    user_id: str,
    tier: Optional[SubscriptionTier] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Remaining quota for display in the UI."""
    result = await orchestrator.check_rate_limit(user_id, tier)
    usage = orchestrator.get_usage(user_id)

    return RateLimitStatus(
        user_id=user_id,
        allowed=result.allowed,
        remaining=result.remaining,
        reset_at=result.reset_at,
        reason=result.reason,
        window=result.window,
        usage=UsageResponse(**asdict(usage)),
    )
