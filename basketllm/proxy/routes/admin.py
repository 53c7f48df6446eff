"""Administrative routes: cache stats, maintenance, provider status, usage."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from basketllm.orchestrator import Orchestrator
from basketllm.proxy.dependencies import get_orchestrator
from basketllm.proxy.schemas import MaintenanceResult, UsageSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/cache/stats")
async def cache_stats(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.cache.get_stats()


@router.post("/maintenance/purge", response_model=MaintenanceResult)
async def purge(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Run the maintenance sweep now."""
    result = await orchestrator.run_maintenance()
    logger.info("Manual maintenance run: %s", result)
    return MaintenanceResult(**result)


@router.get("/providers")
async def provider_status(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return {"providers": await orchestrator.get_provider_status()}


@router.get("/usage", response_model=UsageSummary)
async def usage_summary(
    user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    summary = await orchestrator.cost_tracker.get_usage_summary(user_id=user_id, start=start, end=end)
    return UsageSummary(**summary)
