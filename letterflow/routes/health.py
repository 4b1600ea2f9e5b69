"""
Health check endpoint

GET /api/health - approval queue health (status, per-state counts)
"""
from fastapi import APIRouter, Depends, status

from letterflow.dependencies import get_queue
from letterflow.models.approval import HealthCheckResult
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get(
    "",
    response_model=HealthCheckResult,
    status_code=status.HTTP_200_OK,
    summary="Approval queue health",
    description="Healthy, degraded (too many pending) or unhealthy (too many failed)"
)
async def queue_health(queue: ApprovalQueue = Depends(get_queue)) -> HealthCheckResult:
    result = await queue.health_check_async()
    if result.status.value != "healthy":
        logger.warning(f"Approval queue {result.status.value}: {result.counts}")
    return result
