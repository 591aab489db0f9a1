"""
Monitoring API routes
"""
from fastapi import APIRouter, Depends, Request
import logging

from ..models import HealthCheckResponse, MetricsResponse
from ..dependencies import get_engine, get_workflow_repository
from ... import __version__


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    request: Request,
    engine = Depends(get_engine),
    workflows = Depends(get_workflow_repository)
) -> HealthCheckResponse:
    """Health check"""
    checks = {}

    try:
        await workflows.list(limit=1)
        checks["workflow_repository"] = True
    except Exception as e:
        logger.error(f"Workflow repository health check failed: {e}")
        checks["workflow_repository"] = False

    try:
        await engine.store.list(limit=1)
        checks["execution_store"] = True
    except Exception as e:
        logger.error(f"Execution store health check failed: {e}")
        checks["execution_store"] = False

    checks["engine"] = engine.started
    checks["worker_pool"] = engine.worker_pool.running
    schedules = getattr(request.app.state, "schedules", None)
    checks["schedule_runner"] = schedules is not None and schedules.running

    return HealthCheckResponse(
        status="healthy" if all(checks.values()) else "unhealthy",
        version=__version__,
        checks=checks
    )


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(engine = Depends(get_engine)) -> MetricsResponse:
    """Engine metrics"""
    snapshot = engine.metrics.snapshot()
    return MetricsResponse(
        active_executions=engine.active_count,
        worker_pool={
            "size": engine.worker_pool.size,
            "busy": engine.worker_pool.busy,
            "queued": engine.worker_pool.queued,
        },
        store_backlog=engine.recorder.backlog,
        plan_cache_size=len(engine.plan_cache),
        counters=snapshot["counters"],
        histograms=snapshot["histograms"]
    )
