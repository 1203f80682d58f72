"""Health check API endpoints for monitoring and load balancer integration."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from ..cache import health_check

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def basic_health_check() -> Dict[str, Any]:
    """Basic health check that returns service status."""
    return {
        "status": "healthy",
        "message": "Service is operational",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/health/monitor")
async def monitor_health_check(request: Request) -> Dict[str, Any]:
    """Chain monitor, window store and Redis mirror status."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        return {
            "status": "starting",
            "message": "Services not initialized",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    services = getattr(request.app.state, "services", None)
    redis_status = "disabled"
    if services is not None and services.result_store.redis_client is not None:
        redis_status = "healthy" if await health_check() else "unavailable"
        if redis_status == "unavailable":
            logger.warning("Redis health check failed")

    stats = orchestrator.get_mempool_stats()
    healthy = stats["is_monitoring"] and redis_status != "unavailable"
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "mempool": stats,
        "redis": redis_status,
        "active_probes": len(orchestrator.get_active_probes()),
    }
