"""
Health, readiness and metrics endpoints.

Liveness has no dependencies. Readiness reports the subscription database,
the task store and the local model separately; only the subscription
database is required, since the other two degrade gracefully.
"""

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from examprep.api.deps import get_orchestrator, get_retriever
from examprep.core.database import check_connection
from examprep.core.metrics import METRICS
from examprep.features.ai.service import AIOrchestrator
from examprep.features.retrieval.service import TaskContextRetriever

logger = logging.getLogger("examprep")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    retriever: TaskContextRetriever = Depends(get_retriever),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    db_ok = await run_in_threadpool(check_connection)
    checks = {
        "database": db_ok,
        "task_store": retriever.is_available,
        "local_model": await orchestrator.probe_local(),
    }
    if not db_ok:
        logger.warning("[readyz] subscription database unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "checks": checks})
    status = "ok" if all(checks.values()) else "degraded"
    return {"status": status, "checks": checks}


@router.get("/metrics")
def metrics_endpoint():
    payload = METRICS.export_prometheus()
    return Response(content=payload, media_type="text/plain")
