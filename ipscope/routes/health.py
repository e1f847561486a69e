# ─────────────────────────────────────────────────────────────────────────────
# Health Check Routes: liveness, readiness, metrics
# ─────────────────────────────────────────────────────────────────────────────
#   /health        → Liveness probe. Near-zero cost, always 200.
#   /health/ready  → Readiness. Reports loaded databases and tracked
#                    visitors. The service answers without databases, so
#                    this is 503 only before the lifespan has wired state.
#   /metrics       → Gate and resolver counters as JSON.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ipscope.dependencies import get_admission, get_metrics
from ipscope.schemas import LivenessResponse, ReadinessResponse
from ipscope.services.admission import AdmissionController
from ipscope.services.metrics import ServiceMetrics

router = APIRouter()


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe: is the process alive? No deps, no I/O."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(
    request: Request,
    admission: AdmissionController = Depends(get_admission),
) -> JSONResponse:
    """Readiness probe: has startup finished wiring the resolver?"""
    geo = getattr(request.app.state, "geo", None)
    ready = getattr(request.app.state, "identity_resolver", None) is not None

    response = ReadinessResponse(
        status="ready" if ready else "not_ready",
        databases=geo.loaded if geo is not None else {"city": False, "org": False},
        tracked_visitors=len(admission),
    )
    return JSONResponse(
        status_code=200 if ready else 503,
        content=response.model_dump(),
    )


@router.get("/metrics")
async def metrics_endpoint(
    metrics: ServiceMetrics = Depends(get_metrics),
    admission: AdmissionController = Depends(get_admission),
) -> dict[str, Any]:
    """Admission and resolution counters."""
    return {**metrics.to_dict(), "tracked_visitors": len(admission)}
