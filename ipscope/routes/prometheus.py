# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint: text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Bridges ServiceMetrics → prometheus-client gauges on each scrape.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from ipscope.dependencies import get_admission, get_metrics
from ipscope.services.admission import AdmissionController
from ipscope.services.metrics import ServiceMetrics

router = APIRouter()

# Custom registry keeps default process/platform collectors out.
_registry = CollectorRegistry()

# Gauges rather than Counters: values are copied from ServiceMetrics, which
# owns the running totals.
_requests = Gauge(
    "ipscope_requests",
    "Requests seen by the admission gate",
    ["decision"],
    registry=_registry,
)

_preflights = Gauge(
    "ipscope_preflights",
    "CORS preflight requests answered by the gate",
    registry=_registry,
)

_resolutions = Gauge(
    "ipscope_resolutions",
    "Identity resolutions performed",
    registry=_registry,
)

_rdns_fallbacks = Gauge(
    "ipscope_rdns_fallbacks",
    "Resolutions where reverse DNS fell back to the address",
    registry=_registry,
)

_tracked_visitors = Gauge(
    "ipscope_tracked_visitors",
    "Client keys currently held by the admission controller",
    registry=_registry,
)

_visitors_evicted = Gauge(
    "ipscope_visitors_evicted",
    "Client keys removed by the idle sweep",
    registry=_registry,
)


def _sync_metrics(metrics: ServiceMetrics, admission: AdmissionController) -> None:
    """Copy ServiceMetrics and registry size into the Prometheus gauges."""
    data = metrics.to_dict()
    _requests.labels(decision="admitted").set(data["requests_admitted"])
    _requests.labels(decision="denied").set(data["requests_denied"])
    _preflights.set(data["preflights"])
    _resolutions.set(data["resolutions_total"])
    _rdns_fallbacks.set(data["rdns_fallbacks"])
    _visitors_evicted.set(data["visitors_evicted"])
    _tracked_visitors.set(len(admission))


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: ServiceMetrics = Depends(get_metrics),
    admission: AdmissionController = Depends(get_admission),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    _sync_metrics(metrics, admission)
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
