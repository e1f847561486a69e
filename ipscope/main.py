# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn ipscope.main:create_app --factory --host 0.0.0.0 --port 8080
#         or: ipscope  (console script → serve(), adds TLS from settings)

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI

from ipscope import __version__
from ipscope.config import Settings, get_settings
from ipscope.exceptions import ConfigurationError, register_exception_handlers
from ipscope.logging_config import configure_logging
from ipscope.lookup.geo import GeoEnricher
from ipscope.lookup.rdns import ReverseDNSResolver
from ipscope.middleware import RequestContextMiddleware, RequestGateMiddleware
from ipscope.routes import health, identity, static
from ipscope.routes import prometheus as prometheus_routes
from ipscope.services.admission import AdmissionController, sweep_forever
from ipscope.services.identity import IdentityResolver
from ipscope.services.metrics import ServiceMetrics

logger = structlog.get_logger(__name__)


if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider


def _configure_otel(exporter_type: str) -> "TracerProvider | None":
    """Configure OpenTelemetry tracing (console or otlp)."""
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider()

    if exporter_type == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    elif exporter_type == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
        except ImportError:
            logger.warning("otlp_trace_exporter_not_available")
            return None
    else:
        logger.warning("unknown_otel_exporter", exporter=exporter_type)
        return None

    from opentelemetry import trace

    trace.set_tracer_provider(provider)
    logger.info("otel_configured", exporter=exporter_type)
    return provider


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open lookup databases, wire the resolver, own the visitor sweeper."""
    import os

    settings: Settings = app.state.settings
    admission: AdmissionController = app.state.admission
    metrics: ServiceMetrics = app.state.metrics

    otel_provider = None
    otel_exporter = os.environ.get("OTEL_EXPORTER", "")
    if otel_exporter:
        otel_provider = _configure_otel(otel_exporter)

    geo = GeoEnricher.from_paths(settings.city_db_path, settings.org_db_path)
    rdns = ReverseDNSResolver(timeout_seconds=settings.dns_timeout_seconds)

    app.state.geo = geo
    app.state.identity_resolver = IdentityResolver(geo, rdns, metrics=metrics)

    sweeper = asyncio.create_task(
        sweep_forever(
            admission,
            interval_seconds=settings.visitor_sweep_interval_seconds,
            on_sweep=metrics.record_sweep,
        ),
        name="visitor-sweeper",
    )
    sweeper.add_done_callback(_on_sweeper_done)
    app.state._sweeper_task = sweeper

    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass

    if otel_provider is not None:
        otel_provider.shutdown()

    geo.close()


def _on_sweeper_done(task: asyncio.Task[None]) -> None:
    """Surface a sweeper that died instead of being cancelled at shutdown."""
    if task.cancelled():
        return
    if exc := task.exception():
        logger.critical(
            "visitor_sweeper_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )


def create_app(
    settings: Settings | None = None,
    admission: AdmissionController | None = None,
) -> FastAPI:
    """Application factory. Invoked by: uvicorn ipscope.main:create_app --factory"""
    settings = settings or get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="ipscope",
        description="Caller address, location and hostname in several formats",
        version=__version__,
        lifespan=lifespan,
    )

    if admission is None:
        admission = AdmissionController(
            rate=settings.rate_limit_per_second,
            burst=settings.rate_limit_burst,
            idle_seconds=settings.visitor_idle_seconds,
        )
    metrics = ServiceMetrics()

    app.state.settings = settings
    app.state.admission = admission
    app.state.metrics = metrics

    # Middleware order (Starlette applies in reverse): RequestContext → Gate → routes
    app.add_middleware(RequestGateMiddleware, admission=admission, metrics=metrics)
    app.add_middleware(RequestContextMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(prometheus_routes.router, tags=["prometheus"])
    app.include_router(identity.router, tags=["identity"])
    app.include_router(static.router, tags=["static"])
    static.mount_static(app, settings.static_dir)

    return app


def serve() -> None:
    """Run under uvicorn with listener and TLS options from settings."""
    import uvicorn

    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    ssl_options: dict[str, str] = {}
    if settings.tls_enabled:
        if not settings.tls_cert_file or not settings.tls_key_file:
            raise ConfigurationError("TLS enabled but TLS_CERT_FILE or TLS_KEY_FILE not set")
        ssl_options = {
            "ssl_certfile": settings.tls_cert_file,
            "ssl_keyfile": settings.tls_key_file,
        }

    logger.info(
        "listening",
        host=settings.host,
        port=settings.port,
        tls=settings.tls_enabled,
    )
    uvicorn.run(
        "ipscope.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
        **ssl_options,
    )
