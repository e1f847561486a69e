# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection: FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: create_app/lifespan create → app.state stores → Depends() injects.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from ipscope.config import Settings
from ipscope.services.admission import AdmissionController
from ipscope.services.identity import IdentityResolver
from ipscope.services.metrics import ServiceMetrics


def get_identity_resolver(request: Request) -> IdentityResolver:
    """Inject IdentityResolver into endpoints via Depends()."""
    return request.app.state.identity_resolver  # type: ignore[no-any-return]


def get_admission(request: Request) -> AdmissionController:
    return request.app.state.admission  # type: ignore[no-any-return]


def get_settings_dep(request: Request) -> Settings:
    """Inject Settings into endpoints via Depends()."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_metrics(request: Request) -> ServiceMetrics:
    return request.app.state.metrics  # type: ignore[no-any-return]
