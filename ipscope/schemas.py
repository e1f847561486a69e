# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


from pydantic import BaseModel, Field

from ipscope.lookup.geo import UNKNOWN_COUNTRY_CODE
from ipscope.services.identity import IdentityRecord


class IdentityDocument(BaseModel):
    """Caller identity as served by /json and /yaml.

    Field order is the wire order; YAML output relies on it.
    """

    ip_address: str = Field(..., description="Caller address (X-Forwarded-For or peer)")
    location: str = Field(..., description="'City, ST, Country' or 'Unknown'")
    hostname: str = Field(..., description="PTR name, or the address when none resolves")
    isp: str = ""
    city: str = ""
    country: str = ""
    country_code: str = Field(UNKNOWN_COUNTRY_CODE, description="ISO 3166-1 alpha-2, or XX")

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "IdentityDocument":
        return cls(
            ip_address=record.address,
            location=record.geo_details,
            hostname=record.hostname,
            isp=record.isp,
            city=record.city,
            country=record.country,
            country_code=record.country_code,
        )


class LivenessResponse(BaseModel):
    """Liveness probe: minimal, near-zero cost."""

    status: str = "ok"


class ReadinessResponse(BaseModel):
    """Readiness probe: which enrichment sources are available."""

    status: str  # "ready" or "not_ready"
    databases: dict[str, bool]
    tracked_visitors: int = Field(0, ge=0)
