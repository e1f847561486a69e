# ─────────────────────────────────────────────────────────────────────────────
# Settings: Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env")

    # ── Listener ─────────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8080
    tls_enabled: bool = False
    tls_cert_file: str = ""
    tls_key_file: str = ""

    # ── Files ────────────────────────────────────────────────────────────────
    static_dir: str = "./static"
    geoip_dir: str = "./geoip"
    city_db_name: str = "ipcity.mmdb"
    org_db_name: str = "iporg.mmdb"

    # ── Admission control ────────────────────────────────────────────────────
    # 1 token/s sustained with a burst of 10 per client address.
    rate_limit_per_second: float = 1.0
    rate_limit_burst: int = 10
    visitor_sweep_interval_seconds: float = 300.0
    visitor_idle_seconds: float = 600.0

    # ── Lookups ──────────────────────────────────────────────────────────────
    dns_timeout_seconds: float = 2.0

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def city_db_path(self) -> Path:
        return Path(self.geoip_dir) / self.city_db_name

    @property
    def org_db_path(self) -> Path:
        return Path(self.geoip_dir) / self.org_db_name


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
