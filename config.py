import logging
import math
import os
from typing import List, Optional

from pydantic import BaseModel

logger = logging.getLogger("portfolio.config")

BACKEND_SUPABASE = "supabase"
BACKEND_MEMORY = "memory"

CONFIG_MISSING_MESSAGE = "Backend not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY."


def _env_float(name: str, default: float) -> float:
    """Non-negative finite float from the environment; falls back to default on anything else."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        value = None
    if value is None or not math.isfinite(value) or value < 0:
        logger.warning("Ignoring %s=%r: expected a non-negative number, using %s", name, raw, default)
        return default
    return value


class AppConfig(BaseModel):
    """Runtime configuration snapshot, read once at startup."""

    backend_url: str = ""
    backend_key: str = ""
    backend_mode: str = BACKEND_SUPABASE
    jwt_secret: Optional[str] = None
    request_timeout: float = 10.0
    settings_ttl: float = 60.0
    projects_ttl: float = 30.0
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # memory mode only
    bootstrap_token: Optional[str] = None
    demo_admin_email: Optional[str] = None
    demo_admin_password: Optional[str] = None

    @property
    def env_ready(self) -> bool:
        if self.backend_mode == BACKEND_MEMORY:
            return True
        return bool(self.backend_url.strip() and self.backend_key.strip())

    @classmethod
    def from_env(cls) -> "AppConfig":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            backend_url=os.getenv("SUPABASE_URL", ""),
            backend_key=os.getenv("SUPABASE_ANON_KEY", ""),
            backend_mode=os.getenv("PORTFOLIO_BACKEND", BACKEND_SUPABASE).strip().lower(),
            jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
            request_timeout=_env_float("BACKEND_TIMEOUT", 10.0),
            settings_ttl=_env_float("SETTINGS_CACHE_TTL", 60.0),
            projects_ttl=_env_float("PROJECTS_CACHE_TTL", 30.0),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE") or None,
            bootstrap_token=os.getenv("ADMIN_BOOTSTRAP_TOKEN") or None,
            demo_admin_email=os.getenv("DEMO_ADMIN_EMAIL") or None,
            demo_admin_password=os.getenv("DEMO_ADMIN_PASSWORD") or None,
        )
