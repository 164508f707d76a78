"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_LBB_API_URL = "https://api.emploi-store.fr/partenaire/labonneboite/v1"
DEFAULT_SIRENE_API_URL = "https://api.insee.fr/entreprises/sirene/V3"


class ConfigError(RuntimeError):
    """Raised when configuration values cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    lbb_api_url: str = DEFAULT_LBB_API_URL
    lbb_access_token: str = ""
    sirene_api_url: str = DEFAULT_SIRENE_API_URL
    sirene_access_token: str = ""
    worker_port: int = 9000
    lbb_calls_per_second: float = 1.0
    lbb_max_concurrent_calls: int = 1
    sirene_calls_per_second: float = 5.0
    http_timeout_seconds: float = 10.0
    http_max_retries: int = 2
    sourcing_radius_km: float = 50.0
    sourcing_lookback_days: int = 30
    pipeline_max_failures: int = 10


def _get_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    lbb_access_token = os.getenv("LBB_ACCESS_TOKEN", "")
    sirene_access_token = os.getenv("SIRENE_ACCESS_TOKEN", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not lbb_access_token:
        logger.warning("LBB_ACCESS_TOKEN is not configured; La Bonne Boite requests will fail.")
    if not sirene_access_token:
        logger.warning("SIRENE_ACCESS_TOKEN is not configured; registry lookups will fail.")

    return Settings(
        database_url=database_url,
        lbb_api_url=os.getenv("LBB_API_URL") or DEFAULT_LBB_API_URL,
        lbb_access_token=lbb_access_token,
        sirene_api_url=os.getenv("SIRENE_API_URL") or DEFAULT_SIRENE_API_URL,
        sirene_access_token=sirene_access_token,
        worker_port=_get_number("WORKER_PORT", "9000", int),
        lbb_calls_per_second=_get_number("LBB_CALLS_PER_SECOND", "1", float),
        lbb_max_concurrent_calls=_get_number("LBB_MAX_CONCURRENT_CALLS", "1", int),
        sirene_calls_per_second=_get_number("SIRENE_CALLS_PER_SECOND", "5", float),
        http_timeout_seconds=_get_number("HTTP_TIMEOUT_SECONDS", "10", float),
        http_max_retries=_get_number("HTTP_MAX_RETRIES", "2", int),
        sourcing_radius_km=_get_number("SOURCING_RADIUS_KM", "50", float),
        sourcing_lookback_days=_get_number("SOURCING_LOOKBACK_DAYS", "30", int),
        pipeline_max_failures=_get_number("PIPELINE_MAX_FAILURES", "10", int),
    )
