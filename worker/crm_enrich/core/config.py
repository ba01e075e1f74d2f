"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    worker_port: int = 9000
    crawl_max_pages: int = 200
    crawl_max_depth: int = 3
    crawl_delay_seconds: float = 0.8
    crawl_respect_robots: bool = True
    request_timeout: int = 10
    crawl_user_agent: str = "CrmEnrichBot/1.0 (address extraction)"
    nominatim_user_agent: str = "CrmEnrichGeocoder/1.0"
    mapbox_access_token: str = ""
    google_maps_api_key: str = ""
    match_min_similarity: float = 0.3
    import_batch_size: int = 200
    import_max_workers: int = 4
    geocode_delay_seconds: float = 1.1


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    mapbox_access_token = os.getenv("MAPBOX_ACCESS_TOKEN") or os.getenv("MAPBOX_SECRET_TOKEN") or ""
    google_maps_api_key = os.getenv("GOOGLE_MAPS_API_KEY", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; only dry runs and stateless crawls will work.")
    if not mapbox_access_token:
        logger.warning("MAPBOX_ACCESS_TOKEN is not configured; geocoding falls back to Nominatim only.")

    return Settings(
        database_url=database_url,
        worker_port=int(os.getenv("WORKER_PORT", "9000")),
        crawl_max_pages=int(os.getenv("CRAWL_MAX_PAGES", "200")),
        crawl_max_depth=int(os.getenv("CRAWL_MAX_DEPTH", "3")),
        crawl_delay_seconds=float(os.getenv("CRAWL_DELAY_SECONDS", "0.8")),
        crawl_respect_robots=_env_bool("CRAWL_RESPECT_ROBOTS", True),
        request_timeout=int(os.getenv("REQUEST_TIMEOUT_SECONDS", "10")),
        crawl_user_agent=os.getenv("CRAWL_USER_AGENT") or Settings.crawl_user_agent,
        nominatim_user_agent=os.getenv("NOMINATIM_USER_AGENT") or Settings.nominatim_user_agent,
        mapbox_access_token=mapbox_access_token,
        google_maps_api_key=google_maps_api_key,
        match_min_similarity=float(os.getenv("MATCH_MIN_SIMILARITY", "0.3")),
        import_batch_size=max(1, int(os.getenv("IMPORT_BATCH_SIZE", "200"))),
        import_max_workers=max(1, int(os.getenv("IMPORT_MAX_WORKERS", "4"))),
        geocode_delay_seconds=float(os.getenv("GEOCODE_DELAY_SECONDS", "1.1")),
    )


def require_database_url(settings: Settings) -> str:
    """Return the configured DSN or abort the run before any work starts."""
    if not settings.database_url:
        raise ConfigError("DATABASE_URL must be set in the environment (or pass --dry-run).")
    return settings.database_url
