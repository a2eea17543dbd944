import os
from pathlib import Path

# Basic settings helper to read environment configuration.

BACKEND_ROOT = Path(__file__).resolve().parent
DATA_DIR = BACKEND_ROOT / "data"


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


class Settings:
    def __init__(self) -> None:
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

        # Storage
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL", f"sqlite:///{DATA_DIR / 'venue_visits.db'}"
        )
        self.VERIFICATION_CACHE_PATH: str = os.getenv(
            "VERIFICATION_CACHE_PATH", str(DATA_DIR / "verification_cache.sqlite")
        )

        # Import limits
        self.IMPORT_MAX_PAYLOAD_BYTES: int = _as_int(
            os.getenv("IMPORT_MAX_PAYLOAD_BYTES"), 100 * 1024 * 1024
        )
        self.IMPORT_ASYNC_THRESHOLD: int = _as_int(os.getenv("IMPORT_ASYNC_THRESHOLD"), 100)

        # Outbound HTTP
        self.HTTP_TIMEOUT_SECONDS: float = _as_float(os.getenv("HTTP_TIMEOUT_SECONDS"), 10.0)
        self.HTTP_USER_AGENT: str = os.getenv(
            "HTTP_USER_AGENT", "venue-visit-import/0.1 (contact: example@example.com)"
        )
        self.EXTERNAL_VERIFICATION_ENABLED: bool = _as_bool(
            os.getenv("EXTERNAL_VERIFICATION_ENABLED"), True
        )
        self.BREWERY_DIRECTORY_URL: str = os.getenv(
            "BREWERY_DIRECTORY_URL", "https://api.openbrewerydb.org/v1/breweries"
        )
        self.BREWERY_DIRECTORY_HOURLY_LIMIT: int = _as_int(
            os.getenv("BREWERY_DIRECTORY_HOURLY_LIMIT"), 100
        )
        self.WEB_SEARCH_URL: str = os.getenv("WEB_SEARCH_URL", "https://html.duckduckgo.com/html/")
        self.WEB_SEARCH_MIN_INTERVAL: float = _as_float(os.getenv("WEB_SEARCH_MIN_INTERVAL"), 0.5)
        self.OVERPASS_URL: str = os.getenv("OVERPASS_URL", "https://overpass-api.de/api/interpreter")
        self.OVERPASS_MIN_INTERVAL: float = _as_float(os.getenv("OVERPASS_MIN_INTERVAL"), 2.0)

        # Background jobs
        self.CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
        self.CELERY_RESULT_BACKEND: str = os.getenv(
            "CELERY_RESULT_BACKEND", "redis://localhost:6379/1"
        )
        self.CELERY_TASK_ALWAYS_EAGER: bool = _as_bool(os.getenv("CELERY_TASK_ALWAYS_EAGER"), False)
        self.IMPORT_WORKER_CONCURRENCY: int = _as_int(os.getenv("IMPORT_WORKER_CONCURRENCY"), 5)
        self.IMPORT_JOB_MAX_ATTEMPTS: int = _as_int(os.getenv("IMPORT_JOB_MAX_ATTEMPTS"), 3)
        self.IMPORT_JOB_BACKOFF_SECONDS: float = _as_float(
            os.getenv("IMPORT_JOB_BACKOFF_SECONDS"), 2.0
        )


settings = Settings()
