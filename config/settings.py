"""
Settings Configuration
Pydantic-validated settings, one section per concern
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from utils.exceptions import ConfigurationError


class SerpApiSettings(BaseSettings):
    """SerpApi (Google engine) search provider"""
    api_key: Optional[str] = Field(default=None, description="SerpApi API key")
    base_url: str = Field(default="https://serpapi.com/search.json", description="Search endpoint")
    engine: str = Field(default="google", description="SerpApi engine")
    location: str = Field(default="United States", description="Search location")
    hl: str = Field(default="en", description="Interface language")
    gl: str = Field(default="us", description="Country")
    google_domain: str = Field(default="google.com", description="Google domain")
    max_pages: int = Field(default=100, description="Page ceiling per alert query")
    page_size: int = Field(default=10, description="Results per provider page (rank fallback)")
    timeout: float = Field(default=30.0, description="Request timeout (seconds)")
    max_retries: int = Field(default=3, description="Attempts for transport-level errors")

    class Config:
        env_prefix = "SERPAPI_"


class WorkerSettings(BaseSettings):
    """Refresh worker loop"""
    poll_interval: float = Field(default=5.0, description="Idle wait between polls (seconds)")
    worker_id: Optional[str] = Field(default=None, description="Worker name used in logs")

    class Config:
        env_prefix = "WORKER_"


class StorageSettings(BaseSettings):
    """Data store"""
    backend: str = Field(default="sqlite", description="sqlite, or memory for a single process")
    sqlite_path: str = Field(default="./data/pressclipper.db", description="SQLite database file")

    class Config:
        env_prefix = "STORAGE_"


class ScoringSettings(BaseSettings):
    """Scoring reference data"""
    authority_file: Optional[str] = Field(default=None, description="JSON file of outlet authority overrides")

    class Config:
        env_prefix = "SCORING_"


class PollerSettings(BaseSettings):
    """Run status polling (client side)"""
    interval: float = Field(default=2.0, description="Seconds between status polls")
    timeout: float = Field(default=300.0, description="Give up after this many seconds")

    class Config:
        env_prefix = "POLLER_"


class ApiSettings(BaseSettings):
    """HTTP API"""
    default_org_id: str = Field(default="default", description="Org used when no X-Org-Id header is sent")
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8000, description="Bind port")

    class Config:
        env_prefix = "API_"


class Settings(BaseSettings):
    """Aggregated settings"""

    serpapi: SerpApiSettings = Field(default_factory=SerpApiSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    poller: PollerSettings = Field(default_factory=PollerSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading ``config/.env`` (or ``env_path``) into the environment first."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            serpapi=SerpApiSettings(),
            worker=WorkerSettings(),
            storage=StorageSettings(),
            scoring=ScoringSettings(),
            poller=PollerSettings(),
            api=ApiSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton"""
    return Settings.load_from_env_file()


def get_serpapi_settings() -> SerpApiSettings:
    return get_settings().serpapi


def get_storage_settings() -> StorageSettings:
    return get_settings().storage


def validate_worker_settings(settings: Settings) -> None:
    """Fail fast when the worker cannot reach the search provider."""
    missing: List[str] = []
    if not str(settings.serpapi.api_key or "").strip():
        missing.append("SERPAPI_API_KEY")
    if settings.storage.backend not in {"memory", "sqlite"}:
        raise ConfigurationError(
            f"Unsupported storage backend: {settings.storage.backend}",
            {"env": "STORAGE_BACKEND"},
        )
    if missing:
        raise ConfigurationError("Missing environment variables", {"missing": missing})
