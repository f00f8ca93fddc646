"""
Storage Module
Coverage store contract, in-memory and SQLite implementations
"""
from typing import Optional

from config import StorageSettings, get_storage_settings
from utils.exceptions import ConfigurationError
from .base import CoverageStore, collapse_rows, new_id
from .memory_store import InMemoryCoverageStore
from .sqlite_store import SqliteCoverageStore


def build_store(settings: Optional[StorageSettings] = None) -> CoverageStore:
    """Create the store selected by ``STORAGE_BACKEND``."""
    settings = settings or get_storage_settings()
    backend = str(settings.backend or "").strip().lower()
    if backend == "memory":
        return InMemoryCoverageStore()
    if backend == "sqlite":
        return SqliteCoverageStore(settings.sqlite_path)
    raise ConfigurationError(f"Unsupported storage backend: {settings.backend}", {"env": "STORAGE_BACKEND"})


__all__ = [
    "CoverageStore",
    "InMemoryCoverageStore",
    "SqliteCoverageStore",
    "build_store",
    "collapse_rows",
    "new_id",
]
