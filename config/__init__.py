"""
Configuration Management Module
"""
from .settings import (
    Settings,
    SerpApiSettings,
    WorkerSettings,
    StorageSettings,
    ScoringSettings,
    PollerSettings,
    ApiSettings,
    get_settings,
    get_serpapi_settings,
    get_storage_settings,
    validate_worker_settings,
)

__all__ = [
    "Settings",
    "SerpApiSettings",
    "WorkerSettings",
    "StorageSettings",
    "ScoringSettings",
    "PollerSettings",
    "ApiSettings",
    "get_settings",
    "get_serpapi_settings",
    "get_storage_settings",
    "validate_worker_settings",
]
