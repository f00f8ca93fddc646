"""
Utils Module
Logging and error types shared across the service
"""
from .logger import setup_logger, get_logger, configure_library_logging
from .exceptions import (
    PressClipperError,
    ConfigurationError,
    ValidationError,
    ClientNotFoundError,
    AlertNotFoundError,
    RunNotFoundError,
    RunNotActiveError,
    SearchProviderError,
    StorageError,
    PollTimeoutError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "configure_library_logging",
    "PressClipperError",
    "ConfigurationError",
    "ValidationError",
    "ClientNotFoundError",
    "AlertNotFoundError",
    "RunNotFoundError",
    "RunNotActiveError",
    "SearchProviderError",
    "StorageError",
    "PollTimeoutError",
]
