"""
Custom Exceptions
Error taxonomy for the coverage-refresh service
"""
from typing import Optional


class PressClipperError(Exception):
    """Base error for the coverage-refresh service"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PressClipperError):
    """Missing or invalid configuration"""
    pass


class ValidationError(PressClipperError):
    """Request rejected before any run is created"""
    pass


class ClientNotFoundError(PressClipperError):
    """Unknown client (or client outside the caller's org)"""

    def __init__(self, client_id: str, **kwargs):
        super().__init__(f"Client not found: {client_id}", kwargs)
        self.client_id = client_id


class AlertNotFoundError(PressClipperError):
    """Unknown alert"""

    def __init__(self, alert_id: str, **kwargs):
        super().__init__(f"Alert not found: {alert_id}", kwargs)
        self.alert_id = alert_id


class RunNotFoundError(PressClipperError):
    """Unknown run"""

    def __init__(self, run_id: str, **kwargs):
        super().__init__("Run not found", kwargs)
        self.run_id = run_id


class RunNotActiveError(PressClipperError):
    """Run is terminal and can no longer be cancelled"""

    def __init__(self, run_id: str, status: Optional[str] = None):
        super().__init__("Run is not active")
        self.run_id = run_id
        self.status = status


class SearchProviderError(PressClipperError):
    """Search provider failure: HTTP error, error payload or bad pagination"""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, kwargs)
        self.status_code = status_code


class StorageError(PressClipperError):
    """Data store failure"""
    pass


class PollTimeoutError(PressClipperError):
    """Run did not reach a terminal state in time"""

    def __init__(self, run_id: str, timeout: float):
        super().__init__(f"Run {run_id} not terminal after {timeout:.0f}s")
        self.run_id = run_id
        self.timeout = timeout
