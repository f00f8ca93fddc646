"""
Base Search Client
Abstract contract every coverage search backend implements
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Sequence
import logging

from core import AlertQuery, CoverageCandidate


logger = logging.getLogger(__name__)


class CoverageSearchClient(ABC):
    """
    Coverage search backend.

    ``fetch_coverage`` returns normalized, scored candidates with duplicate raw
    URLs removed across the whole call, and raises on any provider failure
    instead of returning a partial list.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name used in logs"""
        pass

    @abstractmethod
    async def fetch_coverage(self, alerts: Sequence[AlertQuery], since: datetime) -> List[CoverageCandidate]:
        """
        Fetch coverage for the given alert queries.

        Args:
            alerts: (alert_id, query) pairs; an empty list means no provider call
            since: watermark hint bounding how far back to look

        Returns:
            Deduplicated candidates in provider rank order, alert by alert
        """
        pass

    def is_configured(self) -> bool:
        return True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Release HTTP resources"""
        pass

    def _log_search(self, query: str, count: int):
        logger.info(f"[{self.name}] Search '{query}' returned {count} new results")

    def _log_error(self, message: str, error: Exception):
        logger.error(f"[{self.name}] {message}: {error}")
