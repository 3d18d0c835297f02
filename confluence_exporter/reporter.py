"""Usage reporting side channel."""

import logging
import socket
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import quote, urljoin

import httpx

from .models import UsageMetrics

logger = logging.getLogger('confluence_exporter.reporter')

DEFAULT_ENDPOINT = 'https://marketplace.atlassian.com/'


class Reporter(ABC):
    """Receives aggregate usage metrics after a successful export."""

    def __init__(self, installation_id: Optional[str] = None):
        self.installation_id = installation_id or socket.gethostname()

    @abstractmethod
    async def report_usage(self, metrics: UsageMetrics) -> bool:
        """
        Send usage metrics.

        Implementations never raise; a failed report returns False.

        Args:
            metrics: Aggregate numbers for one export run

        Returns:
            True if the metrics were accepted
        """


class NoOpReporter(Reporter):
    """Reporter used when usage reporting is disabled."""

    async def report_usage(self, metrics: UsageMetrics) -> bool:
        return True


class MarketplaceReporter(Reporter):
    """POSTs usage metrics as JSON to ``api/installations/{id}/metrics``."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        installation_id: Optional[str] = None,
        timeout: float = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: logging.Logger = None
    ):
        super().__init__(installation_id)
        self.endpoint = endpoint.rstrip('/') + '/'
        self.timeout = timeout
        self.transport = transport
        self.logger = logger or logging.getLogger('confluence_exporter.reporter')

    async def report_usage(self, metrics: UsageMetrics) -> bool:
        url = urljoin(self.endpoint, f"api/installations/{quote(metrics.installation_id, safe='')}/metrics")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=metrics.to_payload())
        except httpx.HTTPError as e:
            self.logger.warning(f"Failed to report usage metrics: {e}")
            return False

        if not response.is_success:
            self.logger.warning(f"Usage metrics rejected with HTTP {response.status_code}")
            return False

        self.logger.debug(f"Usage metrics reported for installation {metrics.installation_id}")
        return True


def create_reporter(config: Dict[str, Any]) -> Reporter:
    """
    Build the reporter selected by the ``reporting`` config section.

    Args:
        config: Configuration dictionary

    Returns:
        MarketplaceReporter when reporting is enabled, otherwise NoOpReporter
    """
    reporting = config.get('reporting') or {}
    if not reporting.get('enabled'):
        return NoOpReporter()

    return MarketplaceReporter(
        endpoint=reporting.get('endpoint') or DEFAULT_ENDPOINT,
        installation_id=reporting.get('installation_id')
    )


__all__ = ['MarketplaceReporter', 'NoOpReporter', 'Reporter', 'create_reporter']
