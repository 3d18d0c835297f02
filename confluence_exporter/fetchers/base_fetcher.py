"""Abstract base fetcher interface and fetcher errors."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import Page, Space


class FetcherError(Exception):
    """Base exception for fetcher-related errors."""
    pass


class ClientError(FetcherError):
    """Non-retryable HTTP error (4xx other than 404 and 429)."""

    def __init__(self, status_code: int, url: str, message: str = ''):
        self.status_code = status_code
        self.url = url
        super().__init__(message or f"HTTP {status_code} for {url}")


class FetchError(FetcherError):
    """Transient failure that persisted after all retries."""
    pass


class CircuitOpenError(FetcherError):
    """Raised instead of calling the API while the circuit breaker is open."""
    pass


class BaseFetcher(ABC):
    """Abstract base class for Confluence content sources.

    Every operation is a coroutine. Lookups of a single item return ``None``
    when the item does not exist; all other failures raise a
    :class:`FetcherError`.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, logger: logging.Logger = None):
        """
        Initialize base fetcher with configuration and logger.

        Args:
            config: Configuration dictionary
            logger: Logger instance (optional, uses module logger if not provided)
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('confluence_exporter.fetcher')

    @abstractmethod
    async def list_spaces(self) -> List[Space]:
        """
        List every space visible to the caller, in server order.

        Returns:
            List of Space objects
        """

    @abstractmethod
    async def get_space(self, space_key: str) -> Optional[Space]:
        """
        Fetch one space by key.

        Args:
            space_key: Confluence space key

        Returns:
            Space, or None if it does not exist
        """

    @abstractmethod
    async def list_space_pages(self, space_key: str) -> List[Page]:
        """
        List every page of a space with bodies, versions and ancestors.

        Args:
            space_key: Confluence space key

        Returns:
            List of Page objects
        """

    @abstractmethod
    async def get_page(self, page_id: str) -> Optional[Page]:
        """
        Fetch a single page with body, version, space, ancestors and child ids.

        Args:
            page_id: Confluence page ID

        Returns:
            Page, or None if it does not exist
        """

    @abstractmethod
    async def list_page_children(self, page_id: str) -> List[Page]:
        """
        List the direct children of a page, in provider order.

        Args:
            page_id: Confluence page ID

        Returns:
            List of fully populated child pages
        """

    @abstractmethod
    async def get_asset(self, url: str) -> bytes:
        """
        Download a binary asset.

        Args:
            url: Absolute URL, or a URL relative to the site base

        Returns:
            Raw bytes
        """

    async def get_hierarchy(self, root_id: str) -> List[Page]:
        """
        Fetch a page and all of its descendants.

        Args:
            root_id: ID of the root page

        Returns:
            Root first, then each descendant exactly once (depth-first)
        """
        from .hierarchy_walker import HierarchyWalker

        return await HierarchyWalker(self, logger=self.logger).walk(root_id)
