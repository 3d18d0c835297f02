"""Pagination strategies for Confluence REST collection endpoints."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse


class PaginationStrategy(ABC):
    """
    Decides the query parameters for each page of a collection request.

    A strategy is stateless; the per-request state is the ``params`` dict it
    returns, which the client feeds back into :meth:`next_params`.
    """

    name = ''

    def __init__(self, limit: int = 50):
        if limit < 1:
            raise ValueError("Pagination limit must be at least 1")
        self.limit = limit

    @abstractmethod
    def first_params(self) -> Dict[str, Any]:
        """Query parameters for the first request."""

    @abstractmethod
    def next_params(
        self,
        params: Dict[str, Any],
        payload: Dict[str, Any],
        results: List[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """
        Query parameters for the following request.

        Args:
            params: Parameters of the request just made
            payload: Decoded response body
            results: The ``results`` list from that body

        Returns:
            Parameters for the next request, or None when the collection is exhausted
        """

    @classmethod
    def from_name(cls, name: str, limit: int = 50) -> 'PaginationStrategy':
        """
        Create a strategy from its configuration name.

        Args:
            name: ``offset`` or ``cursor``
            limit: Page size

        Returns:
            PaginationStrategy instance

        Raises:
            ValueError: If the name is unknown
        """
        strategies = {s.name: s for s in (OffsetPagination, CursorPagination)}
        if name not in strategies:
            raise ValueError(f"Unknown pagination strategy: {name}. Must be one of {sorted(strategies)}")
        return strategies[name](limit)


class OffsetPagination(PaginationStrategy):
    """``start``/``limit`` paging. A short page means the end."""

    name = 'offset'

    def first_params(self) -> Dict[str, Any]:
        return {'start': 0, 'limit': self.limit}

    def next_params(self, params, payload, results):
        if len(results) < self.limit:
            return None
        return {**params, 'start': params.get('start', 0) + len(results)}


class CursorPagination(PaginationStrategy):
    """Opaque cursor paging driven by the ``_links.next`` link."""

    name = 'cursor'

    def first_params(self) -> Dict[str, Any]:
        return {'limit': self.limit}

    def next_params(self, params, payload, results):
        if len(results) < self.limit:
            return None

        next_link = (payload.get('_links') or {}).get('next')
        if not next_link:
            return None

        cursor = self.extract_cursor(next_link)
        if not cursor:
            return None
        return {**params, 'cursor': cursor}

    @staticmethod
    def extract_cursor(link: str) -> Optional[str]:
        """Pull the ``cursor`` query value out of a next link."""
        values = parse_qs(urlparse(link).query).get('cursor')
        return values[0] if values else None


__all__ = ['PaginationStrategy', 'OffsetPagination', 'CursorPagination']
