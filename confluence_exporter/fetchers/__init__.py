"""Fetchers package for retrieving Confluence content over the REST API."""

from .base_fetcher import BaseFetcher, CircuitOpenError, ClientError, FetchError, FetcherError
from .circuit_breaker import CircuitBreaker
from .hierarchy_walker import HierarchyWalker
from .pagination import CursorPagination, OffsetPagination, PaginationStrategy

__all__ = [
    'BaseFetcher',
    'FetcherError',
    'ClientError',
    'FetchError',
    'CircuitOpenError',
    'CircuitBreaker',
    'HierarchyWalker',
    'PaginationStrategy',
    'OffsetPagination',
    'CursorPagination'
]
