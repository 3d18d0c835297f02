"""Async Confluence REST API client with pagination, retries and a circuit breaker."""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from . import __version__
from .fetchers.base_fetcher import BaseFetcher, CircuitOpenError, ClientError, FetchError
from .fetchers.circuit_breaker import CircuitBreaker
from .fetchers.pagination import PaginationStrategy
from .models import Page, Space

logger = logging.getLogger('confluence_exporter.client')

SPACE_PAGE_EXPAND = 'body.storage,version,space,ancestors'
PAGE_EXPAND = 'body.storage,version,space,ancestors,children.page'

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class ConfluenceClient(BaseFetcher):
    """Confluence REST API (v1) client built on ``httpx.AsyncClient``.

    Use it as an async context manager so the underlying connection pool is
    closed::

        async with ConfluenceClient.from_config(config) as client:
            spaces = await client.list_spaces()
    """

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = 300,
        max_retries: int = 3,
        retry_backoff_factor: float = 2.0,
        request_delay: float = 0.0,
        pagination: str = 'offset',
        page_size: int = 50,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        config: Optional[Dict[str, Any]] = None,
        logger: logging.Logger = None
    ):
        """
        Initialize the client.

        Args:
            base_url: Site base URL (e.g., "https://example.atlassian.net/wiki")
            username: Username for basic auth
            api_token: API token for basic auth
            timeout: HTTP request timeout in seconds
            max_retries: Maximum retry attempts for transient errors
            retry_backoff_factor: Exponential backoff factor
            request_delay: Seconds to sleep between paginated requests
            pagination: ``offset`` or ``cursor``
            page_size: Results requested per page
            circuit_breaker: Optional pre-built breaker (defaults to 5 failures / 30s)
            transport: Optional httpx transport (used by tests)
            config: Configuration dictionary the client was built from
            logger: Optional logger instance
        """
        super().__init__(config, logger or logging.getLogger('confluence_exporter.client'))
        if not base_url:
            raise ValueError("base_url is required")

        self.base_url = base_url.rstrip('/')
        self.max_retries = max_retries
        self.retry_backoff_factor = retry_backoff_factor
        self.request_delay = request_delay
        self.pagination = PaginationStrategy.from_name(pagination, page_size)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(logger=self.logger)

        auth = (username, api_token) if username and api_token else None
        if auth is None:
            self.logger.warning("No credentials configured - requests will be anonymous")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=auth,
            timeout=timeout,
            headers={
                'Accept': 'application/json',
                'User-Agent': f'confluence-exporter/{__version__}'
            },
            follow_redirects=True,
            transport=transport
        )

        self.logger.debug(f"Client configured for {self.base_url} with timeout={timeout}s, "
                          f"max_retries={max_retries}, backoff_factor={retry_backoff_factor}, "
                          f"pagination={self.pagination.name}")

    async def __aenter__(self) -> 'ConfluenceClient':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make an HTTP request with retry, backoff and circuit breaking.

        A 404 is returned to the caller as a response; the caller decides
        what "missing" means.

        Args:
            method: HTTP method
            url: Path relative to the base URL, or an absolute URL
            **kwargs: Additional arguments for httpx

        Returns:
            Response object (2xx or 404)

        Raises:
            CircuitOpenError: If the circuit breaker is open
            ClientError: For non-retryable 4xx responses
            FetchError: When transient failures outlast the retries, or on redirect and decoding errors
        """
        last_error = ''

        for attempt in range(self.max_retries + 1):
            if not self.circuit_breaker.can_attempt():
                raise CircuitOpenError(
                    f"Circuit breaker open, refusing {method} {url} "
                    f"(retry in {self.circuit_breaker.retry_after():.0f}s)"
                )

            wait_time = self.retry_backoff_factor * (2 ** attempt)
            try:
                self.logger.debug(f"API Request: {method} {url}")
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                self.circuit_breaker.record_failure()
                last_error = f"{type(e).__name__}: {e}"
            except httpx.HTTPError as e:
                # Redirect loops and undecodable bodies fail the same way on retry
                self.circuit_breaker.record_failure()
                self.logger.error(f"Request failed: {method} {url} ({type(e).__name__}: {e})")
                raise FetchError(f"{method} {url} failed: {type(e).__name__}: {e}") from e
            except BaseException:
                self.circuit_breaker.release_trial()
                raise
            else:
                self.logger.debug(f"API Response: {response.status_code} {response.url}")

                if response.is_success or response.status_code == 404:
                    self.circuit_breaker.record_success()
                    return response

                if response.status_code not in TRANSIENT_STATUS_CODES:
                    # Server is up; the request itself is wrong
                    self.circuit_breaker.record_success()
                    self.logger.error(f"HTTP Error {response.status_code}: {method} {response.url}")
                    raise ClientError(response.status_code, str(response.url),
                                      self._error_message(response))

                self.circuit_breaker.record_failure()
                last_error = f"HTTP {response.status_code}"
                if response.status_code == 429:
                    wait_time = self._retry_after(response, wait_time)

            if attempt >= self.max_retries:
                break

            self.logger.warning(
                f"Transient error on {method} {url} ({last_error}), "
                f"retry {attempt + 1}/{self.max_retries} in {wait_time:g}s"
            )
            await asyncio.sleep(wait_time)

        self.logger.error(f"Request failed after {self.max_retries + 1} attempts: {method} {url}")
        raise FetchError(f"{method} {url} failed after {self.max_retries + 1} attempts: {last_error}")

    @staticmethod
    def _retry_after(response: httpx.Response, default: float) -> float:
        try:
            return float(response.headers.get('Retry-After', default))
        except ValueError:
            return default

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the API's error message, if any."""
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code} for {response.url}: {response.text[:200]}"
        message = data.get('message') or data.get('error') if isinstance(data, dict) else None
        if message:
            return f"HTTP {response.status_code} for {response.url}: {message}"
        return f"HTTP {response.status_code} for {response.url}"

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        response = await self._request('GET', url, params=params)
        if response.status_code == 404:
            return None
        return response.json()

    async def _paginate(self, url: str, params: Optional[Dict[str, Any]] = None) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield every result of a paginated collection endpoint.

        Args:
            url: Collection path
            params: Extra query parameters sent with every request

        Yields:
            Raw result dictionaries in server order
        """
        page_params = self.pagination.first_params()
        fetched = 0

        while True:
            payload = await self._get_json(url, {**(params or {}), **page_params})
            if payload is None:
                return

            results = payload.get('results') or []
            for result in results:
                yield result
            fetched += len(results)

            page_params = self.pagination.next_params(page_params, payload, results)
            if page_params is None:
                break

            self.logger.debug(f"Fetched {fetched} results from {url} so far...")
            if self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

    async def iter_spaces(self) -> AsyncIterator[Space]:
        async for data in self._paginate('/rest/api/space'):
            yield Space.from_api(data)

    async def iter_space_pages(self, space_key: str) -> AsyncIterator[Page]:
        params = {'expand': SPACE_PAGE_EXPAND}
        async for data in self._paginate(f'/rest/api/space/{space_key}/content/page', params):
            yield Page.from_api(data)

    async def iter_page_children(self, page_id: str) -> AsyncIterator[Page]:
        """Yield the direct children of a page, re-fetching any stub without a body."""
        params = {'expand': SPACE_PAGE_EXPAND}
        async for data in self._paginate(f'/rest/api/content/{page_id}/child/page', params):
            child = Page.from_api(data)
            if not child.has_body:
                self.logger.debug(f"Child {child.id} returned without body, fetching full page")
                full = await self.get_page(child.id)
                if full is None:
                    self.logger.warning(f"Child page {child.id} of {page_id} disappeared, skipping")
                    continue
                child = full
            yield child

    async def list_spaces(self) -> List[Space]:
        spaces = [space async for space in self.iter_spaces()]
        self.logger.info(f"Fetched {len(spaces)} total spaces")
        return spaces

    async def get_space(self, space_key: str) -> Optional[Space]:
        data = await self._get_json(f'/rest/api/space/{space_key}')
        if data is None:
            self.logger.debug(f"Space {space_key} not found")
            return None
        return Space.from_api(data)

    async def list_space_pages(self, space_key: str) -> List[Page]:
        pages = [page async for page in self.iter_space_pages(space_key)]
        self.logger.info(f"Found {len(pages)} pages in space '{space_key}'")
        return pages

    async def get_page(self, page_id: str) -> Optional[Page]:
        data = await self._get_json(f'/rest/api/content/{page_id}', {'expand': PAGE_EXPAND})
        if data is None:
            self.logger.debug(f"Page {page_id} not found")
            return None
        return Page.from_api(data)

    async def list_page_children(self, page_id: str) -> List[Page]:
        return [child async for child in self.iter_page_children(page_id)]

    async def get_asset(self, url: str) -> bytes:
        """
        Download a binary asset.

        Args:
            url: Absolute URL, or a URL relative to the site base

        Returns:
            Raw bytes

        Raises:
            ClientError: If the asset does not exist or access is refused
            FetchError: When transient failures outlast the retries
        """
        full_url = urljoin(self.base_url + '/', url)
        response = await self._request('GET', full_url)
        if response.status_code == 404:
            raise ClientError(404, full_url, f"Asset not found: {full_url}")
        return response.content

    @classmethod
    def from_config(cls, config: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> 'ConfluenceClient':
        """
        Initialize Confluence client from configuration dictionary.

        Args:
            config: Configuration dictionary with confluence and advanced settings
            transport: Optional httpx transport

        Returns:
            ConfluenceClient instance
        """
        confluence_config = config.get('confluence') or {}
        advanced_config = config.get('advanced') or {}
        breaker_config = advanced_config.get('circuit_breaker') or {}

        return cls(
            base_url=confluence_config.get('base_url'),
            username=confluence_config.get('username'),
            api_token=confluence_config.get('api_token'),
            timeout=advanced_config.get('request_timeout', 300),
            max_retries=advanced_config.get('max_retries', 3),
            retry_backoff_factor=advanced_config.get('retry_backoff_factor', 2.0),
            request_delay=advanced_config.get('request_delay_ms', 100) / 1000.0,
            pagination=confluence_config.get('pagination', 'offset'),
            page_size=confluence_config.get('page_size', 50),
            circuit_breaker=CircuitBreaker(
                failure_threshold=breaker_config.get('failure_threshold', 5),
                reset_timeout=breaker_config.get('reset_timeout', 30),
                logger=logger
            ),
            transport=transport,
            config=config
        )


__all__ = ['ConfluenceClient']
