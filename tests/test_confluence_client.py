"""Tests for the async Confluence REST client."""

import asyncio
import unittest

import httpx

from confluence_exporter.confluence_client import ConfluenceClient
from confluence_exporter.fetchers import CircuitBreaker, CircuitOpenError, ClientError, FetchError

BASE_URL = 'https://example.atlassian.net/wiki'


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def page_payload(page_id, title, body='<p>Hi</p>', with_body=True):
    payload = {
        'id': str(page_id),
        'type': 'page',
        'status': 'current',
        'title': title,
        'space': {'id': 1, 'key': 'ENG', 'name': 'Engineering', 'type': 'global'},
        'version': {'number': 4, 'when': '2024-03-01T12:30:00.000Z', 'by': {'displayName': 'Jane'}},
        'ancestors': [{'id': '1', 'title': 'Home'}],
    }
    if with_body:
        payload['body'] = {'storage': {'value': body, 'representation': 'storage'}}
    return payload


class ClientTestCase(unittest.IsolatedAsyncioTestCase):
    """Builds clients over an ``httpx.MockTransport``."""

    def setUp(self):
        self.requests = []

    def make_client(self, handler, **kwargs):
        def recording_handler(request):
            self.requests.append(request)
            return handler(request)

        options = {
            'username': 'user@example.com',
            'api_token': 'secret',
            'retry_backoff_factor': 0,
            'request_delay': 0,
        }
        options.update(kwargs)
        client = ConfluenceClient(BASE_URL, transport=httpx.MockTransport(recording_handler), **options)
        self.addAsyncCleanup(client.close)
        return client


class TestOffsetPagination(ClientTestCase):

    async def test_pages_until_short_page(self):
        spaces = [{'id': i, 'key': f'S{i}', 'name': f'Space {i}'} for i in range(5)]

        def handler(request):
            start = int(request.url.params['start'])
            limit = int(request.url.params['limit'])
            return httpx.Response(200, json={'results': spaces[start:start + limit]})

        client = self.make_client(handler, page_size=2)
        result = await client.list_spaces()

        self.assertEqual([s.key for s in result], ['S0', 'S1', 'S2', 'S3', 'S4'])
        self.assertEqual([r.url.params['start'] for r in self.requests], ['0', '2', '4'])
        self.assertTrue(all(r.url.path == '/wiki/rest/api/space' for r in self.requests))

    async def test_exact_multiple_needs_one_empty_page(self):
        spaces = [{'id': i, 'key': f'S{i}', 'name': f'Space {i}'} for i in range(4)]

        def handler(request):
            start = int(request.url.params['start'])
            return httpx.Response(200, json={'results': spaces[start:start + 2]})

        client = self.make_client(handler, page_size=2)
        result = await client.list_spaces()

        self.assertEqual(len(result), 4)
        self.assertEqual(len(self.requests), 3)

    async def test_space_pages_request_expansions(self):
        def handler(request):
            return httpx.Response(200, json={'results': [page_payload(10, 'Intro')]})

        client = self.make_client(handler)
        pages = await client.list_space_pages('ENG')

        self.assertEqual(len(pages), 1)
        self.assertEqual(pages[0].title, 'Intro')
        self.assertEqual(pages[0].version.number, 4)
        self.assertEqual(pages[0].ancestors[0].title, 'Home')
        request = self.requests[0]
        self.assertEqual(request.url.path, '/wiki/rest/api/space/ENG/content/page')
        self.assertEqual(request.url.params['expand'], 'body.storage,version,space,ancestors')

    async def test_basic_auth_and_user_agent(self):
        client = self.make_client(lambda request: httpx.Response(200, json={'results': []}))
        await client.list_spaces()

        headers = self.requests[0].headers
        self.assertTrue(headers['Authorization'].startswith('Basic '))
        self.assertTrue(headers['User-Agent'].startswith('confluence-exporter/'))


class TestCursorPagination(ClientTestCase):

    async def test_follows_next_link_cursor(self):
        def handler(request):
            cursor = request.url.params.get('cursor')
            if cursor is None:
                return httpx.Response(200, json={
                    'results': [{'id': 1, 'key': 'A'}, {'id': 2, 'key': 'B'}],
                    '_links': {'next': '/rest/api/space?cursor=abc123&limit=2'}
                })
            self.assertEqual(cursor, 'abc123')
            return httpx.Response(200, json={'results': [{'id': 3, 'key': 'C'}], '_links': {}})

        client = self.make_client(handler, pagination='cursor', page_size=2)
        result = await client.list_spaces()

        self.assertEqual([s.key for s in result], ['A', 'B', 'C'])
        self.assertEqual(len(self.requests), 2)
        self.assertNotIn('start', self.requests[0].url.params)

    async def test_stops_without_next_link(self):
        def handler(request):
            return httpx.Response(200, json={'results': [{'id': 1, 'key': 'A'}, {'id': 2, 'key': 'B'}]})

        client = self.make_client(handler, pagination='cursor', page_size=2)
        result = await client.list_spaces()

        self.assertEqual(len(result), 2)
        self.assertEqual(len(self.requests), 1)

    def test_unknown_strategy_is_rejected(self):
        with self.assertRaises(ValueError):
            ConfluenceClient(BASE_URL, pagination='pages')


class TestLookups(ClientTestCase):

    async def test_missing_page_returns_none(self):
        client = self.make_client(lambda request: httpx.Response(404, json={'message': 'No content'}))
        self.assertIsNone(await client.get_page('999'))
        self.assertEqual(len(self.requests), 1)

    async def test_missing_space_returns_none(self):
        client = self.make_client(lambda request: httpx.Response(404))
        self.assertIsNone(await client.get_space('NOPE'))

    async def test_get_page_parses_children(self):
        payload = page_payload(5, 'Parent')
        payload['children'] = {'page': {'results': [{'id': '6'}, {'id': '7'}]}}
        client = self.make_client(lambda request: httpx.Response(200, json=payload))

        page = await client.get_page('5')

        self.assertEqual(page.child_ids, ('6', '7'))
        self.assertEqual(page.space_name, 'Engineering')
        self.assertEqual(page.body, '<p>Hi</p>')
        self.assertIn('children.page', self.requests[0].url.params['expand'])

    async def test_child_stub_without_body_is_refetched(self):
        def handler(request):
            if request.url.path.endswith('/child/page'):
                return httpx.Response(200, json={'results': [page_payload(8, 'Stub', with_body=False)]})
            return httpx.Response(200, json=page_payload(8, 'Stub', body='<p>Full</p>'))

        client = self.make_client(handler)
        children = await client.list_page_children('5')

        self.assertEqual(len(children), 1)
        self.assertEqual(children[0].body, '<p>Full</p>')
        self.assertEqual(self.requests[1].url.path, '/wiki/rest/api/content/8')

    async def test_asset_relative_to_base_url(self):
        client = self.make_client(lambda request: httpx.Response(200, content=b'PNG'))
        data = await client.get_asset('download/attachments/5/a.png')

        self.assertEqual(data, b'PNG')
        self.assertEqual(str(self.requests[0].url),
                         'https://example.atlassian.net/wiki/download/attachments/5/a.png')

    async def test_missing_asset_raises(self):
        client = self.make_client(lambda request: httpx.Response(404))
        with self.assertRaises(ClientError) as context:
            await client.get_asset('/download/attachments/5/gone.png')
        self.assertEqual(context.exception.status_code, 404)


class TestRetries(ClientTestCase):

    async def test_transient_errors_are_retried(self):
        responses = [httpx.Response(503), httpx.Response(502),
                     httpx.Response(200, json=page_payload(1, 'Ok'))]
        client = self.make_client(lambda request: responses.pop(0), max_retries=3)

        page = await client.get_page('1')

        self.assertEqual(page.title, 'Ok')
        self.assertEqual(len(self.requests), 3)

    async def test_rate_limit_is_retried(self):
        responses = [httpx.Response(429, headers={'Retry-After': '0'}),
                     httpx.Response(200, json=page_payload(1, 'Ok'))]
        client = self.make_client(lambda request: responses.pop(0))

        page = await client.get_page('1')

        self.assertEqual(page.title, 'Ok')
        self.assertEqual(len(self.requests), 2)

    async def test_connection_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError('connection refused', request=request)
            return httpx.Response(200, json=page_payload(1, 'Ok'))

        client = self.make_client(handler)
        page = await client.get_page('1')

        self.assertEqual(page.title, 'Ok')
        self.assertEqual(len(calls), 2)

    async def test_retries_are_exhausted(self):
        client = self.make_client(lambda request: httpx.Response(500), max_retries=2)

        with self.assertRaises(FetchError):
            await client.get_page('1')
        self.assertEqual(len(self.requests), 3)

    async def test_client_errors_are_not_retried(self):
        client = self.make_client(
            lambda request: httpx.Response(403, json={'message': 'Not permitted'}), max_retries=3
        )

        with self.assertRaises(ClientError) as context:
            await client.get_page('1')

        self.assertEqual(context.exception.status_code, 403)
        self.assertIn('Not permitted', str(context.exception))
        self.assertEqual(len(self.requests), 1)


class TestCircuitBreakerIntegration(ClientTestCase):

    async def test_open_circuit_refuses_requests(self):
        breaker = CircuitBreaker(failure_threshold=2, reset_timeout=60)
        client = self.make_client(lambda request: httpx.Response(503), max_retries=0,
                                  circuit_breaker=breaker)

        for _ in range(2):
            with self.assertRaises(FetchError):
                await client.get_page('1')

        with self.assertRaises(CircuitOpenError):
            await client.get_page('1')

        self.assertEqual(len(self.requests), 2)
        self.assertEqual(breaker.state, CircuitBreaker.OPEN)

    async def test_redirect_loop_on_trial_reopens_then_recovers(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60, clock=clock)
        responses = ['unavailable', 'redirect-loop', 'ok']

        def handler(request):
            outcome = responses.pop(0)
            if outcome == 'unavailable':
                return httpx.Response(503)
            if outcome == 'redirect-loop':
                raise httpx.TooManyRedirects('Exceeded maximum allowed redirects.', request=request)
            return httpx.Response(200, json=page_payload(1, 'Home'))

        client = self.make_client(handler, max_retries=0, circuit_breaker=breaker)

        with self.assertRaises(FetchError):
            await client.get_page('1')

        clock.now += 60
        with self.assertRaises(FetchError):
            await client.get_page('1')
        self.assertEqual(breaker.state, CircuitBreaker.OPEN)

        clock.now += 60
        page = await client.get_page('1')

        self.assertEqual(page.title, 'Home')
        self.assertEqual(breaker.state, CircuitBreaker.CLOSED)

    async def test_cancelled_trial_frees_the_slot(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60, clock=clock)
        responses = ['unavailable', 'cancel', 'ok']

        def handler(request):
            outcome = responses.pop(0)
            if outcome == 'unavailable':
                return httpx.Response(503)
            if outcome == 'cancel':
                raise asyncio.CancelledError()
            return httpx.Response(200, json=page_payload(1, 'Home'))

        client = self.make_client(handler, max_retries=0, circuit_breaker=breaker)

        with self.assertRaises(FetchError):
            await client.get_page('1')

        clock.now += 60
        with self.assertRaises(asyncio.CancelledError):
            await client.get_page('1')

        self.assertEqual((await client.get_page('1')).title, 'Home')
        self.assertEqual(breaker.state, CircuitBreaker.CLOSED)

    async def test_not_found_does_not_trip_circuit(self):
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60)
        client = self.make_client(lambda request: httpx.Response(404), circuit_breaker=breaker)

        for _ in range(3):
            self.assertIsNone(await client.get_page('1'))
        self.assertEqual(breaker.state, CircuitBreaker.CLOSED)


class TestFromConfig(unittest.IsolatedAsyncioTestCase):

    async def test_settings_are_applied(self):
        config = {
            'confluence': {'base_url': BASE_URL + '/', 'username': 'u', 'api_token': 't',
                           'pagination': 'cursor', 'page_size': 25},
            'advanced': {'max_retries': 1, 'retry_backoff_factor': 0.5, 'request_delay_ms': 250,
                         'circuit_breaker': {'failure_threshold': 3, 'reset_timeout': 10}},
        }
        async with ConfluenceClient.from_config(config) as client:
            self.assertEqual(client.base_url, BASE_URL)
            self.assertEqual(client.max_retries, 1)
            self.assertEqual(client.request_delay, 0.25)
            self.assertEqual(client.pagination.name, 'cursor')
            self.assertEqual(client.pagination.limit, 25)
            self.assertEqual(client.circuit_breaker.failure_threshold, 3)


if __name__ == '__main__':
    unittest.main()
