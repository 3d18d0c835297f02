"""Tests for data models."""

import unittest

from confluence_exporter.models import (
    ExportFormat,
    ExportJob,
    ExportScope,
    ExportSettings,
    ExportStats,
    Page,
    Version
)

from fakes import make_page


class TestPageFromApi(unittest.TestCase):

    def test_full_payload(self):
        page = Page.from_api({
            'id': 12,
            'title': 'Guide',
            'type': 'page',
            'status': 'current',
            'space': {'id': 1, 'key': 'ENG', 'name': 'Engineering'},
            'body': {'storage': {'value': '<p>x</p>'}},
            'version': {'number': 3, 'when': '2024-03-01T12:30:00.000+01:00'},
            'ancestors': [{'id': 1, 'title': 'Home'}, {'id': 5, 'title': 'Docs'}],
        })

        self.assertEqual(page.id, '12')
        self.assertEqual(page.space.key, 'ENG')
        self.assertEqual(page.body, '<p>x</p>')
        self.assertTrue(page.has_body)
        self.assertEqual(page.depth, 2)
        self.assertEqual(page.parent_id, '5')
        self.assertEqual(page.version.format_when(), '2024-03-01 12:30:00')

    def test_stub_without_body(self):
        page = Page.from_api({'id': '3', 'title': 'Stub'})

        self.assertFalse(page.has_body)
        self.assertEqual(page.body, '')
        self.assertIsNone(page.version)
        self.assertIsNone(page.parent_id)
        self.assertEqual(page.space_name, '')


class TestVersion(unittest.TestCase):

    def test_bad_timestamp_is_ignored(self):
        version = Version.from_api({'number': 2, 'when': 'yesterday'})
        self.assertEqual(version.number, 2)
        self.assertIsNone(version.when)
        self.assertEqual(version.format_when(), '')

    def test_v2_created_at(self):
        version = Version.from_api({'number': 1, 'createdAt': '2023-12-31T23:59:59Z'})
        self.assertEqual(version.format_when(), '2023-12-31 23:59:59')


class TestExportJob(unittest.TestCase):

    def test_scoped_jobs_need_a_target(self):
        for scope in (ExportScope.PAGE, ExportScope.SPACE, ExportScope.HIERARCHY):
            with self.subTest(scope=scope):
                with self.assertRaises(ValueError):
                    ExportJob(scope)

    def test_all_spaces_without_target(self):
        self.assertIsNone(ExportJob(ExportScope.ALL_SPACES).target)


class TestExportSettings(unittest.TestCase):

    def test_from_config(self):
        settings = ExportSettings.from_config({
            'export': {'format': 'HTML', 'create_index_files': False, 'include_spaces': ['ENG']},
            'advanced': {'max_concurrent_requests': 2, 'request_delay_ms': 50},
        })

        self.assertIs(settings.format, ExportFormat.HTML)
        self.assertFalse(settings.format.writes_markdown)
        self.assertFalse(settings.create_index)
        self.assertEqual(settings.include_spaces, ('ENG',))
        self.assertEqual(settings.max_concurrent_requests, 2)
        self.assertEqual(settings.request_delay, 0.05)


class TestExportStats(unittest.TestCase):

    def test_merge(self):
        total = ExportStats(pages_exported=2, bytes_written=10)
        other = ExportStats(pages_exported=3, spaces_exported=1, bytes_written=5)
        other.record_failure(make_page(1, 'Bad'), RuntimeError('x'))

        total.merge(other)

        self.assertEqual(total.pages_exported, 5)
        self.assertEqual(total.pages_failed, 1)
        self.assertEqual(total.spaces_exported, 1)
        self.assertEqual(total.bytes_written, 15)
        self.assertEqual(total.failures, [{'page_id': '1', 'title': 'Bad', 'error': 'RuntimeError: x'}])
        self.assertFalse(total.succeeded)


if __name__ == '__main__':
    unittest.main()
