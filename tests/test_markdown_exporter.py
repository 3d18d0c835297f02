"""Tests for page files, front matter and asset downloads."""

import tempfile
import unittest
from pathlib import Path

import yaml

from confluence_exporter.exporters import MarkdownExporter
from confluence_exporter.models import ExportFormat, ExportSettings, Page

from fakes import FakeFetcher, make_page


def exporter_for(fetcher=None, **settings):
    return MarkdownExporter(fetcher or FakeFetcher(), ExportSettings(**settings))


class TestPageDirectory(unittest.TestCase):

    def test_nested_under_ancestors(self):
        page = make_page(3, 'Deploy: Prod', ancestors=[(1, 'Home'), (2, 'Ops/Runbooks')])
        directory = exporter_for().page_directory(page, Path('out'))

        self.assertEqual(directory, Path('out') / 'Home' / 'Ops_Runbooks' / 'Deploy_ Prod')

    def test_flat_when_hierarchy_is_off(self):
        page = make_page(3, 'Deploy', ancestors=[(1, 'Home')])
        directory = exporter_for(preserve_hierarchy=False).page_directory(page, Path('out'))

        self.assertEqual(directory, Path('out') / 'Deploy')


class TestFrontmatter(unittest.TestCase):

    def test_fields_in_order(self):
        page = make_page(42, 'Release: 1.0', version=7)
        frontmatter = exporter_for().generate_frontmatter(page)

        self.assertTrue(frontmatter.startswith('---\n'))
        self.assertTrue(frontmatter.endswith('\n---'))

        data = yaml.safe_load(frontmatter.strip('-\n'))
        self.assertEqual(list(data), ['title', 'id', 'type', 'status', 'space', 'version', 'last_modified'])
        self.assertEqual(data['title'], 'Release: 1.0')
        self.assertEqual(data['id'], '42')
        self.assertEqual(data['space'], 'Engineering')
        self.assertEqual(data['version'], 7)
        self.assertEqual(data['last_modified'], '2024-03-01 12:30:00')

    def test_missing_version_and_space(self):
        page = Page(id='1', title='Orphan')
        data = yaml.safe_load(exporter_for().generate_frontmatter(page).strip('-\n'))

        self.assertEqual(data['version'], 0)
        self.assertEqual(data['space'], '')
        self.assertEqual(data['last_modified'], '')

    def test_render_markdown_layout(self):
        exporter = exporter_for()
        page = make_page(1, 'Intro')
        document = exporter.render_markdown(page, '# Body')

        self.assertEqual(document, exporter.generate_frontmatter(page) + '\n\n# Body\n')


class TestWritePage(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.directory = Path(self.tmp.name) / 'Intro'

    def test_markdown_only(self):
        written = exporter_for().write_page(make_page(1, 'Intro'), 'Body', self.directory)

        readme = self.directory / 'README.md'
        self.assertTrue(readme.exists())
        self.assertFalse((self.directory / 'index.html').exists())
        self.assertEqual(written, len(readme.read_bytes()))
        self.assertTrue(readme.read_text(encoding='utf-8').endswith('\n\nBody\n'))

    def test_both_formats(self):
        exporter = exporter_for(format=ExportFormat.BOTH)
        exporter.write_page(make_page(1, 'Intro & <Co>'), 'Body', self.directory)

        html = (self.directory / 'index.html').read_text(encoding='utf-8')
        self.assertTrue((self.directory / 'README.md').exists())
        self.assertTrue(html.startswith('<!DOCTYPE html>'))
        self.assertIn('<title>Intro &amp; &lt;Co&gt;</title>', html)
        self.assertIn('<meta name="confluence-page-id" content="1">', html)
        self.assertIn('<meta name="confluence-version" content="3">', html)
        self.assertIn('<p>Hello</p>', html)

    def test_html_only(self):
        exporter_for(format=ExportFormat.HTML).write_page(make_page(1, 'Intro'), None, self.directory)

        self.assertTrue((self.directory / 'index.html').exists())
        self.assertFalse((self.directory / 'README.md').exists())


class TestFindAssets(unittest.TestCase):

    def test_images_and_attachments(self):
        body = (
            '<p><img src="/download/attachments/1/a.png" /></p>'
            '<p><img src="/download/attachments/1/a.png" /></p>'
            '<ac:image><ri:attachment ri:filename="diagram one.png" /></ac:image>'
            '<a href="/download/attachments/1/manual.pdf?api=v2&amp;version=1">Manual</a>'
            '<ac:link><ri:attachment ri:filename="notes.txt" /></ac:link>'
        )
        assets = exporter_for().find_assets(make_page(1, 'P', body=body))

        self.assertEqual(
            [(a.kind, a.url) for a in assets],
            [
                ('image', '/download/attachments/1/a.png'),
                ('image', 'download/attachments/1/diagram%20one.png'),
                ('attachment', '/download/attachments/1/manual.pdf?api=v2&version=1'),
                ('attachment', 'download/attachments/1/notes.txt'),
            ]
        )

    def test_kinds_follow_flags(self):
        body = '<img src="/i.png" /><a href="/download/attachments/1/f.zip">f</a>'
        page = make_page(1, 'P', body=body)

        self.assertEqual([a.kind for a in exporter_for(include_images=False).find_assets(page)], ['attachment'])
        self.assertEqual([a.kind for a in exporter_for(include_attachments=False).find_assets(page)], ['image'])

    def test_regular_links_are_not_attachments(self):
        page = make_page(1, 'P', body='<a href="https://example.com/docs">docs</a>')
        self.assertEqual(exporter_for().find_assets(page), [])


class TestDownloadAssets(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.directory = Path(self.tmp.name) / 'Page'

    async def test_at_most_ten_images_are_downloaded(self):
        urls = [f'/download/attachments/1/image{i}.png' for i in range(15)]
        body = ''.join(f'<img src="{url}" />' for url in urls)
        fetcher = FakeFetcher(assets={url: b'data' for url in urls})

        downloaded, failed, size = await exporter_for(fetcher).download_assets(
            make_page(1, 'P', body=body), self.directory
        )

        self.assertEqual((downloaded, failed, size), (10, 0, 40))
        self.assertEqual(fetcher.asset_requests, urls[:10])
        self.assertEqual(len(list((self.directory / 'assets').iterdir())), 10)

    async def test_failed_download_is_skipped(self):
        body = '<img src="/download/attachments/1/ok.png" /><img src="/download/attachments/1/gone.png" />'
        fetcher = FakeFetcher(assets={'/download/attachments/1/ok.png': b'12345'})

        with self.assertLogs('confluence_exporter', level='WARNING') as logs:
            result = await exporter_for(fetcher).download_assets(make_page(1, 'P', body=body), self.directory)

        self.assertEqual(result, (1, 1, 5))
        self.assertTrue((self.directory / 'assets' / 'ok.png').exists())
        self.assertIn('gone.png', '\n'.join(logs.output))

    async def test_same_file_name_from_different_urls(self):
        first = '/download/attachments/1/diagram.png'
        second = 'https://cdn.example.com/images/diagram.png'
        body = f'<img src="{first}" /><img src="{second}" />'
        fetcher = FakeFetcher(assets={first: b'one', second: b'two'})

        with self.assertLogs('confluence_exporter', level='WARNING') as logs:
            result = await exporter_for(fetcher).download_assets(make_page(1, 'P', body=body), self.directory)

        self.assertEqual(result, (2, 0, 6))
        self.assertEqual((self.directory / 'assets' / 'diagram.png').read_bytes(), b'one')
        self.assertEqual((self.directory / 'assets' / 'diagram_2.png').read_bytes(), b'two')
        self.assertIn('diagram_2.png', '\n'.join(logs.output))

    async def test_no_assets_creates_nothing(self):
        result = await exporter_for().download_assets(make_page(1, 'P', body='<p>text</p>'), self.directory)

        self.assertEqual(result, (0, 0, 0))
        self.assertFalse(self.directory.exists())


if __name__ == '__main__':
    unittest.main()
