"""Per-page writer: README.md with front matter, index.html twin and page assets."""

import html
import logging
import re
from pathlib import Path
from typing import List, Optional, Set, Tuple
from urllib.parse import quote, unquote, urlparse

import yaml

from ..models import AssetReference, ExportSettings, Page

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
MAX_FILENAME_LENGTH = 100

IMAGE_SRC_PATTERN = re.compile(r'<img[^>]+src="([^"]+)"', re.IGNORECASE)
ATTACHMENT_HREF_PATTERN = re.compile(r'<a[^>]+href="([^"]*/download/[^"]+)"', re.IGNORECASE)
STORAGE_IMAGE_PATTERN = re.compile(r'<ac:image\b[^>]*>(.*?)</ac:image>', re.IGNORECASE | re.DOTALL)
STORAGE_LINK_PATTERN = re.compile(r'<ac:link\b[^>]*>(.*?)</ac:link>', re.IGNORECASE | re.DOTALL)
RI_ATTACHMENT_PATTERN = re.compile(r'<ri:attachment[^>]+ri:filename="([^"]+)"', re.IGNORECASE)

MARKDOWN_FILENAME = 'README.md'
HTML_FILENAME = 'index.html'
ASSETS_DIRNAME = 'assets'


def sanitize_filename(name: Optional[str], max_length: int = MAX_FILENAME_LENGTH) -> str:
    """
    Convert a title or file name to a filesystem-safe name.

    Runs of invalid characters (``<>:"/\\|?*`` and control characters) are
    replaced by a single ``_``, the result is stripped and truncated.

    Args:
        name: Page title, space name or asset file name
        max_length: Maximum length of the result

    Returns:
        Sanitized name, ``untitled`` when nothing usable remains
    """
    pieces = [piece for piece in INVALID_FILENAME_CHARS.split(name or '') if piece]
    sanitized = '_'.join(pieces).strip()[:max_length].strip()

    if sanitized in ('', '.', '..'):
        return 'untitled'
    return sanitized


def asset_filename(url: str) -> str:
    """Local file name for an asset URL: its last path segment, unquoted and sanitized."""
    path = urlparse(url).path.rstrip('/')
    return sanitize_filename(unquote(path.rsplit('/', 1)[-1]))


class MarkdownExporter:
    """
    Writes one page to disk.

    For each page this exporter:
    1. Resolves the page directory from the ancestor chain
    2. Writes README.md (YAML front matter + converted body) and/or index.html
    3. Downloads images and attachments referenced by the body into assets/
    """

    def __init__(self, fetcher, settings: ExportSettings, logger: Optional[logging.Logger] = None):
        """
        Initialize the markdown exporter.

        Args:
            fetcher: Source of asset bytes (``get_asset`` coroutine)
            settings: Effective export settings
            logger: Logger instance
        """
        self.fetcher = fetcher
        self.settings = settings
        self.logger = logger or logging.getLogger('confluence_exporter.exporters.markdown_exporter')

    def page_directory(self, page: Page, output_root: Path) -> Path:
        """
        Directory a page is written to.

        Args:
            page: Page to place
            output_root: Root directory for this export (space directory or output root)

        Returns:
            ``output_root / [ancestor titles...] / title``
        """
        directory = Path(output_root)
        if self.settings.preserve_hierarchy:
            for ancestor in page.ancestors:
                directory = directory / sanitize_filename(ancestor.title)
        return directory / sanitize_filename(page.title)

    def write_page(self, page: Page, markdown: Optional[str], directory: Path) -> int:
        """
        Write the page files for the configured format.

        Args:
            page: Page being exported
            markdown: Converted body (ignored for HTML-only output)
            directory: Page directory (created if missing)

        Returns:
            Number of bytes written
        """
        directory.mkdir(parents=True, exist_ok=True)
        written = 0

        if self.settings.format.writes_markdown:
            written += self._write(directory / MARKDOWN_FILENAME, self.render_markdown(page, markdown or ''))

        if self.settings.format.writes_html:
            written += self._write(directory / HTML_FILENAME, self.render_html(page))

        return written

    @staticmethod
    def _write(path: Path, content: str) -> int:
        data = content.encode('utf-8')
        path.write_bytes(data)
        return len(data)

    def render_markdown(self, page: Page, markdown: str) -> str:
        """Markdown document: front matter block, blank line, body."""
        return f"{self.generate_frontmatter(page)}\n\n{markdown}\n"

    def generate_frontmatter(self, page: Page) -> str:
        """
        Generate the YAML front matter for a page.

        Args:
            page: Page instance

        Returns:
            Front matter block including the ``---`` fences
        """
        frontmatter = {
            'title': page.title,
            'id': page.id,
            'type': page.type,
            'status': page.status,
            'space': page.space_name,
            'version': page.version.number if page.version else 0,
            'last_modified': page.version.format_when() if page.version else '',
        }

        yaml_str = yaml.dump(
            frontmatter,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
            width=1000  # Prevent line wrapping
        )

        return f"---\n{yaml_str}---"

    def render_html(self, page: Page) -> str:
        """Standalone HTML document with metadata tags and the raw body."""
        title = html.escape(page.title)
        version = page.version.number if page.version else 0
        last_modified = page.version.format_when() if page.version else ''
        meta = {
            'confluence-page-id': page.id,
            'confluence-space': page.space_name,
            'confluence-version': str(version),
            'last-modified': last_modified,
        }
        meta_tags = '\n'.join(
            f'    <meta name="{name}" content="{html.escape(value)}">' for name, value in meta.items()
        )

        return (
            "<!DOCTYPE html>\n"
            "<html>\n"
            "<head>\n"
            '    <meta charset="utf-8">\n'
            f"    <title>{title}</title>\n"
            f"{meta_tags}\n"
            "</head>\n"
            "<body>\n"
            f"    <h1>{title}</h1>\n"
            f"    {page.body}\n"
            "</body>\n"
            "</html>\n"
        )

    def find_assets(self, page: Page) -> List[AssetReference]:
        """
        Scan the raw body for downloadable assets.

        Each kind is de-duplicated in order of appearance and capped at
        ``max_assets_per_page``.

        Args:
            page: Page whose body is scanned

        Returns:
            Images first, then attachments
        """
        body = page.body or ''
        images: List[str] = []
        attachments: List[str] = []

        if self.settings.include_images:
            images.extend(html.unescape(m) for m in IMAGE_SRC_PATTERN.findall(body))
            for block in STORAGE_IMAGE_PATTERN.findall(body):
                images.extend(self._attachment_url(page, name) for name in RI_ATTACHMENT_PATTERN.findall(block))

        if self.settings.include_attachments:
            attachments.extend(html.unescape(m) for m in ATTACHMENT_HREF_PATTERN.findall(body))
            for block in STORAGE_LINK_PATTERN.findall(body):
                attachments.extend(self._attachment_url(page, name) for name in RI_ATTACHMENT_PATTERN.findall(block))

        limit = self.settings.max_assets_per_page
        return (
            [AssetReference(url, page.id, 'image') for url in _unique(images)[:limit]]
            + [AssetReference(url, page.id, 'attachment') for url in _unique(attachments)[:limit]]
        )

    @staticmethod
    def _attachment_url(page: Page, filename: str) -> str:
        # Relative so it resolves under the base URL context path (e.g. /wiki)
        return f"download/attachments/{page.id}/{quote(html.unescape(filename))}"

    async def download_assets(self, page: Page, directory: Path) -> Tuple[int, int, int]:
        """
        Download the page's assets into ``directory/assets``.

        A failed download is logged and skipped. Assets whose URLs end in the
        same file name are kept apart with a numeric suffix (``name_2.png``).

        Args:
            page: Page whose assets are fetched
            directory: Page directory

        Returns:
            Tuple of (downloaded, failed, bytes written)
        """
        assets = self.find_assets(page)
        if not assets:
            return 0, 0, 0

        assets_dir = directory / ASSETS_DIRNAME
        assets_dir.mkdir(parents=True, exist_ok=True)

        downloaded = failed = size = 0
        taken = set()
        for asset in assets:
            natural_name = asset_filename(asset.url)
            filename = _unique_filename(natural_name, taken)
            try:
                data = await self.fetcher.get_asset(asset.url)
                target = assets_dir / filename
                target.write_bytes(data)
            except Exception as e:
                failed += 1
                self.logger.warning(f"Failed to download {asset.kind} {asset.url} for page {page.id}: {e}")
                continue

            taken.add(filename.casefold())
            if filename != natural_name:
                self.logger.warning(
                    f"Asset {asset.url} for page {page.id} shares its file name with another asset, "
                    f"saved as {filename}"
                )
            downloaded += 1
            size += len(data)
            self.logger.debug(f"Downloaded {asset.kind}: {target.name}")

        return downloaded, failed, size


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def _unique_filename(filename: str, taken: Set[str]) -> str:
    if filename.casefold() not in taken:
        return filename

    stem, suffix = Path(filename).stem, Path(filename).suffix
    counter = 2
    while f"{stem}_{counter}{suffix}".casefold() in taken:
        counter += 1
    return f"{stem}_{counter}{suffix}"


__all__ = ['MarkdownExporter', 'asset_filename', 'sanitize_filename']
