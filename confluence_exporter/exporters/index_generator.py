"""Markdown navigation indexes: space INDEX.md, HIERARCHY_INDEX.md and the global README.md."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import List, Optional
from urllib.parse import quote

from ..models import Page, Space
from .markdown_exporter import HTML_FILENAME, MARKDOWN_FILENAME

SPACE_INDEX_FILENAME = 'INDEX.md'
HIERARCHY_INDEX_FILENAME = 'HIERARCHY_INDEX.md'
GLOBAL_INDEX_FILENAME = 'README.md'


@dataclass(frozen=True)
class IndexEntry:
    """An exported page and its directory relative to the index file."""

    page: Page
    path: PurePosixPath


@dataclass(frozen=True)
class SpaceEntry:
    """An exported space and its directory relative to the output root."""

    space: Space
    path: PurePosixPath


def _link(path: PurePosixPath, filename: str) -> str:
    return './' + quote(str(path / filename))


def _sort_key(text: str):
    return (text.casefold(), text)


class IndexGenerator:
    """Builds and writes the index files. Indexes are regenerated from scratch on every run."""

    def __init__(self, page_filename: str = MARKDOWN_FILENAME, logger: Optional[logging.Logger] = None):
        """
        Args:
            page_filename: File each page link points at (README.md or index.html)
            logger: Optional logger instance
        """
        self.page_filename = page_filename
        self.logger = logger or logging.getLogger('confluence_exporter.exporters.index_generator')

    @classmethod
    def for_format(cls, export_format, logger: Optional[logging.Logger] = None) -> 'IndexGenerator':
        """Link to README.md unless only HTML is written."""
        filename = MARKDOWN_FILENAME if export_format.writes_markdown else HTML_FILENAME
        return cls(filename, logger)

    def space_index(self, space: Space, entries: List[IndexEntry]) -> str:
        """
        Build a space's INDEX.md: space metadata and its pages sorted by title.

        Args:
            space: Exported space
            entries: Exported pages with paths relative to the space directory

        Returns:
            Markdown content
        """
        lines = [
            f"# {space.name}",
            "",
            f"**Space Key:** {space.key}  ",
            f"**Space ID:** {space.id}  ",
            f"**Type:** {space.type}  ",
            f"**Status:** {space.status}  ",
            "",
            f"## Pages ({len(entries)})",
            "",
        ]
        for entry in sorted(entries, key=lambda e: _sort_key(e.page.title)):
            lines.append(f"- [{entry.page.title}]({_link(entry.path, self.page_filename)})")

        return '\n'.join(lines) + '\n'

    def hierarchy_index(self, root: Page, space_name: str, entries: List[IndexEntry]) -> str:
        """
        Build HIERARCHY_INDEX.md: an indented outline of the exported tree.

        Pages are ordered by their title path so children follow their
        parent, and indented two spaces per level below the root.

        Args:
            root: Root page of the hierarchy
            space_name: Name of the owning space
            entries: Exported pages with paths relative to the space directory

        Returns:
            Markdown content
        """
        lines = [
            f"# {root.title} - Page Hierarchy",
            "",
            f"**Root Page ID:** {root.id}  ",
            f"**Space:** {space_name}  ",
            "",
            f"## Pages in Hierarchy ({len(entries)})",
            "",
        ]

        def title_path(entry: IndexEntry):
            titles = [a.title for a in entry.page.ancestors] + [entry.page.title]
            return [_sort_key(t) for t in titles]

        for entry in sorted(entries, key=title_path):
            indent = '  ' * max(0, entry.page.depth - root.depth)
            lines.append(f"{indent}- [{entry.page.title}]({_link(entry.path, self.page_filename)})")

        return '\n'.join(lines) + '\n'

    def global_index(self, spaces: List[SpaceEntry], export_date: Optional[datetime] = None) -> str:
        """
        Build the output root README.md listing every exported space by name.

        Args:
            spaces: Exported spaces with paths relative to the output root
            export_date: Export timestamp (defaults to now, UTC)

        Returns:
            Markdown content
        """
        export_date = export_date or datetime.now(timezone.utc)
        lines = [
            "# Confluence Export",
            "",
            f"**Export Date:** {export_date.astimezone(timezone.utc):%Y-%m-%d %H:%M:%S} UTC  ",
            f"**Spaces Exported:** {len(spaces)}  ",
            "",
            "## Spaces",
            "",
        ]
        for entry in sorted(spaces, key=lambda e: _sort_key(e.space.name)):
            lines.append(
                f"- [{entry.space.name}]({_link(entry.path, SPACE_INDEX_FILENAME)}) (`{entry.space.key}`)"
            )

        return '\n'.join(lines) + '\n'

    def write(self, path: Path, content: str) -> int:
        """
        Write an index file.

        Args:
            path: Target file
            content: Markdown content

        Returns:
            Number of bytes written
        """
        data = content.encode('utf-8')
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        self.logger.info(f"Wrote index {path}")
        return len(data)


__all__ = [
    'GLOBAL_INDEX_FILENAME',
    'HIERARCHY_INDEX_FILENAME',
    'IndexEntry',
    'IndexGenerator',
    'SPACE_INDEX_FILENAME',
    'SpaceEntry'
]
