"""Data models for the Confluence export pipeline."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dateutil.parser import isoparse

logger = logging.getLogger('confluence_exporter')

LAST_MODIFIED_FORMAT = '%Y-%m-%d %H:%M:%S'


class ExportFormat(Enum):
    """Output formats for exported pages."""
    MARKDOWN = "markdown"
    HTML = "html"
    BOTH = "both"

    @property
    def writes_markdown(self) -> bool:
        return self in (ExportFormat.MARKDOWN, ExportFormat.BOTH)

    @property
    def writes_html(self) -> bool:
        return self in (ExportFormat.HTML, ExportFormat.BOTH)


class ExportScope(Enum):
    """What a single export run covers."""
    PAGE = "page"
    SPACE = "space"
    HIERARCHY = "hierarchy"
    ALL_SPACES = "all"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the API, tolerating junk."""
    if not value:
        return None
    try:
        return isoparse(value)
    except (ValueError, TypeError):
        logger.debug(f"Unparseable timestamp from API: {value!r}")
        return None


@dataclass(frozen=True)
class Version:
    """Page version: number, timestamp and author."""

    number: int = 0
    when: Optional[datetime] = None
    author: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional['Version']:
        if not data:
            return None
        by = data.get('by') or {}
        return cls(
            number=int(data.get('number') or 0),
            # v1 uses 'when', v2 uses 'createdAt'
            when=_parse_timestamp(data.get('when') or data.get('createdAt')),
            author=by.get('displayName') or by.get('publicName')
        )

    def format_when(self) -> str:
        """Format the timestamp as YYYY-MM-DD HH:MM:SS (empty when unknown)."""
        if self.when is None:
            return ''
        return self.when.strftime(LAST_MODIFIED_FORMAT)


@dataclass(frozen=True)
class Space:
    """A Confluence space."""

    id: str
    key: str
    name: str
    type: str = ''
    status: str = ''

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Space':
        return cls(
            id=str(data.get('id', '')),
            key=data.get('key', ''),
            name=data.get('name') or data.get('key', ''),
            type=data.get('type', ''),
            status=data.get('status', '')
        )


@dataclass(frozen=True)
class PageRef:
    """Lightweight reference to a page (used for ancestor chains)."""

    id: str
    title: str


@dataclass(frozen=True)
class Page:
    """
    A Confluence page as returned by the REST API.

    Pages are read-only mirrors of the source: they are built once from an
    API payload and never mutated by the exporter.
    """

    id: str
    title: str
    type: str = 'page'
    status: str = 'current'
    space: Optional[Space] = None
    body: str = ''
    version: Optional[Version] = None
    ancestors: Tuple[PageRef, ...] = ()
    parent_id: Optional[str] = None
    child_ids: Tuple[str, ...] = ()
    has_body: bool = True

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Page':
        """
        Build a page from a REST API content payload.

        Args:
            data: Content JSON (``/rest/api/content/{id}`` shape)

        Returns:
            Page instance
        """
        storage = (data.get('body') or {}).get('storage')
        ancestors = tuple(
            PageRef(id=str(a.get('id', '')), title=a.get('title', ''))
            for a in data.get('ancestors') or []
        )
        children = ((data.get('children') or {}).get('page') or {}).get('results') or []

        parent_id = data.get('parentId')
        if parent_id is None and ancestors:
            parent_id = ancestors[-1].id

        space_data = data.get('space')
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title', ''),
            type=data.get('type', 'page'),
            status=data.get('status', 'current'),
            space=Space.from_api(space_data) if space_data else None,
            body=(storage or {}).get('value') or '',
            version=Version.from_api(data.get('version')),
            ancestors=ancestors,
            parent_id=str(parent_id) if parent_id is not None else None,
            child_ids=tuple(str(c.get('id')) for c in children if c.get('id') is not None),
            has_body=storage is not None
        )

    @property
    def depth(self) -> int:
        """Number of ancestors above this page."""
        return len(self.ancestors)

    @property
    def space_name(self) -> str:
        return self.space.name if self.space else ''


@dataclass(frozen=True)
class AssetReference:
    """An asset URL found in a page body. Exists only during asset download."""

    url: str
    page_id: str
    kind: str = 'image'  # "image" or "attachment"


@dataclass(frozen=True)
class ExportSettings:
    """Effective export configuration for one run."""

    output_directory: str = 'output'
    format: ExportFormat = ExportFormat.MARKDOWN
    max_concurrent_requests: int = 5
    request_delay_ms: int = 100
    preserve_hierarchy: bool = True
    include_images: bool = True
    include_attachments: bool = True
    create_index: bool = True
    include_spaces: Tuple[str, ...] = ()
    exclude_spaces: Tuple[str, ...] = ()
    max_assets_per_page: int = 10
    show_progress: bool = False

    @property
    def request_delay(self) -> float:
        """Inter-request delay in seconds."""
        return self.request_delay_ms / 1000.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ExportSettings':
        """
        Build settings from a (validated) configuration dictionary.

        Args:
            config: Configuration dictionary with export and advanced sections

        Returns:
            ExportSettings instance
        """
        export_config = config.get('export', {}) or {}
        advanced_config = config.get('advanced', {}) or {}
        return cls(
            output_directory=export_config.get('output_directory', 'output'),
            format=ExportFormat(str(export_config.get('format', 'markdown')).lower()),
            max_concurrent_requests=int(advanced_config.get('max_concurrent_requests', 5)),
            request_delay_ms=int(advanced_config.get('request_delay_ms', 100)),
            preserve_hierarchy=bool(export_config.get('preserve_hierarchy', True)),
            include_images=bool(export_config.get('include_images', True)),
            include_attachments=bool(export_config.get('include_attachments', True)),
            create_index=bool(export_config.get('create_index_files', True)),
            include_spaces=tuple(export_config.get('include_spaces') or ()),
            exclude_spaces=tuple(export_config.get('exclude_spaces') or ()),
            max_assets_per_page=int(export_config.get('max_assets_per_page', 10)),
            show_progress=bool(export_config.get('show_progress', False))
        )


@dataclass(frozen=True)
class ExportJob:
    """Describes one export run: scope, target and settings."""

    scope: ExportScope
    target: Optional[str] = None
    settings: ExportSettings = field(default_factory=ExportSettings)

    def __post_init__(self) -> None:
        if self.scope != ExportScope.ALL_SPACES and not self.target:
            raise ValueError(f"Export scope '{self.scope.value}' requires a target")


@dataclass
class ExportStats:
    """Counters and failures aggregated over an export run."""

    pages_exported: int = 0
    pages_failed: int = 0
    assets_downloaded: int = 0
    assets_failed: int = 0
    spaces_exported: int = 0
    bytes_written: int = 0
    found: bool = True
    duration_seconds: float = 0.0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def record_failure(self, page: Page, error: Exception) -> None:
        self.pages_failed += 1
        self.failures.append({
            'page_id': page.id,
            'title': page.title,
            'error': f"{type(error).__name__}: {error}"
        })

    def merge(self, other: 'ExportStats') -> None:
        """Fold another run's counters into this one."""
        self.pages_exported += other.pages_exported
        self.pages_failed += other.pages_failed
        self.assets_downloaded += other.assets_downloaded
        self.assets_failed += other.assets_failed
        self.spaces_exported += other.spaces_exported
        self.bytes_written += other.bytes_written
        self.failures.extend(other.failures)

    @property
    def succeeded(self) -> bool:
        return self.found and self.pages_failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pages_exported': self.pages_exported,
            'pages_failed': self.pages_failed,
            'assets_downloaded': self.assets_downloaded,
            'assets_failed': self.assets_failed,
            'spaces_exported': self.spaces_exported,
            'bytes_written': self.bytes_written,
            'found': self.found,
            'duration_seconds': round(self.duration_seconds, 3),
            'failures': list(self.failures)
        }


@dataclass
class UsageMetrics:
    """Aggregate usage numbers sent to the usage reporter."""

    installation_id: str
    export_format: str
    export_duration_seconds: float
    pages_exported: int = 0
    spaces_exported: int = 0
    total_size_bytes: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    custom_metrics: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON body the registry expects."""
        return {
            'installationId': self.installation_id,
            'timestamp': self.timestamp.isoformat(),
            'pagesExported': self.pages_exported,
            'spacesExported': self.spaces_exported,
            'totalSizeBytes': self.total_size_bytes,
            'exportDurationSeconds': round(self.export_duration_seconds, 3),
            'exportFormat': self.export_format,
            'customMetrics': self.custom_metrics
        }


__all__ = [
    'AssetReference',
    'ExportFormat',
    'ExportJob',
    'ExportScope',
    'ExportSettings',
    'ExportStats',
    'Page',
    'PageRef',
    'Space',
    'UsageMetrics',
    'Version'
]
