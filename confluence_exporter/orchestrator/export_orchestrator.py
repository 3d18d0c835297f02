"""
Export orchestrator coordinating the export pipeline.

Resolve pages (single page, space listing or hierarchy walk), convert and
write each one under a concurrency cap, download its assets, then write the
index files once every page has settled.
"""

import asyncio
import logging
import sys
import time
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional

from tqdm import tqdm

from ..converters import MarkdownConverter
from ..exporters import IndexEntry, IndexGenerator, MarkdownExporter, SpaceEntry, sanitize_filename
from ..exporters.index_generator import (
    GLOBAL_INDEX_FILENAME,
    HIERARCHY_INDEX_FILENAME,
    SPACE_INDEX_FILENAME
)
from ..fetchers.hierarchy_walker import HierarchyWalker
from ..logger import ProgressTracker, log_section
from ..models import ExportJob, ExportScope, ExportSettings, ExportStats, Page, Space, UsageMetrics
from ..reporter import NoOpReporter, Reporter

UNKNOWN_SPACE_NAME = 'Unknown Space'


class ExportOrchestrator:
    """Drives the walker, converter and exporters for one export run."""

    def __init__(
        self,
        fetcher,
        settings: ExportSettings,
        converter: Optional[MarkdownConverter] = None,
        reporter: Optional[Reporter] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize export orchestrator.

        Args:
            fetcher: Content source (a BaseFetcher such as ConfluenceClient)
            settings: Effective export settings
            converter: Optional markup converter (default MarkdownConverter)
            reporter: Optional usage reporter (default NoOpReporter)
            logger: Optional logger instance
        """
        self.fetcher = fetcher
        self.settings = settings
        self.logger = logger or logging.getLogger('confluence_exporter.orchestrator')
        self.converter = converter or MarkdownConverter(logger=self.logger)
        self.reporter = reporter or NoOpReporter()
        self.exporter = MarkdownExporter(fetcher, settings, logger=self.logger)
        self.index_generator = IndexGenerator.for_format(settings.format, logger=self.logger)
        self.output_root = Path(settings.output_directory)

    async def run(self, job: ExportJob) -> ExportStats:
        """
        Execute an export job.

        Args:
            job: Scope and target to export

        Returns:
            Aggregated statistics for the run
        """
        log_section(f"Export {job.scope.value}" + (f" {job.target}" if job.target else ''))
        start_time = time.monotonic()

        if job.scope is ExportScope.PAGE:
            stats = await self.export_single_page(job.target)
        elif job.scope is ExportScope.SPACE:
            stats = await self.export_space(job.target)
        elif job.scope is ExportScope.HIERARCHY:
            stats = await self.export_hierarchy(job.target)
        else:
            stats = await self.export_all_spaces()

        stats.duration_seconds = time.monotonic() - start_time
        self.logger.info(
            f"Export complete in {stats.duration_seconds:.2f}s: {stats.pages_exported} pages exported, "
            f"{stats.pages_failed} failed, {stats.assets_downloaded} assets"
        )

        if stats.found:
            await self._report_usage(job, stats)

        return stats

    async def export_page(
        self,
        page: Page,
        output_root: Path,
        stats: Optional[ExportStats] = None,
        directory: Optional[Path] = None
    ) -> Path:
        """
        Export one page: content files, then assets.

        Args:
            page: Page to export
            output_root: Directory the page tree is rooted at
            stats: Optional stats to record bytes and asset counts on
            directory: Page directory already reserved for this page (default from its ancestors)

        Returns:
            The page directory
        """
        directory = directory or self.exporter.page_directory(page, output_root)
        markdown = self.converter.convert(page.body) if self.settings.format.writes_markdown else None

        written = self.exporter.write_page(page, markdown, directory)
        downloaded, failed, asset_bytes = await self.exporter.download_assets(page, directory)

        if stats is not None:
            stats.bytes_written += written + asset_bytes
            stats.assets_downloaded += downloaded
            stats.assets_failed += failed

        self.logger.debug(f"Exported page {page.id} ({page.title}) to {directory}")
        return directory

    async def export_single_page(self, page_id: str) -> ExportStats:
        """Export one page into the output root. No index is written."""
        stats = ExportStats()
        page = await self.fetcher.get_page(page_id)
        if page is None:
            self.logger.warning(f"Page {page_id} not found")
            stats.found = False
            return stats

        self.output_root.mkdir(parents=True, exist_ok=True)
        await self._export_pages([page], self.output_root, stats)
        return stats

    async def export_space(self, space_key: str) -> ExportStats:
        """Export every page of a space and write its INDEX.md."""
        space = await self.fetcher.get_space(space_key)
        if space is None:
            self.logger.warning(f"Space {space_key} not found")
            stats = ExportStats()
            stats.found = False
            return stats

        return await self._export_resolved_space(space)

    async def _export_resolved_space(self, space: Space, space_dir: Optional[Path] = None) -> ExportStats:
        stats = ExportStats()
        self.logger.info(f"Exporting space {space.key} ({space.name})")

        pages = await self.fetcher.list_space_pages(space.key)
        space_dir = space_dir or self.output_root / sanitize_filename(space.name)
        space_dir.mkdir(parents=True, exist_ok=True)

        entries = await self._export_pages(pages, space_dir, stats)

        if self.settings.create_index:
            stats.bytes_written += self.index_generator.write(
                space_dir / SPACE_INDEX_FILENAME,
                self.index_generator.space_index(space, entries)
            )

        stats.spaces_exported += 1
        return stats

    async def export_hierarchy(self, root_id: str) -> ExportStats:
        """Export a page and all its descendants and write HIERARCHY_INDEX.md."""
        stats = ExportStats()
        pages = await HierarchyWalker(self.fetcher, logger=self.logger).walk(root_id)
        if not pages:
            stats.found = False
            return stats

        root = pages[0]
        space_dir = self.output_root / sanitize_filename(root.space_name or UNKNOWN_SPACE_NAME)
        space_dir.mkdir(parents=True, exist_ok=True)

        entries = await self._export_pages(pages, space_dir, stats)

        if self.settings.create_index:
            stats.bytes_written += self.index_generator.write(
                space_dir / HIERARCHY_INDEX_FILENAME,
                self.index_generator.hierarchy_index(root, root.space_name or UNKNOWN_SPACE_NAME, entries)
            )

        return stats

    async def export_all_spaces(self) -> ExportStats:
        """Export every selected space in turn and write the global README.md."""
        stats = ExportStats()
        spaces = self.filter_spaces(await self.fetcher.list_spaces())
        self.logger.info(f"Exporting {len(spaces)} spaces")

        exported: List[SpaceEntry] = []
        owners: Dict[str, str] = {}
        with ProgressTracker(len(spaces), "spaces", self.logger) as tracker:
            for space in spaces:
                space_dir = self.output_root / sanitize_filename(space.name)
                if _path_key(space_dir) in owners:
                    unique = _unique_directory(space_dir, owners, space.key)
                    self.logger.warning(
                        f"Space {space.key} ({space.name}) shares its directory with space "
                        f"{owners[_path_key(space_dir)]}, writing to {unique.name}"
                    )
                    space_dir = unique
                owners[_path_key(space_dir)] = space.key

                stats.merge(await self._export_resolved_space(space, space_dir))
                exported.append(SpaceEntry(space, PurePosixPath(space_dir.name)))
                tracker.increment()

        if self.settings.create_index:
            self.output_root.mkdir(parents=True, exist_ok=True)
            stats.bytes_written += self.index_generator.write(
                self.output_root / GLOBAL_INDEX_FILENAME,
                self.index_generator.global_index(exported)
            )

        return stats

    def filter_spaces(self, spaces: Iterable[Space]) -> List[Space]:
        """
        Apply the include list, then the exclude list (case-insensitive).

        An empty include list selects every space.
        """
        include = {key.lower() for key in self.settings.include_spaces}
        exclude = {key.lower() for key in self.settings.exclude_spaces}

        selected = [s for s in spaces if not include or s.key.lower() in include]
        return [s for s in selected if s.key.lower() not in exclude]

    async def _export_pages(self, pages: List[Page], output_root: Path, stats: ExportStats) -> List[IndexEntry]:
        """
        Export pages concurrently, bounded by ``max_concurrent_requests``.

        A failing page is logged and recorded; the others carry on.

        Returns:
            Index entries of the successfully exported pages
        """
        pages = _unique_pages(pages)
        directories = self._assign_directories(pages, output_root)
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_requests)
        progress_bar = tqdm(total=len(pages), desc="Exporting pages", unit="page",
                            disable=not self._should_show_progress())

        async def export_one(page: Page) -> Optional[IndexEntry]:
            async with semaphore:
                entry = None
                try:
                    directory = await self.export_page(page, output_root, stats, directories[page.id])
                except Exception as e:
                    self.logger.error(f"Failed to export page {page.id} ({page.title}): {e}", exc_info=True)
                    stats.record_failure(page, e)
                    tracker.increment(success=False)
                else:
                    stats.pages_exported += 1
                    entry = IndexEntry(page, PurePosixPath(directory.relative_to(output_root).as_posix()))
                    tracker.increment()
                progress_bar.update(1)

                if self.settings.request_delay > 0:
                    await asyncio.sleep(self.settings.request_delay)
                return entry

        try:
            with ProgressTracker(len(pages), "pages", self.logger) as tracker:
                results = await asyncio.gather(*(export_one(page) for page in pages))
        finally:
            progress_bar.close()

        return [entry for entry in results if entry is not None]

    def _assign_directories(self, pages: List[Page], output_root: Path) -> Dict[str, Path]:
        """
        Reserve a distinct directory for every page of the run.

        Parents are placed before their children, so a child follows its
        parent's reserved directory. A page whose directory is already taken
        gets a ``_<page id>`` suffix.

        Returns:
            Mapping of page id to page directory
        """
        assigned: Dict[str, Path] = {}
        owners: Dict[str, str] = {}

        for page in sorted(pages, key=lambda p: p.depth):
            parent_directory = assigned.get(page.parent_id) if self.settings.preserve_hierarchy else None
            if parent_directory is not None:
                directory = parent_directory / sanitize_filename(page.title)
            else:
                directory = self.exporter.page_directory(page, output_root)

            if _path_key(directory) in owners:
                unique = _unique_directory(directory, owners, page.id)
                self.logger.warning(
                    f"Page {page.id} ({page.title}) shares its directory with page "
                    f"{owners[_path_key(directory)]}, writing to {unique.name}"
                )
                directory = unique

            owners[_path_key(directory)] = page.id
            assigned[page.id] = directory

        return assigned

    def _should_show_progress(self) -> bool:
        return self.settings.show_progress and sys.stdout.isatty()

    async def _report_usage(self, job: ExportJob, stats: ExportStats) -> None:
        metrics = UsageMetrics(
            installation_id=self.reporter.installation_id,
            export_format=self.settings.format.value,
            export_duration_seconds=stats.duration_seconds,
            pages_exported=stats.pages_exported,
            spaces_exported=stats.spaces_exported,
            total_size_bytes=stats.bytes_written,
            custom_metrics={
                'scope': job.scope.value,
                'includeImages': self.settings.include_images,
                'includeAttachments': self.settings.include_attachments,
                'preserveHierarchy': self.settings.preserve_hierarchy
            }
        )
        if not await self.reporter.report_usage(metrics):
            self.logger.warning("Usage metrics were not accepted")


def _unique_pages(pages: Iterable[Page]) -> List[Page]:
    seen = set()
    unique = []
    for page in pages:
        if page.id not in seen:
            seen.add(page.id)
            unique.append(page)
    return unique



def _path_key(path: Path) -> str:
    # Case-insensitive filesystems treat "Guide" and "guide" as one directory
    return str(path).casefold()


def _unique_directory(directory: Path, taken: Dict[str, str], suffix: str) -> Path:
    candidate = directory.with_name(f"{directory.name}_{sanitize_filename(suffix)}")
    counter = 2
    while _path_key(candidate) in taken:
        candidate = directory.with_name(f"{directory.name}_{sanitize_filename(suffix)}_{counter}")
        counter += 1
    return candidate

__all__ = ['ExportOrchestrator']
