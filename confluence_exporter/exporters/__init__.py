"""
Exporters package: writes pages, assets and index files to disk.

Modules:
- markdown_exporter: README.md with YAML front matter, index.html twin, assets/
- index_generator: INDEX.md, HIERARCHY_INDEX.md and the global README.md

Configuration:
- export.format: markdown | html | both
- export.preserve_hierarchy: Nest page directories under their ancestors
- export.include_images / export.include_attachments: Asset downloads
- export.create_index_files: Enable/disable index generation
"""

from .index_generator import IndexEntry, IndexGenerator, SpaceEntry
from .markdown_exporter import MarkdownExporter, asset_filename, sanitize_filename

__all__ = [
    'IndexEntry',
    'IndexGenerator',
    'MarkdownExporter',
    'SpaceEntry',
    'asset_filename',
    'sanitize_filename'
]
