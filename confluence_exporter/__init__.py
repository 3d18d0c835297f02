"""
Confluence Exporter

Exports Confluence content (a single page, a page hierarchy, a space or
every space of a site) to a local directory tree of Markdown and/or HTML
files with downloaded images and attachments.

Features:
- Async Confluence REST API client with offset or cursor pagination
- Retries with exponential backoff and a circuit breaker
- Storage markup to Markdown conversion (code, info/note/warning/tip,
  table of contents, children, include and excerpt macros)
- YAML front matter on every exported page
- Directory layout mirroring the page tree
- INDEX.md, HIERARCHY_INDEX.md and global README.md generation
- Concurrency cap and request throttling
- Comprehensive logging and progress tracking

Basic Usage:
    1. Copy config.yaml.example to config.yaml
    2. Fill in your Confluence base URL, username and API token
    3. Run: confluence-export space ENG --config config.yaml
    4. Or: confluence-export all --exclude-spaces ARCHIVE -v

Example Configuration (config.yaml):
    confluence:
        base_url: "https://example.atlassian.net/wiki"
        username: "user@example.com"
        api_token: ${CONFLUENCE_API_TOKEN}

    export:
        output_directory: "./confluence-export"
        format: "markdown"
"""

__version__ = "1.0.0"
__description__ = "Export Confluence spaces and pages to Markdown"

from .models import (
    ExportFormat,
    ExportJob,
    ExportScope,
    ExportSettings,
    ExportStats,
    Page,
    PageRef,
    Space,
    UsageMetrics,
    Version
)
from .config_loader import ConfigLoader, get_nested
from .logger import setup_logging, ProgressTracker, log_section, log_config
from .confluence_client import ConfluenceClient
from .converters import MarkdownConverter, convert_markup
from .orchestrator import ExportOrchestrator, ExportReport
from .reporter import MarketplaceReporter, NoOpReporter, Reporter, create_reporter

__all__ = [
    # Version info
    '__version__',
    '__description__',

    # Core data models
    'ExportFormat',
    'ExportJob',
    'ExportScope',
    'ExportSettings',
    'ExportStats',
    'Page',
    'PageRef',
    'Space',
    'UsageMetrics',
    'Version',

    # Configuration
    'ConfigLoader',
    'get_nested',

    # Logging
    'setup_logging',
    'ProgressTracker',
    'log_section',
    'log_config',

    # Pipeline
    'ConfluenceClient',
    'MarkdownConverter',
    'convert_markup',
    'ExportOrchestrator',
    'ExportReport',

    # Usage reporting
    'Reporter',
    'NoOpReporter',
    'MarketplaceReporter',
    'create_reporter'
]
