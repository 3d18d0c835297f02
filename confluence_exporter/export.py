#!/usr/bin/env python3
"""
Confluence Exporter - Main CLI Entry Point

This script provides the command-line interface for exporting Confluence
pages, page hierarchies and spaces to Markdown and/or HTML files.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import httpx
import yaml

from . import __version__
from .config_loader import ConfigLoader, get_nested
from .confluence_client import ConfluenceClient
from .logger import setup_logging, log_section, log_config
from .models import ExportJob, ExportScope, ExportSettings
from .orchestrator import ExportOrchestrator, ExportReport
from .reporter import create_reporter

DEFAULT_CONFIG_PATH = 'config.yaml'

EXPORT_COMMANDS = {
    'page': ExportScope.PAGE,
    'space': ExportScope.SPACE,
    'hierarchy': ExportScope.HIERARCHY,
    'all': ExportScope.ALL_SPACES,
}


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {number}")
    return number


def _comma_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _common_options() -> argparse.ArgumentParser:
    """Options shared by every subcommand."""
    common = argparse.ArgumentParser(add_help=False)

    connection = common.add_argument_group('connection')
    connection.add_argument(
        '--config',
        type=str,
        help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH} if present)'
    )
    connection.add_argument('--base-url', type=str, help='Confluence base URL')
    connection.add_argument('--username', type=str, help='Confluence username')
    connection.add_argument('--token', type=str, help='Confluence API token')

    output = common.add_argument_group('output')
    output.add_argument('--output', type=str, help='Output directory')
    output.add_argument(
        '--format',
        choices=['markdown', 'html', 'both'],
        help='Output format (default: markdown)'
    )
    output.add_argument(
        '--preserve-hierarchy',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Nest page directories under their ancestors'
    )
    output.add_argument(
        '--include-images',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Download images referenced by pages'
    )
    output.add_argument(
        '--include-attachments',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Download attachments linked from pages'
    )
    output.add_argument(
        '--create-index',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Write INDEX.md / HIERARCHY_INDEX.md / README.md index files'
    )
    output.add_argument(
        '--progress',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Show a progress bar while exporting pages'
    )

    throttling = common.add_argument_group('throttling')
    throttling.add_argument(
        '--concurrent',
        type=_positive_int,
        metavar='N',
        help='Maximum concurrent page exports (default: 5)'
    )
    throttling.add_argument(
        '--delay',
        type=_non_negative_int,
        metavar='MS',
        help='Delay between requests in milliseconds (default: 100)'
    )

    filters = common.add_argument_group('space filters')
    filters.add_argument(
        '--include-spaces',
        type=_comma_list,
        metavar='KEY,...',
        help='Comma-separated space keys to export (all command)'
    )
    filters.add_argument(
        '--exclude-spaces',
        type=_comma_list,
        metavar='KEY,...',
        help='Comma-separated space keys to skip (all command)'
    )

    reporting = common.add_argument_group('logging and reports')
    reporting.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )
    reporting.add_argument('--log-file', type=str, help='Write logs to this file as well')
    reporting.add_argument('--report-path', type=str, help='Write a JSON export report to this file')

    return common


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog='confluence-export',
        description="Export Confluence pages and spaces to Markdown and/or HTML",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export one page
  confluence-export page 123456 --config config.yaml

  # Export a page and all of its descendants
  confluence-export hierarchy 123456

  # Export a space as Markdown and HTML
  confluence-export space ENG --format both

  # Export every space except the archive
  confluence-export all --exclude-spaces ARCHIVE --concurrent 10

  # List the spaces visible to your account
  confluence-export list-spaces

  # Verbose logging with a JSON report
  confluence-export space ENG -vv --report-path report.json
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    common = _common_options()
    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')
    subparsers.required = True

    page = subparsers.add_parser('page', parents=[common], help='Export a single page')
    page.add_argument('target', metavar='PAGE_ID', help='Confluence page ID')

    space = subparsers.add_parser('space', parents=[common], help='Export every page of a space')
    space.add_argument('target', metavar='SPACE_KEY', help='Confluence space key')

    hierarchy = subparsers.add_parser('hierarchy', parents=[common],
                                      help='Export a page and all of its descendants')
    hierarchy.add_argument('target', metavar='PAGE_ID', help='Root page ID')

    subparsers.add_parser('all', parents=[common], help='Export every space of the site')
    subparsers.add_parser('list-spaces', parents=[common], help='List the available spaces')

    return parser


def load_configuration(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Load, merge and validate the effective configuration.

    The config file (``--config``, or ``config.yaml`` when present) is layered
    over the defaults, then CLI arguments are applied on top.

    Raises:
        FileNotFoundError: If an explicit ``--config`` file doesn't exist
        ValueError: If the configuration is invalid
    """
    config_path = args.config
    if config_path is None and os.path.exists(DEFAULT_CONFIG_PATH):
        config_path = DEFAULT_CONFIG_PATH

    if config_path:
        config = ConfigLoader.load(config_path)
    else:
        config = ConfigLoader.with_defaults({})

    config = ConfigLoader.merge_with_args(config, args)
    ConfigLoader.validate(config)
    return config


async def run_export(
    config: Dict[str, Any],
    args: argparse.Namespace,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> int:
    """
    Run one export command and print its report.

    Returns:
        Exit code: 0 on success, 1 if the target was not found or pages failed
    """
    logger = logging.getLogger('confluence_exporter.cli')

    settings = ExportSettings.from_config(config)
    job = ExportJob(
        scope=EXPORT_COMMANDS[args.command],
        target=getattr(args, 'target', None),
        settings=settings
    )

    async with ConfluenceClient.from_config(config, transport=transport) as client:
        orchestrator = ExportOrchestrator(client, settings, reporter=create_reporter(config))
        stats = await orchestrator.run(job)

    report = ExportReport()
    print(report.format_console_report(stats, job))

    if args.report_path:
        report.export_json_report(stats, job, args.report_path)

    if not stats.found:
        logger.error(f"Export target not found: {job.target}")
        return 1

    if stats.pages_failed:
        logger.warning(f"{stats.pages_failed} page(s) failed to export")
        return 1

    return 0


async def list_spaces(config: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """Print the spaces visible to the configured account, sorted by key."""
    async with ConfluenceClient.from_config(config, transport=transport) as client:
        spaces = await client.list_spaces()

    print(f"{'Key':<20} {'Name':<40} Type")
    print("-" * 70)
    for space in sorted(spaces, key=lambda s: s.key):
        print(f"{space.key:<20} {space.name:<40} {space.type}")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        # Minimal logging for config loading
        setup_logging(verbosity=args.verbose)
        config = load_configuration(args)

        # Reconfigure logging with config file settings
        setup_logging(
            verbosity=args.verbose,
            log_file=get_nested(config, 'logging.file'),
            level=get_nested(config, 'logging.level')
        )
    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except (ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2

    logger = logging.getLogger('confluence_exporter.cli')
    log_section("Confluence Exporter")
    logger.info(f"Version: {__version__}")
    log_config(config)

    try:
        if args.command == 'list-spaces':
            return asyncio.run(list_spaces(config))
        return asyncio.run(run_export(config, args))

    except KeyboardInterrupt:
        print("\nExport interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"Export failed: {e}", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
