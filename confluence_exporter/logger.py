"""Structured logging infrastructure with verbosity levels and progress tracking."""

import copy
import logging
import logging.handlers
import time
from typing import Any, Dict, Optional

import colorlog

PACKAGE_LOGGER = 'confluence_exporter'


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Set up structured logging with configurable verbosity levels.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2+=DEBUG)
        log_file: Optional path to log file
        log_format: Optional custom log format string
        date_format: Optional custom date format string
        level: Optional explicit log level string

    Returns:
        Configured logger instance

    Raises:
        ValueError: If ``level`` is not a known level name
    """
    if level:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level_upper = level.upper()
        if level_upper not in allowed_levels:
            raise ValueError(
                f"Invalid log level '{level}'. Must be one of: {sorted(allowed_levels)}"
            )
        log_level = getattr(logging, level_upper)
    elif verbosity >= 2:
        log_level = logging.DEBUG
    elif verbosity >= 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING

    if log_format is None:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    if date_format is None:
        date_format = '%Y-%m-%d %H:%M:%S'

    # Root stays at WARNING to keep dependencies quiet
    logging.basicConfig(
        level=logging.WARNING,
        format=log_format,
        datefmt=date_format
    )

    # httpx logs every request at INFO
    for noisy in ('httpx', 'httpcore'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        fmt='%(log_color)s' + log_format,
        datefmt=date_format,
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(fmt=log_format, datefmt=date_format))
            logger.addHandler(file_handler)

            logger.info(f"Logging to file: {log_file}")
            logger.info(f"Log level: {logging.getLevelName(log_level)}")
        except OSError as e:
            logger.warning(f"Failed to set up file logging: {str(e)}")
    else:
        logger.debug(f"Console logging only. Level: {logging.getLevelName(log_level)}")

    return logger


class ProgressTracker:
    """
    Context manager that logs how far an export batch has got.

    A batch is the pages of one space or hierarchy, or the spaces of an
    ``all`` run. A line is logged every ``log_every`` items and after each
    failure; on exit a one-line summary is logged at INFO, WARNING (some
    items failed) or ERROR (every item failed).
    """

    def __init__(self, total: int, item_type: str = "items", logger: logging.Logger = None, log_every: int = 10):
        """
        Initialize progress tracker.

        Args:
            total: Number of items in the batch
            item_type: Plural noun used in messages (e.g., "pages", "spaces")
            logger: Optional logger instance
            log_every: Log a progress line after this many items
        """
        self.total = total
        self.item_type = item_type
        self.logger = logger or logging.getLogger(PACKAGE_LOGGER)
        self.log_every = log_every
        self.succeeded = 0
        self.failed = 0
        self._started: Optional[float] = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    def __enter__(self) -> 'ProgressTracker':
        self._started = time.monotonic()
        self.logger.info(f"Processing {self.total} {self.item_type}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = format_duration(time.monotonic() - self._started)

        if exc_type is not None:
            self.logger.error(
                f"Stopped after {self.processed}/{self.total} {self.item_type} "
                f"({exc_type.__name__}) in {elapsed}"
            )
            return

        if self.failed and not self.succeeded:
            log_method = self.logger.error
        elif self.failed:
            log_method = self.logger.warning
        else:
            log_method = self.logger.info

        log_method(
            f"{self.succeeded}/{self.total} {self.item_type} succeeded, "
            f"{self.failed} failed in {elapsed}"
        )

    def increment(self, success: bool = True) -> None:
        """
        Record one finished item.

        Args:
            success: Whether the item was processed successfully
        """
        if success:
            self.succeeded += 1
        else:
            self.failed += 1

        if self.processed % self.log_every == 0 or not success:
            self.logger.info(
                f"{self.processed}/{self.total} {self.item_type} done "
                f"({self.total - self.processed} remaining, {self.failed} failed)"
            )


def format_duration(seconds: float) -> str:
    """Human readable duration: ``4.2s``, ``3m 5s`` or ``1h 2m 3s``."""
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"

    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"


def log_section(title: str) -> None:
    """
    Log a decorative section header.

    Args:
        title: Section title to display
    """
    logger = logging.getLogger(PACKAGE_LOGGER)

    separator = "=" * 60
    logger.info("")
    logger.info(separator)
    logger.info(f"  {title.upper()}")
    logger.info(separator)
    logger.info("")


def log_config(config: Dict[str, Any]) -> None:
    """
    Log sanitized configuration for debugging.

    Args:
        config: Configuration dictionary to log
    """
    logger = logging.getLogger(PACKAGE_LOGGER)

    sanitized_config = _sanitize_config(config)

    log_section("Configuration")

    confluence = sanitized_config.get('confluence') or {}
    logger.info(f"Confluence Base URL: {confluence.get('base_url') or 'Not Set'}")
    if confluence.get('username'):
        logger.info(f"Username: {confluence.get('username')}")
    if confluence.get('api_token'):
        logger.info(f"API Token: {confluence.get('api_token')}")
    logger.info(f"Pagination: {confluence.get('pagination', 'offset')} "
                f"(page size {confluence.get('page_size', 50)})")

    logger.info("")

    export_settings = sanitized_config.get('export') or {}
    logger.info(f"Output Directory: {export_settings.get('output_directory', 'output')}")
    logger.info(f"Format: {export_settings.get('format', 'markdown')}")
    logger.info(f"Preserve Hierarchy: {export_settings.get('preserve_hierarchy', True)}")
    logger.info(f"Include Images: {export_settings.get('include_images', True)}")
    logger.info(f"Include Attachments: {export_settings.get('include_attachments', True)}")
    logger.info(f"Create Index Files: {export_settings.get('create_index_files', True)}")
    if export_settings.get('include_spaces'):
        logger.info(f"Include Spaces: {', '.join(export_settings['include_spaces'])}")
    if export_settings.get('exclude_spaces'):
        logger.info(f"Exclude Spaces: {', '.join(export_settings['exclude_spaces'])}")

    logger.info("")

    advanced = sanitized_config.get('advanced') or {}
    logger.info(f"Max Concurrent Requests: {advanced.get('max_concurrent_requests', 5)}")
    logger.info(f"Request Delay: {advanced.get('request_delay_ms', 100)}ms")
    logger.info(f"Max Retries: {advanced.get('max_retries', 3)}")

    reporting = sanitized_config.get('reporting') or {}
    logger.info(f"Usage Reporting: {reporting.get('enabled', False)}")


def _sanitize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a sanitized copy of configuration with sensitive fields masked.

    Args:
        config: Configuration dictionary

    Returns:
        Sanitized configuration copy
    """
    sanitized = copy.deepcopy(config)

    sensitive_fields = {
        'password', 'token_secret', 'api_key', 'secret',
        'api_token', 'access_token', 'auth_header'
    }

    def mask_sensitive(data: Any) -> Any:
        if isinstance(data, dict):
            masked = {}
            for key, value in data.items():
                is_sensitive = any(sensitive in str(key).lower() for sensitive in sensitive_fields)
                if is_sensitive and isinstance(value, str):
                    masked[key] = "***REDACTED***"
                else:
                    masked[key] = mask_sensitive(value)
            return masked
        elif isinstance(data, list):
            return [mask_sensitive(item) for item in data]
        else:
            return data

    return mask_sensitive(sanitized)


__all__ = [
    'setup_logging',
    'ProgressTracker',
    'format_duration',
    'log_section',
    'log_config'
]
