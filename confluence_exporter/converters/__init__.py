"""Converters package for Confluence storage markup to Markdown conversion."""

import logging

from .macro_handler import Macro, MacroHandler, MacroKind
from .markdown_converter import FAILED_CONVERSION_NOTE, MarkdownConverter


def convert_markup(markup, config=None, logger=None):
    """
    Convenience function to convert one page body to Markdown.

    Args:
        markup: Storage-format page body
        config: Optional configuration dictionary for converter behavior
        logger: Optional logger instance (uses module logger if not provided)

    Returns:
        str: Markdown text

    Example:
        >>> from confluence_exporter.converters import convert_markup
        >>> convert_markup('<h1>Hello</h1>')
        '# Hello'
    """
    if logger is None:
        logger = logging.getLogger('confluence_exporter.converters')

    return MarkdownConverter(logger=logger, config=config).convert(markup)


__all__ = [
    'convert_markup',
    'FAILED_CONVERSION_NOTE',
    'Macro',
    'MacroHandler',
    'MacroKind',
    'MarkdownConverter'
]
