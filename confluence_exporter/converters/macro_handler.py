"""Confluence storage-format macro handler.

Rewrites ``ac:structured-macro`` elements into plain HTML that the markdown
converter knows how to render.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger('confluence_exporter.converters.macrohandler')


class MacroKind(Enum):
    """Macros with dedicated handling. Anything else is ``UNKNOWN``."""
    CODE = "code"
    INFO = "info"
    NOTE = "note"
    WARNING = "warning"
    TIP = "tip"
    TABLE_OF_CONTENTS = "table-of-contents"
    CHILDREN = "children"
    INCLUDE = "include"
    EXCERPT = "excerpt"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> 'MacroKind':
        name = (name or '').strip().lower()
        if name == 'toc':
            return cls.TABLE_OF_CONTENTS
        if name == cls.UNKNOWN.value:
            return cls.UNKNOWN
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_callout(self) -> bool:
        return self in (MacroKind.INFO, MacroKind.NOTE, MacroKind.WARNING, MacroKind.TIP)


@dataclass
class Macro:
    """A macro found in storage markup."""

    kind: MacroKind
    name: str
    element: Tag
    parameters: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_element(cls, element: Tag) -> 'Macro':
        name = element.get('ac:name', '')
        parameters = {}
        for param in element.find_all('ac:parameter', recursive=False):
            parameters[param.get('ac:name', '')] = param.get_text(strip=True)
        return cls(kind=MacroKind.from_name(name), name=name, element=element, parameters=parameters)

    def parameter(self, name: str) -> Optional[str]:
        value = self.parameters.get(name)
        return value if value else None


class MacroHandler:
    """Converts storage-format macros to markdown-friendly HTML structures."""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('confluence_exporter.converters.macrohandler')
        self._factory = BeautifulSoup('', 'lxml')

        self.macro_converters = {
            MacroKind.CODE: self._convert_code_macro,
            MacroKind.INFO: self._convert_callout_macro,
            MacroKind.NOTE: self._convert_callout_macro,
            MacroKind.WARNING: self._convert_callout_macro,
            MacroKind.TIP: self._convert_callout_macro,
            MacroKind.TABLE_OF_CONTENTS: self._convert_toc_macro,
            MacroKind.CHILDREN: self._convert_children_macro,
            MacroKind.INCLUDE: self._convert_include_macro,
            MacroKind.EXCERPT: self._convert_excerpt_macro,
            MacroKind.UNKNOWN: self._convert_unknown_macro,
        }

    def convert(self, soup: BeautifulSoup) -> Dict[str, int]:
        """
        Replace every structured macro in the soup, innermost first.

        Args:
            soup: Parsed storage markup (modified in place)

        Returns:
            Count of converted macros per macro name
        """
        macros = soup.find_all('ac:structured-macro')
        counts: Dict[str, int] = {}

        # Nested macros sit later in document order; reversing handles them first
        for element in reversed(macros):
            macro = Macro.from_element(element)
            self.logger.debug(f"Converting macro: {macro.name} ({macro.kind.name})")
            if macro.kind is MacroKind.UNKNOWN:
                self.logger.debug(f"Unsupported macro type: {macro.name}")

            self.macro_converters[macro.kind](macro)
            counts[macro.name] = counts.get(macro.name, 0) + 1

        if counts:
            self.logger.debug(f"Macro conversion: {sum(counts.values())} macros ({counts})")
        return counts

    def _convert_code_macro(self, macro: Macro) -> None:
        """Convert code macro to ``pre > code.language-X``."""
        language = macro.parameter('language') or 'text'
        body = macro.element.find('ac:plain-text-body', recursive=False)
        code_text = body.get_text() if body is not None else ''

        pre = self._factory.new_tag('pre')
        code = self._factory.new_tag('code')
        code['class'] = f'language-{language}'
        code.string = code_text
        pre.append(code)

        macro.element.replace_with(pre)

    def _convert_callout_macro(self, macro: Macro) -> None:
        """Convert info/note/warning/tip macros to a blockquote."""
        title = macro.parameter('title')
        blockquote = self._factory.new_tag('blockquote')
        blockquote['class'] = f'confluence-{macro.kind.value}'

        if title:
            heading = self._factory.new_tag('p')
            strong = self._factory.new_tag('strong')
            strong.string = title
            heading.append(strong)
            blockquote.append(heading)
            self._move_rich_body(macro, blockquote)
        else:
            self._move_rich_body(macro, blockquote)
            self._prefix_label(blockquote, f'{macro.kind.value.upper()}:')

        macro.element.replace_with(blockquote)

    def _prefix_label(self, container: Tag, label: str) -> None:
        """Put a bold label in front of the container's first line."""
        strong = self._factory.new_tag('strong')
        strong.string = label

        first = next((c for c in container.contents
                      if isinstance(c, Tag) or str(c).strip()), None)
        target = first if isinstance(first, Tag) and first.name == 'p' else container

        target.insert(0, ' ')
        target.insert(0, strong)

    def _convert_toc_macro(self, macro: Macro) -> None:
        self._replace_with_placeholder(macro, 'table-of-contents',
                                       'Table of Contents will be generated here')

    def _convert_children_macro(self, macro: Macro) -> None:
        self._replace_with_placeholder(macro, 'children-pages', 'Child pages will be listed here')

    def _convert_include_macro(self, macro: Macro) -> None:
        title = None
        page_ref = macro.element.find('ri:page')
        if page_ref is not None:
            title = page_ref.get('ri:content-title')
        if not title:
            title = macro.parameter('')

        text = f'Included content from: {title}' if title else 'Included content'
        self._replace_with_placeholder(macro, 'include-content', text)

    def _convert_excerpt_macro(self, macro: Macro) -> None:
        """Inline the excerpt body."""
        div = self._factory.new_tag('div')
        div['class'] = 'excerpt'
        self._move_rich_body(macro, div)
        macro.element.replace_with(div)

    def _convert_unknown_macro(self, macro: Macro) -> None:
        """Keep a visible marker for macros we cannot render."""
        div = self._factory.new_tag('div')
        div['class'] = f'confluence-macro-{macro.name}'

        em = self._factory.new_tag('em')
        em.string = f'Confluence Macro: {macro.name}'
        div.append(em)

        if macro.parameters:
            params = ', '.join(f'{name or "default"}: {value}'
                               for name, value in macro.parameters.items())
            div.append(f' ({params})')

        macro.element.replace_with(div)

    def _replace_with_placeholder(self, macro: Macro, css_class: str, text: str) -> None:
        div = self._factory.new_tag('div')
        div['class'] = css_class
        em = self._factory.new_tag('em')
        em.string = text
        div.append(em)
        macro.element.replace_with(div)

    @staticmethod
    def _move_rich_body(macro: Macro, target: Tag) -> None:
        body = macro.element.find('ac:rich-text-body', recursive=False)
        if body is None:
            return
        children: List = list(body.contents)
        for child in children:
            target.append(child.extract())


__all__ = ['Macro', 'MacroHandler', 'MacroKind']
