"""Storage markup to Markdown converter built on markdownify."""

import logging
import re
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from markdownify import MarkdownConverter as MarkdownifyConverter

from ..exporters.markdown_exporter import asset_filename, sanitize_filename
from .macro_handler import MacroHandler

logger = logging.getLogger('confluence_exporter.converters.markdownconverter')

CDATA_PATTERN = re.compile(r'<!\[CDATA\[(.*?)\]\]>', re.DOTALL)
PAGE_LINK_PATTERN = re.compile(r'/pages/viewpage\.action\?pageId=(\d+)')
FENCED_BLOCK_PATTERN = re.compile(r'(^(`{3,})[^\n]*\n.*?^\2[ \t]*$)', re.MULTILINE | re.DOTALL)
BOLD_LINE_MERGE_PATTERN = re.compile(
    r'^(\*\*[^*\n]+\*\*)[ \t]*\n(?=\*\*[^*\n]+\*\*[ \t]*$)', re.MULTILINE
)
STRAY_ESCAPE_PATTERN = re.compile(r'(?<!\\)\\([*_])')

FAILED_CONVERSION_NOTE = '*Note: Failed to convert to Markdown*'

PANEL_TYPES = ('info', 'note', 'warning', 'tip')

# brush names used by legacy code panels
BRUSH_LANGUAGES = {
    'shell': 'bash',
    'sh': 'bash',
    'py': 'python',
    'js': 'javascript',
    'yml': 'yaml',
    'c++': 'cpp',
    'plain': 'text',
}


class MarkdownConverter(MarkdownifyConverter):
    """
    Converts Confluence storage markup into Markdown.

    Conversion runs in two halves. :meth:`preprocess` rewrites the markup
    into plain HTML: macros, tables, legacy code panels, images, page links,
    status badges and panels. Then the markdownify base class renders it
    with the ``convert_*`` overrides below, and a final text pass cleans up
    whitespace artifacts.

    :meth:`convert` never raises; on failure it returns the raw markup in a
    fenced ``html`` block followed by a note.
    """

    def __init__(self, logger: logging.Logger = None, config: Dict[str, Any] = None, **kwargs):
        markdownify_options = {
            'heading_style': 'ATX',
            'bullets': '-',
            'escape_asterisks': False,
            'escape_underscores': False,
            'escape_misc': False,
        }
        markdownify_options.update(kwargs)
        super().__init__(**markdownify_options)

        self.logger = logger or logging.getLogger('confluence_exporter.converters.markdownconverter')
        self.config = config or {}
        self.macro_handler = MacroHandler(self.logger)
        self._factory = BeautifulSoup('', 'lxml')

    def convert(self, markup: Optional[str]) -> str:
        """
        Convert storage markup to Markdown.

        Args:
            markup: Storage-format page body

        Returns:
            Markdown text (empty for empty input)
        """
        if not markup or not markup.strip():
            return ''

        try:
            soup = self.preprocess(markup)
            markdown = self.convert_soup(soup)
            return self.post_process(markdown)
        except Exception as e:
            self.logger.error(f"Failed to convert HTML to Markdown: {e}", exc_info=True)
            return f"```html\n{markup}\n```\n\n{FAILED_CONVERSION_NOTE}"

    def preprocess(self, markup: str) -> BeautifulSoup:
        """
        Rewrite storage markup into plain HTML ready for markdownify.

        Args:
            markup: Storage-format page body

        Returns:
            Rewritten soup
        """
        # CDATA bodies become ordinary escaped text so every parser keeps them
        markup = CDATA_PATTERN.sub(lambda m: _escape_text(m.group(1)), markup)
        soup = BeautifulSoup(markup, 'html.parser')

        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

        self.macro_handler.convert(soup)
        self._process_tables(soup)
        self._process_code_panels(soup)
        self._process_images(soup)
        self._process_links(soup)
        self._process_status_macros(soup)
        self._process_panels(soup)
        return soup

    def _process_tables(self, soup: BeautifulSoup) -> None:
        for table in soup.find_all('table'):
            table['class'] = 'confluence-table'
            rows = table.find_all('tr')
            if len(rows) > 1 and table.find('th'):
                header_row = next((r for r in rows if r.find('th')), None)
                if header_row is not None:
                    header_row['class'] = 'table-header'

    def _process_code_panels(self, soup: BeautifulSoup) -> None:
        """Turn legacy ``div.code.panel`` blocks into ``pre > code``."""
        for div in soup.find_all('div', class_='code'):
            if 'panel' not in _classes(div):
                continue
            content = div.find('div', class_='codeContent')
            if content is None:
                continue

            code = self._factory.new_tag('code')
            language = self._brush_language(content.find('pre'))
            if language:
                code['class'] = f'language-{language}'
            code.string = content.get_text()

            pre = self._factory.new_tag('pre')
            pre.append(code)
            div.replace_with(pre)

    @staticmethod
    def _brush_language(pre: Optional[Tag]) -> Optional[str]:
        """Read the language from ``data-syntaxhighlighter-params="brush: java; ..."``."""
        if pre is None:
            return None
        for param in pre.get('data-syntaxhighlighter-params', '').split(';'):
            key, _, value = param.partition(':')
            if key.strip() == 'brush' and value.strip():
                brush = value.strip().lower()
                return BRUSH_LANGUAGES.get(brush, brush)
        return None

    def _process_images(self, soup: BeautifulSoup) -> None:
        # Storage-format images first so they pick up the src rewrite below
        for image in soup.find_all('ac:image'):
            img = self._factory.new_tag('img')
            attachment = image.find('ri:attachment')
            url = image.find('ri:url')
            if attachment is not None and attachment.get('ri:filename'):
                img['src'] = f"./assets/{sanitize_filename(attachment['ri:filename'])}"
            elif url is not None and url.get('ri:value'):
                img['src'] = url['ri:value']
            else:
                image.decompose()
                continue
            alt = image.get('ac:alt') or image.get('ac:title')
            if alt:
                img['alt'] = alt
            image.replace_with(img)

        for img in soup.find_all('img'):
            src = img.get('src', '')
            if src.startswith('/'):
                img['src'] = f'./assets/{asset_filename(src)}'

            title = img.get('title')
            if title and not img.get('alt'):
                img['alt'] = title

    def _process_links(self, soup: BeautifulSoup) -> None:
        for link in soup.find_all('a', href=True):
            match = PAGE_LINK_PATTERN.search(link['href'])
            if match:
                link['data-confluence-page-id'] = match.group(1)
                link['title'] = 'Confluence Page Link'

    def _process_status_macros(self, soup: BeautifulSoup) -> None:
        for status in soup.find_all('span', class_='status-macro'):
            badge = self._factory.new_tag('span')
            badge['class'] = f"badge badge-{status.get('data-colour') or 'grey'}"
            badge.string = status.get_text()
            status.replace_with(badge)

    def _process_panels(self, soup: BeautifulSoup) -> None:
        for panel in soup.find_all('div', class_='panel'):
            panel_type = next(
                (cls for cls in _classes(panel) if any(t in cls for t in PANEL_TYPES)),
                'info'
            )
            blockquote = self._factory.new_tag('blockquote')
            blockquote['class'] = f'panel-{panel_type}'
            for child in list(panel.contents):
                blockquote.append(child.extract())
            panel.replace_with(blockquote)

    def post_process(self, markdown: str) -> str:
        """
        Clean whitespace artifacts. Applying it twice changes nothing.

        Args:
            markdown: Raw markdownify output

        Returns:
            Cleaned Markdown
        """
        markdown = re.sub(r'^[ \t]+$', '', markdown, flags=re.MULTILINE)
        markdown = re.sub(r'\n{3,}', '\n\n', markdown)
        # Un-escaping can produce new bold-only lines, so it runs before the merge
        markdown = self._unescape_outside_code(markdown)
        markdown = BOLD_LINE_MERGE_PATTERN.sub(r'\1 ', markdown)
        return markdown.strip()

    @staticmethod
    def _unescape_outside_code(markdown: str) -> str:
        parts = FENCED_BLOCK_PATTERN.split(markdown)
        result = []
        # split() yields text, fenced block, fence marker, text, ...
        for index, part in enumerate(parts):
            position = index % 3
            if position == 0:
                result.append(STRAY_ESCAPE_PATTERN.sub(r'\1', part))
            elif position == 1:
                result.append(part)
        return ''.join(result)

    def convert_pre(self, el, text, parent_tags=None, **kwargs):
        """Render ``pre`` as a fenced block tagged with its language."""
        code_el = el.find('code')
        source = code_el if code_el is not None else el
        code_text = source.get_text().strip('\n')

        language = ''
        if code_el is not None:
            language = next((cls[len('language-'):] for cls in _classes(code_el)
                             if cls.startswith('language-')), '')

        fence = '```'
        while fence in code_text:
            fence += '`'
        return f"\n\n{fence}{language}\n{code_text}\n{fence}\n\n"

    def convert_code(self, el, text, parent_tags=None, **kwargs):
        """Handle inline code."""
        if el.parent is not None and el.parent.name == 'pre':
            return text
        if not text:
            return ''
        ticks = '``' if '`' in text else '`'
        return f"{ticks}{text}{ticks}"

    def convert_img(self, el, text, parent_tags=None, **kwargs):
        src = el.get('src', '')
        alt = el.get('alt', '') or el.get('title', '')
        return f'![{alt}]({src})'

    def convert_table(self, el, text, parent_tags=None, **kwargs):
        """Render a GitHub-flavored pipe table. The first row is the header."""
        rows = [row for row in el.find_all('tr') if row.find_parent('table') is el]
        if not rows:
            return ''

        table = [[self._get_cell_text(cell) for cell in row.find_all(['th', 'td'], recursive=False)]
                 for row in rows]
        table = [cells for cells in table if cells]
        if not table:
            return ''

        width = max(len(cells) for cells in table)
        lines = []
        for index, cells in enumerate(table):
            cells = cells + [''] * (width - len(cells))
            lines.append('| ' + ' | '.join(cells) + ' |')
            if index == 0:
                lines.append('| ' + ' | '.join('---' for _ in cells) + ' |')

        return '\n\n' + '\n'.join(lines) + '\n\n'

    def _get_cell_text(self, cell: Tag) -> str:
        """Flatten a table cell to a single line of inline Markdown."""

        def render(node) -> str:
            if isinstance(node, NavigableString):
                return re.sub(r'\s+', ' ', str(node))
            if not isinstance(node, Tag):
                return ''
            if node.name == 'br':
                return '<br>'

            inner = ''.join(render(child) for child in node.children)
            if node.name in ('strong', 'b'):
                return f'**{inner.strip()}**' if inner.strip() else ''
            if node.name in ('em', 'i'):
                return f'*{inner.strip()}*' if inner.strip() else ''
            if node.name == 'code':
                return f'`{node.get_text()}`'
            if node.name == 'a' and node.get('href'):
                return f"[{inner.strip()}]({node['href']})"
            if node.name == 'img':
                return self.convert_img(node, '')
            if node.name == 'pre':
                return '`' + node.get_text().strip('\n').replace('\n', '<br>') + '`'
            if node.name in ('p', 'div', 'li', 'blockquote', 'tr'):
                return inner.strip() + '<br>'
            return inner

        text = ''.join(render(child) for child in cell.children).strip()
        text = re.sub(r'(\s*<br>\s*)+$', '', text)
        return text.replace('|', '\\|')

    def convert_blockquote(self, el, text, parent_tags=None, **kwargs):
        text = text.strip()
        if not text:
            return ''

        quoted_lines = []
        for line in text.split('\n'):
            if line.startswith('>'):
                quoted_lines.append(f'>{line}')
            else:
                quoted_lines.append(f'> {line}' if line.strip() else '>')

        return '\n\n' + '\n'.join(quoted_lines) + '\n\n'

    def convert_div(self, el, text, parent_tags=None, **kwargs):
        return '\n\n' + text.strip() + '\n\n' if text.strip() else ''

    def convert_span(self, el, text, parent_tags=None, **kwargs):
        return text


def _classes(element: Tag):
    classes = element.get('class') or []
    if isinstance(classes, str):
        classes = classes.split()
    return classes


def _escape_text(text: str) -> str:
    return text.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')


__all__ = ['MarkdownConverter', 'FAILED_CONVERSION_NOTE']
