"""Depth-first discovery of a page and all of its descendants."""

import logging
from typing import List, Set


class HierarchyWalker:
    """
    Walks a page tree through a fetcher.

    The walk is iterative (explicit stack) so deep trees cannot hit the
    recursion limit, and every page id is visited at most once, which makes
    cycles and pages linked under several parents harmless.
    """

    def __init__(self, fetcher, logger: logging.Logger = None):
        """
        Args:
            fetcher: Object providing ``get_page`` and ``list_page_children`` coroutines
            logger: Optional logger instance
        """
        self.fetcher = fetcher
        self.logger = logger or logging.getLogger('confluence_exporter.hierarchy')

    async def walk(self, root_id: str) -> List:
        """
        Collect the root page and every transitive descendant.

        Args:
            root_id: ID of the root page

        Returns:
            Pages in depth-first pre-order with children in provider order,
            or an empty list if the root does not exist
        """
        root = await self.fetcher.get_page(root_id)
        if root is None:
            self.logger.warning(f"Root page {root_id} not found")
            return []

        visited: Set[str] = set()
        pages = []
        stack = [root]

        while stack:
            page = stack.pop()
            if page.id in visited:
                self.logger.debug(f"Skipping already visited page {page.id} ({page.title})")
                continue
            visited.add(page.id)
            pages.append(page)

            children = await self.fetcher.list_page_children(page.id)
            # Reversed so the first child is popped first
            stack.extend(reversed(children))

        self.logger.info(f"Discovered {len(pages)} pages under {root.title} ({root.id})")
        return pages


__all__ = ['HierarchyWalker']
