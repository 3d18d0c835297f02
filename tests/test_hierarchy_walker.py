"""Tests for depth-first hierarchy discovery."""

import unittest

from confluence_exporter.fetchers import HierarchyWalker

from fakes import FakeFetcher, make_page


class TestHierarchyWalker(unittest.IsolatedAsyncioTestCase):

    async def test_depth_first_preorder(self):
        pages = [
            make_page(1, 'Root'),
            make_page(2, 'A', ancestors=[(1, 'Root')]),
            make_page(3, 'A1', ancestors=[(1, 'Root'), (2, 'A')]),
            make_page(4, 'B', ancestors=[(1, 'Root')]),
        ]
        fetcher = FakeFetcher(pages=pages, children={'1': ['2', '4'], '2': ['3']})

        result = await HierarchyWalker(fetcher).walk('1')

        self.assertEqual([p.id for p in result], ['1', '2', '3', '4'])

    async def test_cycle_visits_each_page_once(self):
        pages = [make_page(1, 'Root'), make_page(2, 'Child'), make_page(3, 'Grandchild')]
        fetcher = FakeFetcher(pages=pages, children={'1': ['2'], '2': ['3'], '3': ['1', '2']})

        result = await HierarchyWalker(fetcher).walk('1')

        self.assertEqual([p.id for p in result], ['1', '2', '3'])
        self.assertEqual(sorted(fetcher.children_requests), ['1', '2', '3'])

    async def test_page_under_two_parents_appears_once(self):
        pages = [make_page(1, 'Root'), make_page(2, 'A'), make_page(3, 'B'), make_page(4, 'Shared')]
        fetcher = FakeFetcher(pages=pages, children={'1': ['2', '3'], '2': ['4'], '3': ['4']})

        result = await HierarchyWalker(fetcher).walk('1')

        self.assertEqual([p.id for p in result], ['1', '2', '4', '3'])

    async def test_missing_root_returns_empty(self):
        result = await HierarchyWalker(FakeFetcher()).walk('404')
        self.assertEqual(result, [])

    async def test_deep_tree_does_not_recurse(self):
        depth = 2000
        pages = [make_page(i, f'Level {i}') for i in range(depth)]
        children = {str(i): [str(i + 1)] for i in range(depth - 1)}
        fetcher = FakeFetcher(pages=pages, children=children)

        result = await HierarchyWalker(fetcher).walk('0')

        self.assertEqual(len(result), depth)

    async def test_fetcher_get_hierarchy(self):
        fetcher = FakeFetcher(pages=[make_page(1, 'Root'), make_page(2, 'Child')], children={'1': ['2']})
        result = await fetcher.get_hierarchy('1')
        self.assertEqual([p.title for p in result], ['Root', 'Child'])


if __name__ == '__main__':
    unittest.main()
