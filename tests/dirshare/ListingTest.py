#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# DirShare - Self-hosted directory sharing over HTTP
# Copyright (C) 2024-2025 DirShare contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
import unittest

from ..ShareTestBase import ShareTestBase

from dirshare.Access import PathAuthorizer
from dirshare.Errors import NotFoundError
from dirshare.FileSystems import LocalFileSystem
from dirshare.Index import SearchIndex
from dirshare.Listing import DIRECTORY_KIND, DIRECTORY_SIZE, FILE_KIND, ListingAggregator, isUnder


class ListingAggregatorTest(ShareTestBase):

    def setUp(self):
        super().setUp()
        self.fileSystem = LocalFileSystem(self.root)
        self.authorizer = PathAuthorizer(self.fileSystem)
        self.index = SearchIndex(self.fileSystem, interval=3600, delay=0)
        self.aggregator = ListingAggregator(self.fileSystem, self.authorizer, self.index)

    def _list(self, path='', query=None):
        return self.aggregator.list(path, query, self.authorizer.resolve(path))

    def _names(self, entries):
        return [entry.name for entry in entries]

    def testListsChildrenSortedByName(self):
        self.writeFile('b.txt', b'12345')
        self.writeFile('a.txt', b'1')
        self.writeFile('dir/x.txt', b'')
        self.writeFile('dir/y.txt', b'')

        entries = self._list()
        self.assertEqual(self._names(entries), ['a.txt', 'b.txt', 'dir'])

        fileEntry, _, dirEntry = entries
        self.assertEqual(fileEntry.kind, FILE_KIND)
        self.assertEqual(fileEntry.size, 1)
        self.assertEqual(fileEntry.path, 'a.txt')
        self.assertEqual(fileEntry.modTimeMillis, int(os.stat(self.localPath('a.txt')).st_mtime * 1000))

        self.assertTrue(dirEntry.isDirectory)
        self.assertEqual(dirEntry.kind, DIRECTORY_KIND)
        self.assertEqual(dirEntry.size, DIRECTORY_SIZE)

    def testNestedDirectoryPaths(self):
        self.writeFile('docs/a.txt', b'')
        self.writeFile('docs/b.txt', b'')

        entries = self._list('/docs/')
        self.assertEqual([entry.path for entry in entries], ['docs/a.txt', 'docs/b.txt'])

    def testFoldsSingleChildDirectoryChain(self):
        self.writeFile('a/b/c/one.txt', b'1')
        self.writeFile('a/b/c/two.txt', b'2')

        entries = self._list()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].name, 'a/b/c')
        self.assertEqual(entries[0].path, 'a/b/c')
        self.assertEqual(entries[0].kind, DIRECTORY_KIND)

    def testFoldingStopsAtFile(self):
        self.writeFile('a/only.txt', b'1')
        self.makeDirs('empty')

        self.assertEqual(self._names(self._list()), ['a', 'empty'])
        self.assertEqual(self.aggregator.foldChain('a'), [])
        self.assertEqual(self.aggregator.foldChain('empty'), [])

    def testFoldingStopsAtSeveralChildren(self):
        self.makeDirs('a/b/c1')
        self.makeDirs('a/b/c2')

        self.assertEqual(self.aggregator.foldChain('a'), ['b'])
        self.assertEqual(self._names(self._list()), ['a/b'])

    def testFoldingDepthIsBounded(self):
        self.makeDirs('d1/d2/d3/d4/d5/d6/d7/d8')

        self.assertEqual(self.aggregator.foldChain('d1'), ['d2', 'd3', 'd4', 'd5', 'd6'])
        self.assertEqual(self._names(self._list()), ['d1/d2/d3/d4/d5/d6'])

        shallow = ListingAggregator(self.fileSystem, self.authorizer, self.index, maxFoldDepth=2)
        self.assertEqual(shallow.foldChain('d1'), ['d2', 'd3'])

    def testAccessTablesHideEntries(self):
        self.writeSidecar('', "accessTables:\n  - regex: '\\.secret$'\n    allow: false\n")
        self.writeFile('a.secret', b'hidden')
        self.writeFile('b.txt', b'shown')

        names = self._names(self._list())
        self.assertIn('b.txt', names)
        self.assertNotIn('a.secret', names)

    def testMissingDirectoryRaisesNotFound(self):
        self.writeFile('file.txt', b'')

        with self.assertRaises(NotFoundError):
            self._list('missing')

        with self.assertRaises(NotFoundError):
            self._list('file.txt')

    def testWhitespaceQuerySearchesEverything(self):
        self.writeFile('top.txt', b'')
        self.writeFile('docs/a.txt', b'')
        for i in range(60):
            self.writeFile(f'docs/many/f{i:02d}.txt', b'')
        self.index.rebuild()

        # No tokens: every indexed file below the path matches, not the live listing
        entries = self._list('', '   ')
        self.assertEqual(len(entries), 50)
        self.assertEqual(entries[0].path, 'top.txt')
        self.assertEqual(entries[1].path, 'docs/a.txt')
        self.assertNotIn('docs', self._names(entries))

        entries = self._list('docs', ' ')
        self.assertEqual(entries[0].name, 'a.txt')
        self.assertTrue(all(entry.path.startswith('docs/') for entry in entries))

        # An empty query still lists the directory
        self.assertEqual(self._names(self._list('', '')), ['docs', 'top.txt'])

    def testSearchResultsAreCapped(self):
        for i in range(80):
            self.writeFile(f'bulk/match{i:02d}.txt', b'x')
        self.index.rebuild()

        entries = self._list('', 'match')
        self.assertEqual(len(entries), 50)
        self.assertEqual(entries[0].path, 'bulk/match00.txt')
        self.assertEqual(entries[0].name, 'bulk/match00.txt')

    def testSearchCapAppliesAfterAccessFilter(self):
        self.writeSidecar('', "accessTables:\n  - regex: '^hidden'\n    allow: false\n")
        for i in range(10):
            self.writeFile(f'a/hidden{i}.log', b'x')
        for i in range(5):
            self.writeFile(f'b/shown{i}.log', b'x')
        self.index.rebuild()

        aggregator = ListingAggregator(self.fileSystem, self.authorizer, self.index, maxResults=5)
        entries = aggregator.list('', '.log', self.authorizer.resolve(''))
        self.assertEqual(self._names(entries), [f'b/shown{i}.log' for i in range(5)])

    def testSearchIsLimitedToDirectory(self):
        self.writeFile('docs/a.txt', b'')
        self.writeFile('docs2/a.txt', b'')
        self.writeFile('other/a.txt', b'')
        self.index.rebuild()

        entries = self._list('docs', 'a.txt')
        self.assertEqual([entry.path for entry in entries], ['docs/a.txt'])
        self.assertEqual(self._names(entries), ['a.txt'])
        self.assertEqual(entries[0].kind, FILE_KIND)

    def testSearchHonoursAccessTables(self):
        self.writeSidecar('', "accessTables:\n  - regex: '\\.secret$'\n    allow: false\n")
        self.writeFile('x/a.secret', b'')
        self.writeFile('x/a.txt', b'')
        self.index.rebuild()

        self.assertEqual(self._names(self._list('', 'a.')), ['x/a.txt'])

    def testDescribe(self):
        self.writeSidecar(
            '', 'upload: false\n'
            'users:\n'
            '  - email: alice@example.com\n'
            '    upload: true\n'
        )
        self.writeFile('a.txt', b'abc')

        anonymous = self.aggregator.describe('', None)
        self.assertFalse(anonymous['auth']['upload'])
        self.assertEqual(
            anonymous['files'][1], {
                'name': 'a.txt',
                'path': 'a.txt',
                'type': 'file',
                'size': 3,
                'mtime': int(os.stat(self.localPath('a.txt')).st_mtime * 1000),
            }
        )

        alice = self.aggregator.describe('', None, 'alice@example.com')
        self.assertTrue(alice['auth']['upload'])
        self.assertFalse(alice['auth']['delete'])
        self.assertEqual(alice['auth']['users'], [{'identity': 'alice@example.com', 'upload': True, 'delete': False}])


class IsUnderTest(unittest.TestCase):

    def testDirectoryBoundaries(self):
        self.assertTrue(isUnder('docs/a.txt', 'docs'))
        self.assertTrue(isUnder('docs', 'docs'))
        self.assertTrue(isUnder('anything/at/all', ''))
        self.assertFalse(isUnder('docs2/a.txt', 'docs'))
        self.assertFalse(isUnder('doc', 'docs'))


if __name__ == '__main__':
    unittest.main()
