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
"""
Directory listing view.

A listing is either the live children of a directory or the search results below
it. Entries hidden by the directory's access tables are dropped, and a directory
whose only child is another directory is shown as one folded entry ('a/b/c').
"""

import posixpath

from dataclasses import dataclass
from typing import List, Optional

from dirshare.Errors import NotFoundError, StreamError
from dirshare.FileSystems import Stat, normRequestPath, joinRequestPath
from dirshare.Kernel import getLogger
from dirshare.Settings import MAX_SEARCH_RESULTS, MAX_FOLD_DEPTH

logger = getLogger(__name__)

FILE_KIND = 'file'
DIRECTORY_KIND = 'dir'

# Directories report no size
DIRECTORY_SIZE = -1


@dataclass(frozen=True)
class ListingEntry:
    name: str
    path: str
    kind: str
    size: int
    modTimeMillis: int

    @property
    def isDirectory(self) -> bool:
        return self.kind == DIRECTORY_KIND

    def toDict(self):
        return {
            'name': self.name,
            'path': self.path,
            'type': self.kind,
            'size': self.size,
            'mtime': self.modTimeMillis,
        }


def isUnder(path: str, directory: str) -> bool:
    """True if path is directory itself or lies below it; '' is the root"""
    if not directory:
        return True
    return path == directory or path.startswith(directory + '/')


class ListingAggregator:

    def __init__(
        self, fileSystem, authorizer, searchIndex, maxResults=MAX_SEARCH_RESULTS, maxFoldDepth=MAX_FOLD_DEPTH
    ):
        self.fileSystem = fileSystem
        self.authorizer = authorizer
        self.searchIndex = searchIndex
        self.maxResults = maxResults
        self.maxFoldDepth = maxFoldDepth

    def list(self, requestPath: str, query: Optional[str], policy) -> List[ListingEntry]:
        """
        List a directory, or search below it when query is non-empty.

        A query of only whitespace has no tokens and matches every indexed file below
        requestPath.

        Args:
            requestPath: Directory to list, relative to the share root
            query: Search query; '' or None lists the directory itself
            policy: AccessPolicy resolved for requestPath

        Raises:
            NotFoundError: requestPath is missing or not a directory (listing only)
            StreamError: requestPath can't be read (listing only)
        """
        directory = normRequestPath(requestPath)

        if query:
            return self._listSearchResults(directory, query, policy)

        return self._listDirectory(directory, policy)

    def _listDirectory(self, directory, policy):
        localPath = self.fileSystem.localPath(directory)

        try:
            children = self.fileSystem.listDir(localPath)
        except FileNotFoundError:
            raise NotFoundError(f"No such directory: /{directory}", path=directory)
        except NotADirectoryError:
            raise NotFoundError(f"Not a directory: /{directory}", path=directory)
        except OSError as e:
            raise StreamError(f"Can't list /{directory}: {e}", path=directory)

        entries = []
        for name, stat in children:
            if not self.authorizer.canAccess(policy, name):
                continue

            entries.append(self._makeEntry(name, joinRequestPath(directory, name), stat))
        return entries

    def _listSearchResults(self, directory, query, policy):
        entries = []
        for match in self.searchIndex.search(query):
            if len(entries) >= self.maxResults:
                break

            if not isUnder(match.relativePath, directory):
                continue

            if not self.authorizer.canAccess(policy, posixpath.basename(match.relativePath)):
                continue

            name = posixpath.relpath(match.relativePath, directory) if directory else match.relativePath
            stat = Stat(size=match.size, mtime=match.modTime, isDir=match.isDirectory)
            entries.append(self._makeEntry(name, match.relativePath, stat))
        return entries

    def _makeEntry(self, name, path, stat: Stat) -> ListingEntry:
        modTimeMillis = int(stat.mtime * 1000) if stat.mtime is not None else 0

        if not stat.isDir:
            return ListingEntry(name=name, path=path, kind=FILE_KIND, size=stat.size, modTimeMillis=modTimeMillis)

        folded = self.foldChain(path)
        if folded:
            suffix = '/'.join(folded)
            name = f'{name}/{suffix}'
            path = f'{path}/{suffix}'

        return ListingEntry(
            name=name, path=path, kind=DIRECTORY_KIND, size=DIRECTORY_SIZE, modTimeMillis=modTimeMillis
        )

    def foldChain(self, path: str) -> List[str]:
        """
        Names of the single-child directories below path, outermost first.

        Stops after maxFoldDepth hops, on a read error, or at a directory with zero
        or several children or whose only child is a file.
        """
        folded = []
        current = path

        for _ in range(self.maxFoldDepth):
            try:
                children = self.fileSystem.listDir(self.fileSystem.localPath(current))
            except OSError as e:
                logger.debug(f"Stop folding at /{current}: {e}")
                break

            if len(children) != 1:
                break

            childName, childStat = children[0]
            if not childStat.isDir:
                break

            folded.append(childName)
            current = joinRequestPath(current, childName)

        return folded

    def describe(self, requestPath: str, query: Optional[str], identity: Optional[str] = None):
        """
        The JSON listing body: entries plus the policy as it applies to this caller,
        so the displayed affordances match what upload/delete will enforce.
        """
        policy = self.authorizer.resolve(requestPath)
        entries = self.list(requestPath, query, policy)

        return {
            'files': [entry.toDict() for entry in entries],
            'auth': self.authorizer.forCaller(policy, identity).toDict(),
        }
