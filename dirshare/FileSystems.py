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
Local filesystem access for the share root.

Request paths are slash-separated and relative to the share root. They are
normalized here once, so nothing built on LocalFileSystem can reach outside
the root through '..' segments.
"""

import os
import posixpath
import stat as _stat

from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Optional, Tuple

from dirshare.Kernel import getLogger

logger = getLogger(__name__)


@dataclass(frozen=True)
class Stat:
    """File/directory metadata"""
    size: int
    mtime: Optional[float]
    isDir: bool


def normRequestPath(path: str) -> str:
    """
    Clean a request path into the root-relative form used everywhere else.

    '', '.', '/' all become '' (the root). Leading slashes are dropped and '..'
    can never climb above the root.

    Examples:
        '/a//b/../c/' -> 'a/c'
        '../../etc'   -> 'etc'
    """
    if not path:
        return ''

    path = path.replace('\\', '/')
    cleaned = posixpath.normpath('/' + path).lstrip('/')
    return '' if cleaned == '.' else cleaned


def joinRequestPath(parent: str, name: str) -> str:
    """Join two root-relative paths without introducing a leading slash"""
    if not parent:
        return name
    return f'{parent}/{name}'


def parentRequestPath(path: str) -> str:
    """Parent of a root-relative path; the root is its own parent"""
    return posixpath.dirname(path)


class LocalFileSystem:
    """
    Local filesystem backend.

    Wraps os.* calls and maps root-relative request paths onto the directory
    being shared.
    """

    def __init__(self, root: str):
        """
        Args:
            root: Absolute or relative path to the shared directory
        """
        self.root = os.path.abspath(root)

        logger.debug(f"LocalFileSystem initialized: {self.root}")

    @property
    def rootName(self) -> str:
        return os.path.basename(self.root.rstrip(os.sep)) or "folder"

    def localPath(self, requestPath: str) -> str:
        """Absolute local path of a request path"""
        relPath = normRequestPath(requestPath)
        if not relPath:
            return self.root
        return os.path.join(self.root, *relPath.split('/'))

    def relPath(self, localPath: str) -> str:
        """Root-relative, slash-separated form of an absolute local path"""
        rel = os.path.relpath(localPath, self.root)
        if rel == '.':
            return ''
        return rel.replace(os.sep, '/')

    def walk(self, top: str, onerror=None) -> Iterable[Tuple[str, List[str], List[str]]]:
        """
        Walk directory tree of a local path.

        Yields:
            (dirpath, dirnames, filenames) tuples
        """
        yield from os.walk(top, onerror=onerror)

    def stat(self, localPath: str) -> Stat:
        # A single stat() call; os.path.isdir() would issue another one
        st = os.stat(localPath)
        isDir = _stat.S_ISDIR(st.st_mode)
        return Stat(size=int(st.st_size), mtime=float(st.st_mtime), isDir=isDir)

    def listDir(self, localPath: str) -> List[Tuple[str, Stat]]:
        """
        List the immediate children of a directory with their metadata.

        Children that vanish or can't be stat'ed between listing and stat are skipped.

        Raises:
            OSError: if the directory itself can't be listed
        """
        entries = []
        with os.scandir(localPath) as it:
            for entry in it:
                try:
                    st = entry.stat()
                except OSError as e:
                    logger.debug(f"Skipping entry {entry.name}: {e}")
                    continue

                isDir = _stat.S_ISDIR(st.st_mode)
                size = 0 if isDir else int(st.st_size)
                entries.append((entry.name, Stat(size=size, mtime=float(st.st_mtime), isDir=isDir)))

        entries.sort(key=lambda e: e[0])
        return entries

    def childNames(self, localPath: str) -> List[str]:
        with os.scandir(localPath) as it:
            return [entry.name for entry in it]

    def open(self, localPath: str) -> BinaryIO:
        return open(localPath, "rb")

    def readBytes(self, localPath: str) -> bytes:
        with open(localPath, "rb") as f:
            return f.read()

    def exists(self, localPath: str) -> bool:
        return os.path.exists(localPath)

    def isFile(self, localPath: str) -> bool:
        return os.path.isfile(localPath)

    def isDir(self, localPath: str) -> bool:
        return os.path.isdir(localPath)

    def remove(self, localPath: str):
        """
        Remove a file, a symlink or an empty directory.

        Raises:
            OSError: e.g. FileNotFoundError, or ENOTEMPTY for a non-empty directory
        """
        if os.path.isdir(localPath) and not os.path.islink(localPath):
            os.rmdir(localPath)
        else:
            os.remove(localPath)
