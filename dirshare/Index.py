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
Background search index over every file below the share root.

A daemon thread rebuilds the whole index shortly after start and then on a fixed
interval. An upload or delete through the server cuts the current wait short.
Each build produces a new IndexSnapshot off to the side; publishing it is a
single reference assignment, so a reader sees exactly one complete generation
and never needs a lock.
"""

import os
import threading
import time

from dataclasses import dataclass
from typing import Optional, Tuple

from dirshare.Errors import WalkError
from dirshare.Kernel import getLogger, ShareEvent
from dirshare.Settings import DEFAULT_INDEX_INTERVAL, DEFAULT_INDEX_DELAY
from dirshare.Utils import formatSize

logger = getLogger(__name__)


@dataclass(frozen=True)
class IndexEntry:
    relativePath: str # Slash-separated, relative to the share root
    size: int
    isDirectory: bool
    modTime: float


@dataclass(frozen=True)
class IndexSnapshot:
    entries: Tuple[IndexEntry, ...] = ()
    generation: int = 0
    builtAt: Optional[float] = None

    def __len__(self):
        return len(self.entries)


def parseQuery(query: str) -> Tuple[Tuple[str, bool], ...]:
    """
    Split a search query into (lowercased token, mustContain) pairs.

    Tokens are separated by whitespace; a leading '-' negates a token. Tokens that
    are empty after removing the '-' are dropped.
    """
    tokens = []
    for word in query.split():
        mustContain = True
        if word.startswith('-'):
            mustContain = False
            word = word[1:]

        if not word:
            continue

        tokens.append((word.lower(), mustContain))
    return tuple(tokens)


def matchesQuery(path: str, tokens) -> bool:
    lowered = path.lower()
    for token, mustContain in tokens:
        if (token in lowered) != mustContain:
            return False
    return True


class SearchIndex:

    def __init__(self, fileSystem, interval=DEFAULT_INDEX_INTERVAL, delay=DEFAULT_INDEX_DELAY):
        """
        Args:
            fileSystem: LocalFileSystem of the share root
            interval: Seconds between the end of one build and the start of the next
            delay: Seconds before the first build
        """
        self.fileSystem = fileSystem
        self.interval = interval
        self.delay = delay

        self._snapshot = IndexSnapshot()
        self._buildLock = threading.Lock() # Single writer
        self._stopEvent = threading.Event()
        self._wakeEvent = threading.Event() # Set by stop() and by tree changes
        self._thread = None

    @classmethod
    def fromSettings(cls, settingsGetter, fileSystem):
        return cls(fileSystem, interval=settingsGetter.indexInterval, delay=settingsGetter.indexDelay)

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def search(self, query: str) -> Tuple[IndexEntry, ...]:
        """
        Entries whose path satisfies every token of the query, in snapshot order.

        The result is not capped; callers apply their own limits.
        """
        tokens = parseQuery(query)
        snapshot = self._snapshot # Read the reference once
        return tuple(entry for entry in snapshot.entries if matchesQuery(entry.relativePath, tokens))

    def _walk(self):
        """
        Collect an IndexEntry for every file below the root.

        Unreadable subtrees are logged and skipped.

        Raises:
            WalkError: if the root itself can't be listed
        """
        root = self.fileSystem.root
        entries = []
        rootErrors = []

        def onError(error):
            if os.path.abspath(error.filename or '') == root:
                rootErrors.append(error)
            else:
                logger.warning(f"Skipping {error.filename!r} while indexing: {error}")

        for dirPath, dirNames, fileNames in self.fileSystem.walk(root, onerror=onError):
            dirNames.sort()
            fileNames.sort()

            for fileName in fileNames:
                filePath = os.path.join(dirPath, fileName)
                try:
                    st = self.fileSystem.stat(filePath)
                except OSError as e:
                    logger.warning(f"Skipping {filePath!r} while indexing: {e}")
                    continue

                if st.isDir:
                    continue

                entries.append(
                    IndexEntry(
                        relativePath=self.fileSystem.relPath(filePath),
                        size=st.size,
                        isDirectory=False,
                        modTime=st.mtime,
                    )
                )

        if rootErrors:
            raise WalkError(f"Can't walk share root: {rootErrors[0]}", path=root)

        return entries

    def rebuild(self) -> IndexSnapshot:
        """
        Build a complete snapshot and publish it.

        Raises:
            WalkError: if the root can't be walked; the previous snapshot stays published
        """
        with self._buildLock:
            startTime = time.time()
            logger.info("Started making search index")

            entries = self._walk()

            snapshot = IndexSnapshot(
                entries=tuple(entries),
                generation=self._snapshot.generation + 1,
                builtAt=time.time(),
            )
            self._snapshot = snapshot

            totalSize = sum(entry.size for entry in entries)
            logger.info(
                f"Completed search index generation {snapshot.generation} with {len(entries)} files "
                f"({formatSize(totalSize)}) in {time.time() - startTime:.2f}s"
            )

        ShareEvent.indexPublished.trigger(sender=self, snapshot=snapshot)
        return snapshot

    def requestRebuild(self):
        """
        Ask the background thread to rebuild now instead of waiting out the interval.
        Requests that arrive during a build are folded into one follow-up build.
        """
        self._wakeEvent.set()

    def _onTreeChanged(self, **kwargs):
        logger.debug(f"Share tree changed at {kwargs.get('path')!r}, rebuilding search index")
        self.requestRebuild()

    def _run(self):
        if self._stopEvent.wait(self.delay):
            return

        while not self._stopEvent.is_set():
            self._wakeEvent.clear()
            try:
                self.rebuild()
            except WalkError as e:
                logger.error(f"Search index build failed, keeping generation {self._snapshot.generation}: {e}")
            except Exception as e:
                logger.exception(e)

            self._wakeEvent.wait(self.interval)

    def start(self):
        """
        Start the periodic rebuild thread and follow uploads and deletes.

        Raises:
            RuntimeError: If already started
        """
        if self._thread is not None:
            raise RuntimeError("SearchIndex already started")

        self._stopEvent.clear()
        self._wakeEvent.clear()

        ShareEvent.fileUploaded.subscribe(self._onTreeChanged)
        ShareEvent.fileDeleted.subscribe(self._onTreeChanged)

        self._thread = threading.Thread(target=self._run, name='SearchIndex', daemon=True)
        self._thread.start()

    def stop(self, timeout=5.0):
        if self._thread is None:
            return

        ShareEvent.fileUploaded.unsubscribe(self._onTreeChanged)
        ShareEvent.fileDeleted.unsubscribe(self._onTreeChanged)

        self._stopEvent.set()
        self._wakeEvent.set()
        self._thread.join(timeout=timeout)
        self._thread = None

        logger.debug("SearchIndex stopped")
