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

from dirshare.Kernel import PUBLIC_VERSION, Singleton, getLogger

# Per-directory access override file
SIDECAR_NAME = '.ghs.yml'

# Search results shown per query
MAX_SEARCH_RESULTS = 50

# Hops followed when folding single-child directory chains
MAX_FOLD_DEPTH = 5

# Chunk size used for streaming archives and archive members (64 KiB)
TRANSFER_CHUNK_SIZE = int(os.getenv('TRANSFER_CHUNK_SIZE', 64 * 1024))

DEFAULT_TITLE = 'DirShare'
DEFAULT_ADDRESS = '0.0.0.0'
DEFAULT_PORT = 8000

# Seconds between two search index builds, and before the first one
DEFAULT_INDEX_INTERVAL = 10 * 60
DEFAULT_INDEX_DELAY = 1

# Header set by an authenticating reverse proxy
DEFAULT_IDENTITY_HEADER = 'X-Forwarded-Email'

logger = getLogger(__name__)


# Singleton
class SettingsGetter(Singleton):

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            raise RuntimeError('Get SettingsGetter before initialized it.')
        return cls._instances[cls]

    def initialize(
        self,
        root='.',
        upload=False,
        delete=False,
        title=DEFAULT_TITLE,
        indexInterval=DEFAULT_INDEX_INTERVAL,
        indexDelay=DEFAULT_INDEX_DELAY,
        identityHeader=None,
        sidecarName=SIDECAR_NAME,
    ):
        """Initialize the process-wide defaults every request falls back to."""
        self._root = os.path.abspath(root)
        self._upload = bool(upload)
        self._delete = bool(delete)
        self._title = title
        self._indexInterval = float(indexInterval)
        self._indexDelay = float(indexDelay)
        self._identityHeader = identityHeader
        self._sidecarName = sidecarName

        logger.debug(
            f'Settings initialized: root={self._root}, upload={self._upload}, delete={self._delete}, '
            f'indexInterval={self._indexInterval}'
        )

    @property
    def root(self):
        return self._root

    @property
    def upload(self) -> bool:
        return self._upload

    @property
    def delete(self) -> bool:
        return self._delete

    @property
    def title(self):
        return self._title

    @property
    def indexInterval(self) -> float:
        return self._indexInterval

    @property
    def indexDelay(self) -> float:
        return self._indexDelay

    @property
    def identityHeader(self):
        return self._identityHeader

    @property
    def sidecarName(self):
        return self._sidecarName

    def toDict(self):
        """Public view of the settings, as served by /-/status"""
        return {
            'version': PUBLIC_VERSION,
            'root': self._root,
            'upload': self._upload,
            'delete': self._delete,
            'title': self._title,
            'indexInterval': self._indexInterval,
            'identityHeader': self._identityHeader,
        }
