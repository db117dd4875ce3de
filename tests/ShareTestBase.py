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
import shutil
import tempfile
import threading
import unittest

import requests

from dirshare.Server import createServer
from dirshare.Settings import SettingsGetter


# ---------------------------
# Base test classes
# ---------------------------
class ShareTestBase(unittest.TestCase):
    """Base class providing a scratch share root"""

    def setUp(self):
        self.root = tempfile.mkdtemp(prefix='dirshare-test-')

    def tearDown(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def localPath(self, relPath):
        return os.path.join(self.root, *relPath.split('/')) if relPath else self.root

    def makeDirs(self, relPath):
        path = self.localPath(relPath)
        os.makedirs(path, exist_ok=True)
        return path

    def writeFile(self, relPath, data=b''):
        path = self.localPath(relPath)
        os.makedirs(os.path.dirname(path), exist_ok=True)

        if isinstance(data, str):
            data = data.encode('utf-8')

        with open(path, 'wb') as f:
            f.write(data)
        return path

    def writeSidecar(self, relDir, text):
        return self.writeFile(f'{relDir}/.ghs.yml' if relDir else '.ghs.yml', text)


class ServerTestBase(ShareTestBase):
    """Runs a real server on an ephemeral port for the duration of each test"""

    defaultUpload = False
    defaultDelete = False
    identityHeader = 'X-Forwarded-Email'

    def setUp(self):
        super().setUp()

        SettingsGetter.resetInstance()
        self.settings = SettingsGetter(
            root=self.root,
            upload=self.defaultUpload,
            delete=self.defaultDelete,
            title='Test Share',
            indexInterval=3600,
            indexDelay=0,
            identityHeader=self.identityHeader,
        )

        self.server = createServer(0, self.settings, address='127.0.0.1')
        self.serverThread = threading.Thread(
            target=self.server.serve_forever, kwargs={'poll_interval': 0.1}, daemon=True
        )
        self.serverThread.start()

        host, port = self.server.server_address[:2]
        self.baseURL = f'http://{host}:{port}'
        self.session = requests.Session()

    def tearDown(self):
        self.session.close()

        self.server.shutdown()
        self.server.server_close()
        self.serverThread.join(timeout=5)

        SettingsGetter.resetInstance()
        super().tearDown()

    def url(self, path):
        return f'{self.baseURL}/{path.lstrip("/")}'

    def get(self, path, **kwargs):
        kwargs.setdefault('timeout', 10)
        return self.session.get(self.url(path), **kwargs)

    def buildIndex(self):
        return self.server.searchIndex.rebuild()
