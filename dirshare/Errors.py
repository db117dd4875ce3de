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
Error taxonomy shared by the access resolver, the search index, the listing
aggregator, the archive streamer and the HTTP layer.

Every error carries the HTTP status the server answers with, so that forbidden,
not-found and server-error conditions stay distinguishable for clients.
"""

from http import HTTPStatus


class ShareError(Exception):
    """Base class for all DirShare errors"""

    statusCode = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message, path=None):
        super().__init__(message)
        self.path = path


class ConfigParseError(ShareError):
    """A sidecar file exists but cannot be read or parsed. Never surfaced to clients."""
    pass


class NotFoundError(ShareError):
    """Missing file, directory, archive or archive member (404)"""
    statusCode = HTTPStatus.NOT_FOUND


class AccessDeniedError(ShareError):
    """The resolved policy forbids the requested operation (403)"""
    statusCode = HTTPStatus.FORBIDDEN


class BadRequestError(ShareError):
    """Malformed request, e.g. an upload without multipart file parts (400)"""
    statusCode = HTTPStatus.BAD_REQUEST


class StreamError(ShareError):
    """I/O failure while streaming; the current operation is aborted and never retried"""
    pass


class ArchiveReadError(ShareError):
    """Corrupt or unreadable archive data"""
    pass


class WalkError(ShareError):
    """An entry could not be visited while walking a tree"""
    pass
