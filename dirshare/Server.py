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

import errno
import html
import json
import mimetypes
import os
import posixpath
import unicodedata

from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, quote, unquote, urlparse

from werkzeug.formparser import parse_form_data
from werkzeug.utils import secure_filename

from dirshare.Access import (
    AnonymousIdentityProvider, HeaderIdentityProvider, IdentityProvider, PathAuthorizer, PatternCache
)
from dirshare.Archive import ArchiveStreamer
from dirshare.Errors import AccessDeniedError, BadRequestError, NotFoundError, ShareError, StreamError
from dirshare.FileSystems import LocalFileSystem, joinRequestPath, normRequestPath, parentRequestPath
from dirshare.Index import SearchIndex
from dirshare.Kernel import PUBLIC_VERSION, ShareEvent, getLogger
from dirshare.Listing import ListingAggregator
from dirshare.Settings import DEFAULT_ADDRESS, TRANSFER_CHUNK_SIZE, SettingsGetter
from dirshare.Utils import flushPrint, formatSize

logger = getLogger(__name__)

# Unread upload bodies up to this size are drained before an error reply
MAX_DISCARDED_BODY = 1024 * 1024


def contentDisposition(fileName):
    """
    Content-Disposition value for a download.

    ASCII names go out as a quoted string. Other names get an ASCII fallback plus
    the UTF-8 name in filename* (RFC 6266).
    """
    escaped = fileName.replace('\\', '\\\\').replace('"', '\\"')
    if escaped.isascii():
        return f'attachment; filename="{escaped}"'

    fallback = escaped.encode('ascii', 'replace').decode('ascii')
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(fileName, safe='')}"


def uploadFileName(rawName):
    """
    Name an uploaded part is saved under, or '' if the client name is unusable.

    Only the last path component is kept and leading dots are dropped, so a part
    can neither leave the target directory nor create a hidden file. ASCII names
    go through secure_filename; non-ASCII names are kept as typed.
    """
    name = posixpath.basename((rawName or '').replace('\\', '/'))
    name = unicodedata.normalize('NFC', name).strip().lstrip('.')

    if not name.isprintable():
        return ''

    if name.isascii():
        return secure_filename(name)
    return name


LISTING_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ title }} - /{{ path }}</title>
</head>
<body>
<h1>{{ title }}</h1>
<h2>/{{ path }}</h2>
<form method="get" action="{{ action }}">
<input type="text" name="search" value="{{ search }}" placeholder="Search below this folder">
<input type="submit" value="Search">
</form>
{{ uploadForm }}
<table>
<thead><tr><th>Name</th><th>Size</th><th>Modified</th></tr></thead>
<tbody>
{{ rows }}
</tbody>
</table>
</body>
</html>
'''

UPLOAD_FORM = '''<form method="post" action="{{ action }}" enctype="multipart/form-data">
<input type="file" name="file" multiple>
<input type="submit" value="Upload">
</form>'''


class _ResponseSink:
    """
    Writable handed to ArchiveStreamer.

    The status line and headers go out with the first chunk, so errors raised
    before any byte is produced are still answered with a proper status code.
    """

    def __init__(self, handler, headers):
        self.handler = handler
        self.headers = headers
        self.started = False

    def _start(self):
        if self.started:
            return

        self.started = True
        self.handler.send_response(HTTPStatus.OK)
        for key, value in self.headers:
            self.handler.send_header(key, value)

        # No Content-Length, the body ends with the connection
        self.handler.send_header('Connection', 'close')
        self.handler.end_headers()

    def write(self, data):
        self._start()
        self.handler.wfile.write(data)
        return len(data)

    def flush(self):
        self.handler.wfile.flush()

    def finish(self):
        """Send the headers even if nothing was written, e.g. an empty member"""
        self._start()


class ShareHandler(SimpleHTTPRequestHandler):

    protocol_version = 'HTTP/1.1'
    server_version = f'DirShare/{PUBLIC_VERSION}'

    def __init__(self, request, clientAddress, server):
        # Prefix routes of GET; everything else is a file or directory below the root
        self.getPathMap = (
            ('/-/status/', self._handleStatus),
            ('/-/json/', self._handleJSONList),
            ('/-/zip/', self._handleZip),
            ('/-/unzip/', self._handleUnzip),
            ('/-/info/', self._handleInfo),
        )

        self.extraHeaders = []
        self.responseStarted = False
        self.bodyConsumed = False

        super().__init__(request, clientAddress, server, directory=server.fileSystem.root)

    def _prepareRequest(self):
        self.extraHeaders = []
        self.responseStarted = False
        self.bodyConsumed = False

        parsedURL = urlparse(self.path)
        return unquote(parsedURL.path), parse_qs(parsedURL.query)

    def _route(self, path):
        for prefix, handler in self.getPathMap:
            if path == prefix.rstrip('/') or path.startswith(prefix):
                return handler, path[len(prefix):]
        return None, path

    def _handleRequest(self, handler, *args):
        try:
            handler(*args)
        except ShareError as e:
            self._sendShareError(e)
        except (ConnectionError, BrokenPipeError) as e:
            logger.debug(f"Client {self.client_address[0]} went away: {e}")
            self.close_connection = True
        except Exception as e:
            logger.exception(e)
            if self.responseStarted:
                self.close_connection = True
            else:
                self._sendText(HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

    def _sendShareError(self, error):
        if error.statusCode >= HTTPStatus.INTERNAL_SERVER_ERROR:
            logger.error(f"{self.command} {self.path} failed: {error}")
        else:
            logger.debug(f"{self.command} {self.path}: {error.statusCode} {error}")

        if self.responseStarted:
            # Part of the body is out already, all we can do is cut it short
            self.close_connection = True
            return

        self._discardBody()
        self._sendText(error.statusCode, str(error))

    def _identity(self):
        return self.server.identityProvider.currentIdentity(self)

    def _requireAccess(self, relPath):
        """Raise AccessDeniedError if the access tables of the parent hide this entry"""
        if not relPath:
            return

        policy = self.server.authorizer.resolve(parentRequestPath(relPath))
        if not self.server.authorizer.canAccess(policy, posixpath.basename(relPath)):
            raise AccessDeniedError(f"Access denied: /{relPath}", path=relPath)

    # GET and HEAD handlers
    def do_GET(self):
        path, args = self._prepareRequest()

        handler, rest = self._route(path)
        if handler:
            self._handleRequest(handler, rest, args)
        else:
            self._handleRequest(self._handleIndex, path, args)

    def do_HEAD(self):
        path, args = self._prepareRequest()
        self._handleRequest(self._handleIndex, path, args)

    def _handleIndex(self, path, args):
        relPath = normRequestPath(path)
        fileSystem = self.server.fileSystem
        localPath = fileSystem.localPath(relPath)

        if fileSystem.isDir(localPath):
            self._requireAccess(relPath)
            self._sendListing(relPath, args)
            return

        if not fileSystem.isFile(localPath):
            raise NotFoundError(f"No such file or directory: /{relPath}", path=relPath)

        self._requireAccess(relPath)

        if args.get('download', [''])[0] == 'true':
            self.extraHeaders.append(('Content-Disposition', contentDisposition(posixpath.basename(relPath))))

        self._serveFile(relPath)

    def _serveFile(self, relPath):
        self.path = '/' + quote(relPath)

        f = self.send_head()
        if f is None:
            return

        try:
            if self.command != 'HEAD':
                self.copyfile(f, self.wfile)
        finally:
            f.close()

    def _sendListing(self, relPath, args):
        search = args.get('search', [''])[0]
        view = self.server.aggregator.describe(relPath, search, self._identity())

        content = self._renderListing(relPath, search, view)
        self._sendBytes(content.encode('utf-8'), 'text/html; charset=utf-8')

    def _renderListing(self, relPath, search, view):
        action = '/' + quote(relPath)
        rows = []

        if relPath:
            parentHref = '/' + quote(parentRequestPath(relPath))
            rows.append(f'<tr><td><a href="{parentHref}">..</a></td><td></td><td></td></tr>')

        for item in view['files']:
            href = '/' + quote(item['path'])
            if item['type'] == 'dir':
                name = html.escape(item['name']) + '/'
                size = ''
            else:
                name = html.escape(item['name'])
                size = formatSize(item['size'])

            modified = self.date_time_string(item['mtime'] / 1000) if item['mtime'] else ''
            rows.append(f'<tr><td><a href="{href}">{name}</a></td><td>{size}</td><td>{modified}</td></tr>')

        uploadForm = UPLOAD_FORM.replace('{{ action }}', action) if view['auth']['upload'] else ''

        content = LISTING_TEMPLATE
        content = content.replace('{{ title }}', html.escape(self.server.settings.title))
        content = content.replace('{{ path }}', html.escape(relPath))
        content = content.replace('{{ action }}', action)
        content = content.replace('{{ search }}', html.escape(search, quote=True))
        content = content.replace('{{ uploadForm }}', uploadForm)
        content = content.replace('{{ rows }}', '\n'.join(rows))
        return content

    def _handleStatus(self, rest, args):
        snapshot = self.server.searchIndex.snapshot

        status = self.server.settings.toDict()
        status['index'] = {
            'generation': snapshot.generation,
            'entries': len(snapshot),
            'builtAt': snapshot.builtAt,
        }
        self._sendJSON(status)

    def _handleJSONList(self, rest, args):
        relPath = normRequestPath(rest)
        search = args.get('search', [''])[0]

        self._requireAccess(relPath)
        self._sendJSON(self.server.aggregator.describe(relPath, search, self._identity()))

    def _handleZip(self, rest, args):
        relPath = normRequestPath(rest)
        self._requireAccess(relPath)

        archiveStreamer = self.server.archiveStreamer
        name = archiveStreamer.archiveName(relPath)

        sink = _ResponseSink(
            self, [
                ('Content-Type', 'application/zip'),
                ('Content-Disposition', contentDisposition(name)),
            ]
        )

        written = archiveStreamer.createZip(relPath, sink)
        sink.finish()

        logger.info(f"Sent {name} ({formatSize(written)}) to {self.client_address[0]}")

    def _handleUnzip(self, rest, args):
        # The archive path runs up to the last separator
        archivePath, separator, memberPath = rest.rpartition('/-/')
        if not separator or not memberPath:
            raise BadRequestError("Expected /-/unzip/{zipPath}/-/{memberPath}")

        relPath = normRequestPath(archivePath)
        self._requireAccess(relPath)

        ctype = mimetypes.guess_type(memberPath)[0] or 'application/octet-stream'
        sink = _ResponseSink(self, [('Content-Type', ctype)])

        self.server.archiveStreamer.extractMember(relPath, memberPath, sink)
        sink.finish()

    def _handleInfo(self, rest, args):
        relPath = normRequestPath(rest)
        fileSystem = self.server.fileSystem
        localPath = fileSystem.localPath(relPath)

        if not fileSystem.isFile(localPath):
            raise AccessDeniedError(f"Not a file: /{relPath}", path=relPath)

        self._requireAccess(relPath)

        try:
            stat = fileSystem.stat(localPath)
        except OSError as e:
            raise StreamError(f"Can't stat /{relPath}: {e}", path=relPath)

        self._sendJSON({
            'name': posixpath.basename(relPath),
            'type': 'markdown' if relPath.endswith('.md') else 'text',
            'size': stat.size,
            'path': relPath,
            'mtime': int(stat.mtime * 1000),
        })

    # POST and DELETE handlers
    def do_POST(self):
        path, args = self._prepareRequest()

        # The body may be left unread on errors, don't reuse the connection
        self.close_connection = True
        self._handleRequest(self._handleUpload, path, args)

    def do_DELETE(self):
        path, args = self._prepareRequest()
        self._handleRequest(self._handleDelete, path, args)

    def _handleUpload(self, path, args):
        relPath = normRequestPath(path)
        fileSystem = self.server.fileSystem
        authorizer = self.server.authorizer
        localDir = fileSystem.localPath(relPath)

        if not fileSystem.isDir(localDir):
            raise NotFoundError(f"No such directory: /{relPath}", path=relPath)

        identity = self._identity()
        policy = authorizer.resolve(relPath)
        if not authorizer.canUpload(policy, identity):
            raise AccessDeniedError("Upload forbidden", path=relPath)

        environ = {
            'wsgi.input': self.rfile,
            'REQUEST_METHOD': self.command,
            'CONTENT_TYPE': self.headers.get('Content-Type', ''),
            'CONTENT_LENGTH': self.headers.get('Content-Length', ''),
        }
        _, _, files = parse_form_data(environ)
        self.bodyConsumed = True
        uploads = files.getlist('file')

        try:
            if not uploads:
                raise BadRequestError("Need multipart file", path=relPath)

            saved = []
            for storage in uploads:
                fileName = uploadFileName(storage.filename)
                if not fileName:
                    raise BadRequestError(f"Invalid file name: {storage.filename!r}", path=relPath)

                if not authorizer.canAccess(policy, fileName):
                    raise AccessDeniedError(f"Access denied: {fileName}", path=relPath)

                target = joinRequestPath(relPath, fileName)
                try:
                    # One destination file open at a time
                    storage.save(fileSystem.localPath(target), buffer_size=TRANSFER_CHUNK_SIZE)
                except OSError as e:
                    raise StreamError(f"Can't save /{target}: {e}", path=target)
                finally:
                    storage.close()

                saved.append(target)
                logger.info(f"Uploaded /{target} by {identity or 'anonymous'}")
                ShareEvent.fileUploaded.trigger(sender=self.server, path=target, identity=identity)
        finally:
            for storage in uploads:
                storage.close()

        self._sendJSON({'success': True, 'files': saved})

    def _handleDelete(self, path, args):
        relPath = normRequestPath(path)
        fileSystem = self.server.fileSystem
        authorizer = self.server.authorizer

        if not relPath:
            raise AccessDeniedError("The share root can't be deleted", path=relPath)

        localPath = fileSystem.localPath(relPath)
        if not fileSystem.exists(localPath) and not os.path.islink(localPath):
            raise NotFoundError(f"No such file or directory: /{relPath}", path=relPath)

        identity = self._identity()
        policy = authorizer.resolve(relPath)
        if not authorizer.canDelete(policy, identity):
            raise AccessDeniedError("Delete forbidden", path=relPath)

        self._requireAccess(relPath)

        try:
            fileSystem.remove(localPath)
        except FileNotFoundError:
            raise NotFoundError(f"No such file or directory: /{relPath}", path=relPath)
        except OSError as e:
            if e.errno == errno.ENOTEMPTY:
                raise BadRequestError(f"Directory not empty: /{relPath}", path=relPath)
            raise StreamError(f"Can't delete /{relPath}: {e}", path=relPath)

        logger.info(f"Deleted /{relPath} by {identity or 'anonymous'}")
        ShareEvent.fileDeleted.trigger(sender=self.server, path=relPath, identity=identity)

        self._sendText(HTTPStatus.OK, "Success")

    def _discardBody(self):
        """Read what is left of a small request body, so closing the socket doesn't reset the connection"""
        if self.command != 'POST' or self.bodyConsumed:
            return

        self.bodyConsumed = True
        try:
            remaining = int(self.headers.get('Content-Length') or 0)
        except ValueError:
            return

        if remaining > MAX_DISCARDED_BODY:
            return

        while remaining > 0:
            chunk = self.rfile.read(min(remaining, TRANSFER_CHUNK_SIZE))
            if not chunk:
                break
            remaining -= len(chunk)

    # Response helpers
    def _sendBytes(self, payload: bytes, ctype: str = "text/plain; charset=utf-8", status=HTTPStatus.OK):
        self.send_response(status)
        self.send_header("Content-Type", ctype)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()

        if self.command != 'HEAD':
            self.wfile.write(payload)

    def _sendText(self, status, text):
        self._sendBytes(text.encode('utf-8'), status=status)

    def _sendJSON(self, data):
        self._sendBytes(json.dumps(data).encode('utf-8'), "application/json; charset=utf-8")

    # Override utility methods
    def send_response(self, code, message=None):
        self.responseStarted = True
        super().send_response(code, message)

    def end_headers(self) -> None:
        for key, value in self.extraHeaders:
            self.send_header(key, value)
        self.extraHeaders = []
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


class Server(ThreadingHTTPServer):

    request_queue_size = 16
    allow_reuse_address = True
    daemon_threads = True

    def __init__(
        self, serverAddress, settingsGetter, requestHandlerClass=None, identityProvider: IdentityProvider = None
    ):
        self.settings = settingsGetter

        self.fileSystem = LocalFileSystem(settingsGetter.root)
        self.authorizer = PathAuthorizer.fromSettings(settingsGetter, self.fileSystem, PatternCache())
        self.searchIndex = SearchIndex.fromSettings(settingsGetter, self.fileSystem)
        self.aggregator = ListingAggregator(self.fileSystem, self.authorizer, self.searchIndex)
        self.archiveStreamer = ArchiveStreamer(self.fileSystem)

        if identityProvider is None:
            if settingsGetter.identityHeader:
                identityProvider = HeaderIdentityProvider(settingsGetter.identityHeader)
            else:
                identityProvider = AnonymousIdentityProvider()
        self.identityProvider = identityProvider

        if requestHandlerClass is None:
            requestHandlerClass = ShareHandler

        super().__init__(serverAddress, requestHandlerClass)

    def handle_error(self, request, client_address):
        logger.exception(f"Error while handling request from {client_address[0]}")

    def start(self):
        """Start the search index and serve until shutdown() is called from another thread"""
        host, port = self.server_address[:2]
        flushPrint(f"Serving {self.fileSystem.root} on http://{host}:{port}/")

        self.searchIndex.start()
        try:
            self.serve_forever()
        finally:
            self.searchIndex.stop()

    def shutdown(self):
        super().shutdown()
        self.searchIndex.stop()


def createServer(port, settingsGetter=None, address=DEFAULT_ADDRESS, handlerClass=None, identityProvider=None):
    # Factory function to create a Server sharing the configured root directory
    if settingsGetter is None:
        settingsGetter = SettingsGetter.getInstance()

    if handlerClass is None:
        handlerClass = ShareHandler

    return Server((address, port), settingsGetter, handlerClass, identityProvider)
