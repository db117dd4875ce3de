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
Zip streaming for the archive endpoints.

createZip() writes a subtree to a sink entry by entry as the walk visits it, so
archives of any size go out without being built in memory or on disk. The sink
does not need to be seekable: zipfile then emits data descriptors after each
entry.

Bytes already written to the sink can't be taken back. When a file turns out to
be unreadable halfway through, the archive is abandoned: nothing more is written
(not even the central directory) and StreamError is raised.
"""

import os
import posixpath
import zipfile
import zlib

from dirshare.Errors import ArchiveReadError, NotFoundError, StreamError, WalkError
from dirshare.FileSystems import normRequestPath
from dirshare.Kernel import getLogger
from dirshare.Settings import TRANSFER_CHUNK_SIZE

logger = getLogger(__name__)


class _GuardedSink:
    """
    Write-only file object handed to zipfile.

    Tracks the position so zipfile can run on unseekable sinks, and drops every
    write after abort() so a broken archive is never finished.
    """

    def __init__(self, sink):
        self.sink = sink
        self.position = 0
        self.aborted = False

    def write(self, data):
        if self.aborted:
            return len(data)

        self.sink.write(data)
        self.position += len(data)
        return len(data)

    def tell(self):
        return self.position

    def flush(self):
        if not self.aborted and hasattr(self.sink, 'flush'):
            self.sink.flush()

    def abort(self):
        self.aborted = True


class ArchiveStreamer:

    def __init__(self, fileSystem, chunkSize=TRANSFER_CHUNK_SIZE, compression=zipfile.ZIP_DEFLATED):
        self.fileSystem = fileSystem
        self.chunkSize = chunkSize
        self.compression = compression

    def archiveName(self, subtreePath: str) -> str:
        """Download file name for the archive of a subtree"""
        relPath = normRequestPath(subtreePath)
        if not relPath:
            return f'{self.fileSystem.rootName}.zip'
        return f'{posixpath.basename(relPath)}.zip'

    def createZip(self, subtreePath: str, sink) -> int:
        """
        Stream a zip archive of a subtree into sink.

        Entry names are relative to the subtree; empty directories get their own
        entries. A single file gives an archive holding just that file.

        Returns:
            int: Bytes written to sink

        Raises:
            NotFoundError: subtreePath doesn't exist
            WalkError: the subtree root can't be listed
            StreamError: a file couldn't be read, or the sink failed
        """
        relPath = normRequestPath(subtreePath)
        top = self.fileSystem.localPath(relPath)

        if self.fileSystem.isFile(top):
            return self._writeArchive(sink, lambda zf, guarded: self._writeFile(zf, guarded, top, os.path.basename(top)))

        try:
            self.fileSystem.childNames(top)
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(f"No such file or directory: /{relPath}", path=relPath)
        except OSError as e:
            raise WalkError(f"Can't open /{relPath}: {e}", path=relPath)

        return self._writeArchive(sink, lambda zf, guarded: self._writeTree(zf, guarded, top))

    def _writeArchive(self, sink, writeEntries) -> int:
        guarded = _GuardedSink(sink)

        try:
            zf = zipfile.ZipFile(guarded, 'w', compression=self.compression, allowZip64=True)
            try:
                writeEntries(zf, guarded)
            except BaseException:
                guarded.abort()
                raise
            finally:
                zf.close()
        except OSError as e:
            # The sink itself failed, e.g. the client went away
            raise StreamError(f"Error writing archive: {e}") from e

        return guarded.position

    def _writeTree(self, zf, guarded, top):

        def onError(error):
            logger.warning(f"Skipping {error.filename!r} while archiving: {error}")

        for dirPath, dirNames, fileNames in self.fileSystem.walk(top, onerror=onError):
            dirNames.sort()
            fileNames.sort()

            relDir = os.path.relpath(dirPath, top)
            relDir = '' if relDir == '.' else relDir.replace(os.sep, '/')

            if relDir and not dirNames and not fileNames:
                zf.writestr(zipfile.ZipInfo.from_file(dirPath, relDir), b'')

            for fileName in fileNames:
                arcName = f'{relDir}/{fileName}' if relDir else fileName
                self._writeFile(zf, guarded, os.path.join(dirPath, fileName), arcName)

    def _writeFile(self, zf, guarded, localPath, arcName):
        try:
            zinfo = zipfile.ZipInfo.from_file(localPath, arcName)
        except OSError as e:
            guarded.abort()
            raise StreamError(f"Can't read {arcName}: {e}", path=localPath)

        if zinfo.is_dir():
            # Symlinks to directories are listed as files by os.walk
            return

        try:
            src = self.fileSystem.open(localPath)
        except OSError as e:
            guarded.abort()
            raise StreamError(f"Can't read {arcName}: {e}", path=localPath)

        zinfo.compress_type = self.compression

        with src, zf.open(zinfo, 'w') as dst:
            while True:
                try:
                    chunk = src.read(self.chunkSize)
                except OSError as e:
                    # Abort before zipfile closes the entry with a data descriptor
                    guarded.abort()
                    raise StreamError(f"Error reading {arcName}: {e}", path=localPath)

                if not chunk:
                    break

                dst.write(chunk)

    def extractMember(self, archivePath: str, memberPath: str, sink) -> int:
        """
        Stream the decompressed bytes of one archive member into sink.

        The member is looked up by its exact name inside the archive.

        Returns:
            int: Bytes written to sink

        Raises:
            NotFoundError: the archive or the member doesn't exist
            ArchiveReadError: the archive is corrupt, encrypted or uses an unsupported compression
        """
        relPath = normRequestPath(archivePath)
        localPath = self.fileSystem.localPath(relPath)

        if not self.fileSystem.isFile(localPath):
            raise NotFoundError(f"No such archive: /{relPath}", path=relPath)

        written = 0
        try:
            with zipfile.ZipFile(localPath) as zf:
                try:
                    info = zf.getinfo(memberPath)
                except KeyError:
                    raise NotFoundError(f"No member {memberPath!r} in /{relPath}", path=memberPath)

                if info.is_dir():
                    raise NotFoundError(f"Member {memberPath!r} is a directory", path=memberPath)

                with zf.open(info) as member:
                    while True:
                        chunk = member.read(self.chunkSize)
                        if not chunk:
                            break

                        try:
                            sink.write(chunk)
                        except OSError as e:
                            raise StreamError(f"Error writing {memberPath!r}: {e}") from e
                        written += len(chunk)

        except (zipfile.BadZipFile, zlib.error, EOFError) as e:
            raise ArchiveReadError(f"Corrupt archive /{relPath}: {e}", path=relPath)
        except (NotImplementedError, RuntimeError) as e:
            # Unsupported compression method, or an encrypted member
            raise ArchiveReadError(f"Can't extract {memberPath!r} from /{relPath}: {e}", path=relPath)

        return written
