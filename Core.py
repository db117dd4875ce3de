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

import sys
import os
import argparse
import signal

from dirshare.CLI import configureCLIParser, configureLogging, loadEnvFile

# Load .env file early, the parser reads its defaults from the environment
loadEnvFile()

from dirshare.Kernel import getLogger # isort:skip
from dirshare.Server import createServer # isort:skip
from dirshare.Settings import SettingsGetter # isort:skip
from dirshare.Utils import flushPrint # isort:skip

logger = getLogger(__name__)


def setupGracefulShutdown():
    """Setup signal handlers for graceful shutdown on multiple Ctrl+C"""
    context = {'shutdownInProgress': False}

    def signalHandler(signum, frame):
        if context['shutdownInProgress']:
            # Second Ctrl+C - force immediate exit without cleanup messages
            os._exit(0)
        else:
            context['shutdownInProgress'] = True
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, signalHandler)


def setupSettings(args):
    if not os.path.isdir(args.root):
        raise NotADirectoryError(f"Not a directory: {args.root}")

    return SettingsGetter(
        root=args.root,
        upload=args.upload,
        delete=args.delete,
        title=args.title,
        indexInterval=args.indexInterval,
        indexDelay=args.indexDelay,
        identityHeader=args.identityHeader,
        sidecarName=args.sidecarName,
    )


def main(argv=None):
    parser = configureCLIParser()

    try:
        args = parser.parse_args(argv)
    except argparse.ArgumentError as e:
        parser.error(str(e))

    configureLogging(args.logLevel)

    try:
        settingsGetter = setupSettings(args)
    except NotADirectoryError as e:
        flushPrint(f"Error: {e}")
        return 1

    setupGracefulShutdown()

    server = createServer(args.port, settingsGetter, address=args.addr)
    try:
        server.start()
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
    finally:
        server.server_close()

    return 0


if __name__ == '__main__':
    try:
        exitCode = main()
        sys.exit(exitCode or 0)
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        sys.exit(0)
    except OSError as e:
        # e.g. the port is already in use
        logger.exception(e)
        flushPrint(f"Error: {e}")
        sys.exit(1)
