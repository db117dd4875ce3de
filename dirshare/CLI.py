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

import argparse
import json
import os
import logging
import logging.config

from dirshare.Kernel import PUBLIC_VERSION, LOG_LEVEL_MAPPING, configureGlobalLogLevel, getLogger
from dirshare.Settings import (
    DEFAULT_ADDRESS, DEFAULT_IDENTITY_HEADER, DEFAULT_INDEX_DELAY, DEFAULT_INDEX_INTERVAL, DEFAULT_PORT, DEFAULT_TITLE,
    SIDECAR_NAME
)
from dirshare.Utils import flushPrint, getEnv

logger = getLogger(__name__)


def loadEnvFile(envFilePath='.env'):
    """
    Load environment variables from a .env file, by default in the working directory.
    Only sets variables that are not already defined in os.environ.
    """
    if not os.path.exists(envFilePath):
        return 0

    loadedCount = 0
    try:
        with open(envFilePath, 'r', encoding='utf-8') as f:
            for lineNum, line in enumerate(f, 1):
                line = line.strip()

                # Skip empty lines and comments
                if not line or line.startswith('#'):
                    continue

                if '=' not in line:
                    flushPrint(f'Warning: .env line {lineNum}: Invalid format (missing =): {line}')
                    continue

                key, _, value = line.partition('=')
                key = key.strip()
                value = value.strip()

                if not key:
                    flushPrint(f'Warning: .env line {lineNum}: Empty key')
                    continue

                # Remove quotes if present (both single and double)
                if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                    value = value[1:-1]

                # Environment takes precedence
                if key not in os.environ:
                    os.environ[key] = value
                    loadedCount += 1
                else:
                    logger.debug(f'.env: Skipped {key} (already set in environment)')

        logger.debug(f'Loaded {loadedCount} environment variables from {envFilePath}')

    except (OSError, UnicodeDecodeError) as e:
        flushPrint(f'Error: Unable to load {envFilePath}: {e}')
        logger.error(f'Unable to load {envFilePath}: {e}', exc_info=True)

    return loadedCount


def configureLogging(logLevel):
    """Configure logging from a level name or a logging config JSON file

    Priority order:
    1. logLevel parameter (from --log-level)
    2. DIRSHARE_LOGGING_LEVEL environment variable
    3. None (no configuration change)
    """

    def suppressNoisyLogger():
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)
        logging.getLogger('werkzeug').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('DIRSHARE_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, OSError, ValueError, KeyError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    suppressNoisyLogger()

    return logLevel


def configureCLIParser():
    """
    Build the command line parser.

    Every option falls back to a DIRSHARE_* environment variable, so a .env file
    loaded beforehand can stand in for the command line.
    """

    def validatePort(portStr):
        """Validate port number for argparse"""
        try:
            port = int(portStr)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid port number: {portStr}")

        if not 0 <= port <= 65535:
            raise argparse.ArgumentTypeError(f"Port {port} is out of valid range (0-65535)")
        return port

    def validateSeconds(valueStr):
        """Validate a non-negative number of seconds for argparse"""
        try:
            value = float(valueStr)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid number of seconds: {valueStr}")

        if value < 0:
            raise argparse.ArgumentTypeError(f"Seconds {value} cannot be negative")
        return value

    def validateLogLevel(logLevel):
        """Validate log level for argparse"""
        # Allow file paths (they'll be validated later)
        if os.path.exists(logLevel):
            return logLevel

        if logLevel.upper() not in LOG_LEVEL_MAPPING:
            raise argparse.ArgumentTypeError(
                f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(LOG_LEVEL_MAPPING)}"
            )
        return logLevel.upper()

    parser = argparse.ArgumentParser(
        prog='dirshare', description="DirShare shares a directory tree over HTTP.", exit_on_error=False
    )
    parser.add_argument("--version", action="version", version=f"DirShare v{PUBLIC_VERSION}")
    parser.add_argument(
        "root",
        nargs='?',
        default=getEnv('DIRSHARE_ROOT', '.'),
        help="Directory to share (default: current directory)",
    )
    parser.add_argument(
        "--addr",
        default=getEnv('DIRSHARE_ADDR', DEFAULT_ADDRESS),
        help=f"Address to listen on (default: {DEFAULT_ADDRESS})",
    )
    parser.add_argument(
        "--port",
        type=validatePort,
        default=getEnv('DIRSHARE_PORT', DEFAULT_PORT),
        help=f"Port to listen on (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--upload",
        action="store_true",
        default=getEnv('DIRSHARE_UPLOAD', False),
        help="Allow uploads unless a sidecar file says otherwise",
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        default=getEnv('DIRSHARE_DELETE', False),
        help="Allow deletes unless a sidecar file says otherwise",
    )
    parser.add_argument(
        "--title", default=getEnv('DIRSHARE_TITLE', DEFAULT_TITLE), help="Title shown on listing pages"
    )
    parser.add_argument(
        "--index-interval",
        type=validateSeconds,
        default=getEnv('DIRSHARE_INDEX_INTERVAL', DEFAULT_INDEX_INTERVAL),
        help=f"Seconds between two search index builds (default: {DEFAULT_INDEX_INTERVAL})",
        dest="indexInterval",
    )
    parser.add_argument(
        "--index-delay",
        type=validateSeconds,
        default=getEnv('DIRSHARE_INDEX_DELAY', DEFAULT_INDEX_DELAY),
        help=f"Seconds before the first search index build (default: {DEFAULT_INDEX_DELAY})",
        dest="indexDelay",
    )
    parser.add_argument(
        "--identity-header",
        default=getEnv('DIRSHARE_IDENTITY_HEADER', None),
        help=f"Header carrying the caller identity set by an authenticating proxy, e.g. {DEFAULT_IDENTITY_HEADER}",
        metavar="HEADER",
        dest="identityHeader",
    )
    parser.add_argument(
        "--sidecar-name",
        default=getEnv('DIRSHARE_SIDECAR_NAME', SIDECAR_NAME),
        help=f"Name of the per-directory access file (default: {SIDECAR_NAME})",
        dest="sidecarName",
    )
    parser.add_argument(
        "--log-level",
        type=validateLogLevel,
        help="Set logging level (DEBUG, INFO, WARNING, ERROR) or path to logging config JSON file",
        metavar="LEVEL_OR_FILE",
        dest="logLevel",
    )
    return parser
