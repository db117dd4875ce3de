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

import locale
import os
import sys

import bitmath
import chardet

from dirshare.Kernel import getLogger

ONE_KB = bitmath.KiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

logger = getLogger(__name__)

_TRY_ENCODINGS = tuple(e for e in (locale.getlocale()[1],) if e)


def decodeText(data, encodings=None, throw=True, confidence=0.8):
    """
    Decode bytes of unknown encoding to str.

    UTF-8 is tried first, then chardet's guess when it is confident, then the locale
    encoding and finally chardet's low-confidence guess.

    Args:
        data: bytes (str is returned unchanged)
        encodings: Extra encodings to try first
        throw: Raise the last decode error if nothing worked, otherwise return None
        confidence: Minimum chardet confidence to prefer its guess

    Returns:
        str or None
    """
    if isinstance(data, str):
        return data

    candidates = list(encodings or []) + ['utf-8']

    try:
        result = chardet.detect(data)
        if result['encoding'] and result['confidence'] > confidence:
            candidates.append(result['encoding'])
        candidates.extend(_TRY_ENCODINGS)
        if result['encoding']:
            candidates.append(result['encoding'])
    except Exception as e:
        logger.debug(f"chardet failed: {e}")
        candidates.extend(_TRY_ENCODINGS)

    error = None
    for encoding in candidates:
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            error = e

    if throw and error:
        raise error

    return None


def flushPrint(text):
    try:
        print(text, flush=True)
    except UnicodeEncodeError as e:
        # Terminals that can't encode some characters (e.g., emojis on cp950)
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}, {sys.stdout.encoding=}")

        buf = getattr(sys.stdout, "buffer", None)
        if buf is not None:
            buf.write(text.encode("utf-8", errors="replace"))
            buf.write(b"\n")
            buf.flush()
        else:
            print(text.encode(sys.stdout.encoding, errors='replace').decode(sys.stdout.encoding), flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB: # Less than 1GB
            decimal = 0
        elif size < ONE_TB: # Between 1GB and 1TB
            decimal = 1
        else: # Greater than 1TB
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    sizeStr = bitmath.Byte(size).best_prefix(system=bitmath.SI).format(
        "{value:.%df}{%s}" % (decimal, 'unit_plural' if plural else 'unit')
    )

    if not sizeStr.endswith('Byte') and not sizeStr.endswith('Bytes'):
        return sizeStr.replace('B', '').upper()
    else:
        return sizeStr.replace('Byte', ' Byte')


# Helper functions for environment variable configuration
def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            # Automatically detect type based on default value
            if isinstance(default, bool):
                return value in ("True", "true", "1", "yes")
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            else:
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default
