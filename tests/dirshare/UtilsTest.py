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
import unittest

from unittest.mock import patch

from dirshare.Utils import ONE_GB, ONE_KB, ONE_TB, decodeText, formatSize, getEnv


class TestFormatSize(unittest.TestCase):
    """Test cases for the formatSize utility function."""

    def testBytes(self):
        self.assertEqual(formatSize(0), '0 Bytes')
        self.assertEqual(formatSize(1), '1 Bytes')
        self.assertEqual(formatSize(1, plural=False), '1 Byte')

    def testUnits(self):
        testCases = [
            # (size_in_bytes, expected_unit, description)
            (ONE_KB * 5, 'K', 'kilobytes'),
            (ONE_KB * ONE_KB * 3, 'M', 'megabytes'),
            (ONE_GB * 2, 'G', 'gigabytes'),
            (ONE_TB * 4, 'T', 'terabytes'),
        ]

        for size, unit, description in testCases:
            with self.subTest(size=size, description=description):
                result = formatSize(size)
                self.assertIn(unit, result)
                self.assertNotIn('Byte', result)

    def testDecimalPlaces(self):
        self.assertNotIn('.', formatSize(ONE_KB * 5))
        self.assertEqual(len(formatSize(ONE_GB * 2).split('.')[1]), 1)
        self.assertEqual(len(formatSize(ONE_TB * 4).split('.')[1]), 2)
        self.assertEqual(len(formatSize(ONE_GB * 2, decimal=3).split('.')[1]), 3)


class TestGetEnv(unittest.TestCase):

    def testTypeFollowsDefault(self):
        env = {
            'DIRSHARE_TEST_BOOL': 'yes',
            'DIRSHARE_TEST_INT': '8080',
            'DIRSHARE_TEST_FLOAT': '0.5',
            'DIRSHARE_TEST_STR': 'Shared',
        }
        with patch.dict(os.environ, env):
            self.assertIs(getEnv('DIRSHARE_TEST_BOOL', False), True)
            self.assertEqual(getEnv('DIRSHARE_TEST_INT', 8000), 8080)
            self.assertEqual(getEnv('DIRSHARE_TEST_FLOAT', 1.0), 0.5)
            self.assertEqual(getEnv('DIRSHARE_TEST_STR', 'Title'), 'Shared')
            self.assertEqual(getEnv('DIRSHARE_TEST_STR', None), 'Shared')

    def testFallsBackToDefault(self):
        with patch.dict(os.environ, {'DIRSHARE_TEST_INT': 'not a number'}):
            self.assertEqual(getEnv('DIRSHARE_TEST_INT', 8000), 8000)

        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(getEnv('DIRSHARE_TEST_MISSING', 'x'), 'x')
            self.assertIsNone(getEnv('DIRSHARE_TEST_MISSING', None))


class TestDecodeText(unittest.TestCase):

    def testUTF8(self):
        self.assertEqual(decodeText('héllo wörld'.encode('utf-8')), 'héllo wörld')
        self.assertEqual(decodeText('already text'), 'already text')

    def testExplicitEncodingFirst(self):
        data = '檔案分享'.encode('big5')
        self.assertEqual(decodeText(data, encodings=['big5']), '檔案分享')

    def testUndecodable(self):
        with patch('dirshare.Utils.chardet.detect', return_value={'encoding': None, 'confidence': 0.0}):
            with patch('dirshare.Utils._TRY_ENCODINGS', ()):
                self.assertIsNone(decodeText(b'\xff\xfe\xfa', throw=False))

                with self.assertRaises(UnicodeDecodeError):
                    decodeText(b'\xff\xfe\xfa')


if __name__ == '__main__':
    unittest.main()
