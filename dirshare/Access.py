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
Hierarchical access control.

Every directory may carry a sidecar file (.ghs.yml) overriding the access policy
for itself and its descendants:

    upload: true
    delete: false
    users:
      - email: alice@example.com
        upload: true
        delete: true
    accessTables:
      - regex: "\\.secret$"
        allow: false

The effective policy of a path is resolved by walking from the root down to the
directory owning the path; each sidecar field present at a level replaces the
inherited value, absent fields are inherited. Policies are never cached, so edits
to sidecar files apply to the next request.
"""

import re
import threading

from dataclasses import dataclass, replace
from typing import Dict, Optional, Protocol, Tuple

import yaml

from dirshare.Errors import ConfigParseError
from dirshare.FileSystems import normRequestPath, parentRequestPath, joinRequestPath
from dirshare.Kernel import getLogger
from dirshare.Settings import SIDECAR_NAME
from dirshare.Utils import decodeText

logger = getLogger(__name__)


@dataclass(frozen=True)
class UserOverride:
    identity: str
    allowUpload: bool = False
    allowDelete: bool = False


@dataclass(frozen=True)
class PathRule:
    pattern: str
    allow: bool = False


@dataclass(frozen=True)
class AccessPolicy:
    allowUpload: bool = False
    allowDelete: bool = False
    userOverrides: Tuple[UserOverride, ...] = ()
    pathRules: Tuple[PathRule, ...] = ()

    def toDict(self):
        return {
            'upload': self.allowUpload,
            'delete': self.allowDelete,
            'users': [
                {'identity': u.identity, 'upload': u.allowUpload, 'delete': u.allowDelete} for u in self.userOverrides
            ],
            'accessTables': [{'regex': r.pattern, 'allow': r.allow} for r in self.pathRules],
        }


class PatternCache:
    """
    Compiled access-table patterns, shared by concurrent resolutions.

    Each distinct pattern is compiled once. A pattern that fails to compile is
    remembered as None and never matches anything.
    """

    def __init__(self):
        self._patterns = {}
        self._lock = threading.Lock()

    def get(self, pattern: str) -> Optional[re.Pattern]:
        with self._lock:
            if pattern in self._patterns:
                return self._patterns[pattern]

            try:
                compiled = re.compile(pattern)
            except (re.error, TypeError) as e:
                logger.warning(f"Invalid access table regex {pattern!r}: {e}")
                compiled = None

            self._patterns[pattern] = compiled
            return compiled

    def matches(self, pattern: str, text: str) -> bool:
        compiled = self.get(pattern)
        return compiled is not None and compiled.search(text) is not None

    def __contains__(self, pattern):
        with self._lock:
            return pattern in self._patterns

    def __len__(self):
        with self._lock:
            return len(self._patterns)


def _requireBool(data, key, source):
    value = data[key]
    if not isinstance(value, bool):
        raise ConfigParseError(f"'{key}' must be a boolean, got {value!r}", path=source)
    return value


def _requireList(data, key, source):
    value = data[key]
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigParseError(f"'{key}' must be a list, got {type(value).__name__}", path=source)
    for item in value:
        if not isinstance(item, dict):
            raise ConfigParseError(f"'{key}' items must be mappings, got {item!r}", path=source)
    return value


def _optionalBool(item, key, source):
    if key not in item or item[key] is None:
        return False
    return _requireBool(item, key, source)


def parseSidecar(data: bytes, source: str = None) -> Dict[str, object]:
    """
    Parse the raw bytes of a sidecar file into AccessPolicy field overrides.

    Only the fields present in the file are returned, so the caller can overlay
    them onto the inherited policy. Unknown keys are ignored; 'identity' is
    accepted as a synonym of 'email' in user entries.

    Raises:
        ConfigParseError: for undecodable bytes, invalid YAML, a document that
                          isn't a mapping, or a wrongly-typed field
    """
    try:
        text = decodeText(data)
    except (UnicodeDecodeError, LookupError) as e:
        raise ConfigParseError(f"Can't decode sidecar: {e}", path=source)

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"Invalid YAML: {e}", path=source)

    if document is None:
        return {}

    if not isinstance(document, dict):
        raise ConfigParseError(f"Sidecar must be a mapping, got {type(document).__name__}", path=source)

    overrides = {}

    if 'upload' in document:
        overrides['allowUpload'] = _requireBool(document, 'upload', source)

    if 'delete' in document:
        overrides['allowDelete'] = _requireBool(document, 'delete', source)

    if 'users' in document:
        users = []
        for item in _requireList(document, 'users', source):
            identity = item.get('email', item.get('identity'))
            if not isinstance(identity, str):
                raise ConfigParseError(f"User entry without email: {item!r}", path=source)

            users.append(
                UserOverride(
                    identity=identity,
                    allowUpload=_optionalBool(item, 'upload', source),
                    allowDelete=_optionalBool(item, 'delete', source),
                )
            )
        overrides['userOverrides'] = tuple(users)

    if 'accessTables' in document:
        rules = []
        for item in _requireList(document, 'accessTables', source):
            pattern = item.get('regex')
            if not isinstance(pattern, str):
                raise ConfigParseError(f"Access table entry without regex: {item!r}", path=source)

            rules.append(PathRule(pattern=pattern, allow=_optionalBool(item, 'allow', source)))
        overrides['pathRules'] = tuple(rules)

    return overrides


class IdentityProvider(Protocol):
    """Resolves the verified identity of the caller, or None for anonymous callers"""

    def currentIdentity(self, request) -> Optional[str]:
        ...


class AnonymousIdentityProvider:

    def currentIdentity(self, request) -> Optional[str]:
        return None


class HeaderIdentityProvider:
    """
    Reads the identity from a header set by an authenticating reverse proxy.

    The header must be stripped from client requests by that proxy; DirShare
    trusts it as is.
    """

    def __init__(self, headerName: str):
        self.headerName = headerName

    def currentIdentity(self, request) -> Optional[str]:
        headers = getattr(request, 'headers', None)
        if headers is None:
            return None

        value = headers.get(self.headerName)
        if value is None:
            return None

        value = value.strip()
        return value or None


class PathAuthorizer:
    """
    Resolves the effective AccessPolicy of request paths and answers access questions
    against it.
    """

    def __init__(
        self,
        fileSystem,
        defaultUpload: bool = False,
        defaultDelete: bool = False,
        patternCache: PatternCache = None,
        sidecarName: str = SIDECAR_NAME,
    ):
        self.fileSystem = fileSystem
        self.defaultUpload = defaultUpload
        self.defaultDelete = defaultDelete
        self.patternCache = patternCache if patternCache is not None else PatternCache()
        self.sidecarName = sidecarName

    @classmethod
    def fromSettings(cls, settingsGetter, fileSystem, patternCache=None):
        return cls(
            fileSystem,
            defaultUpload=settingsGetter.upload,
            defaultDelete=settingsGetter.delete,
            patternCache=patternCache,
            sidecarName=settingsGetter.sidecarName,
        )

    def defaultPolicy(self) -> AccessPolicy:
        return AccessPolicy(allowUpload=self.defaultUpload, allowDelete=self.defaultDelete)

    def resolve(self, requestPath: str) -> AccessPolicy:
        """
        Resolve the policy of a request path, root sidecar first.

        A file takes the policy of its containing directory. Paths that don't exist
        simply find no sidecar files below the deepest existing ancestor.
        """
        relPath = normRequestPath(requestPath)

        if not relPath:
            return self._overlay(self.defaultPolicy(), relPath)

        policy = self.resolve(parentRequestPath(relPath))

        if self.fileSystem.isFile(self.fileSystem.localPath(relPath)):
            return policy

        return self._overlay(policy, relPath)

    def _overlay(self, policy: AccessPolicy, directory: str) -> AccessPolicy:
        sidecarPath = self.fileSystem.localPath(joinRequestPath(directory, self.sidecarName))

        try:
            data = self.fileSystem.readBytes(sidecarPath)
        except (FileNotFoundError, NotADirectoryError):
            return policy
        except OSError as e:
            logger.warning(f"Can't read {sidecarPath}: {e}")
            return policy

        try:
            overrides = parseSidecar(data, source=sidecarPath)
        except ConfigParseError as e:
            logger.warning(f"Ignoring malformed {sidecarPath}: {e}")
            return policy

        if not overrides:
            return policy

        return replace(policy, **overrides)

    def canAccess(self, policy: AccessPolicy, fileName: str) -> bool:
        """The first access table whose regex matches the name decides; no match allows."""
        for rule in policy.pathRules:
            if self.patternCache.matches(rule.pattern, fileName):
                return rule.allow
        return True

    def _findOverride(self, policy: AccessPolicy, identity: Optional[str]) -> Optional[UserOverride]:
        if not identity:
            return None

        for override in policy.userOverrides:
            if override.identity == identity:
                return override
        return None

    def canUpload(self, policy: AccessPolicy, identity: Optional[str] = None) -> bool:
        override = self._findOverride(policy, identity)
        return override.allowUpload if override else policy.allowUpload

    def canDelete(self, policy: AccessPolicy, identity: Optional[str] = None) -> bool:
        override = self._findOverride(policy, identity)
        return override.allowDelete if override else policy.allowDelete

    def forCaller(self, policy: AccessPolicy, identity: Optional[str] = None) -> AccessPolicy:
        """The policy with upload/delete flags answered for this caller"""
        return replace(
            policy,
            allowUpload=self.canUpload(policy, identity),
            allowDelete=self.canDelete(policy, identity),
        )
