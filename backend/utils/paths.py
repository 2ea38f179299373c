"""Normalization of the ways a project file can be addressed.

The same media may appear as an absolute sandbox path, a ``file://`` URI,
a sandbox-relative path such as ``output/trimmed_1.mp4``, or a URL served by
the remote backend (optionally carrying a cache-busting query parameter).
Everything that turns one of these into a concrete address goes through
``resolve``.
"""
from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from utils.sandbox import INPUT_DIR, OUTPUT_DIR, project_dir

CACHE_BUST_PARAM = "v"

_SANDBOX_AREAS = (INPUT_DIR, OUTPUT_DIR)
_AREA_SEGMENT = re.compile(r"/(input|output)/([^/?#]+)")


class ResolveContext(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class LocalPath:
    path: str
    kind: Literal["local_path"] = "local_path"


@dataclass(frozen=True)
class RemoteRelativePath:
    path: str
    kind: Literal["remote_relative_path"] = "remote_relative_path"


@dataclass(frozen=True)
class RemoteUrl:
    url: str
    kind: Literal["remote_url"] = "remote_url"


@dataclass(frozen=True)
class RemoteUrlWithCacheBust:
    url: str
    token: str
    kind: Literal["remote_url_cache_bust"] = "remote_url_cache_bust"


PathReference = Union[LocalPath, RemoteRelativePath, RemoteUrl, RemoteUrlWithCacheBust]


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def parse_reference(value: str) -> PathReference:
    value = value.strip()
    if _is_url(value):
        token = _cache_bust_token(value)
        if token is not None:
            return RemoteUrlWithCacheBust(url=strip_cache_bust(value), token=token)
        return RemoteUrl(url=value)
    if value.startswith("file://"):
        return LocalPath(path=value[len("file://"):])
    if value.startswith(tuple(f"{area}/" for area in _SANDBOX_AREAS)):
        return RemoteRelativePath(path=value)
    if os.path.isabs(value):
        return LocalPath(path=value)
    if "/" not in value:
        return RemoteRelativePath(path=f"{INPUT_DIR}/{value}")
    return LocalPath(path=value)


def to_sandbox_relative(value: str | PathReference) -> str | None:
    """Map any reference back to ``input/<name>`` or ``output/<name>`` when possible."""
    ref = parse_reference(value) if isinstance(value, str) else value
    if isinstance(ref, RemoteRelativePath):
        return ref.path
    text = ref.path if isinstance(ref, LocalPath) else urlsplit(ref.url).path
    matches = _AREA_SEGMENT.findall(text)
    if not matches:
        return None
    area, name = matches[-1]
    return f"{area}/{name}"


def resolve(
    project_id: str,
    reference: str | PathReference,
    context: ResolveContext,
    sandbox_root: str | Path | None = None,
) -> str:
    ref = parse_reference(reference) if isinstance(reference, str) else reference

    if context == ResolveContext.LOCAL:
        if isinstance(ref, LocalPath):
            return ref.path
        if isinstance(ref, RemoteRelativePath):
            relative = ref.path
        else:
            relative = to_sandbox_relative(ref)
            if relative is None:
                # Not a sandbox file; ffmpeg can read the URL directly.
                return ref.url
        area, _, remainder = relative.partition("/")
        return str(project_dir(project_id, sandbox_root) / area / remainder)

    if isinstance(ref, LocalPath):
        return ref.path
    if isinstance(ref, RemoteRelativePath):
        return ref.path
    return to_sandbox_relative(ref) or ref.url


def display_reference(value: str | None) -> str | None:
    if not value:
        return None
    return to_sandbox_relative(value) or value


def _cache_bust_token(url: str) -> str | None:
    for key, token in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == CACHE_BUST_PARAM:
            return token
    return None


def strip_cache_bust(url: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != CACHE_BUST_PARAM]
    return urlunsplit(parts._replace(query=urlencode(query)))


def add_cache_bust(url: str, token: str | None = None) -> str:
    token = token or str(int(time.time() * 1000))
    parts = urlsplit(strip_cache_bust(url))
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append((CACHE_BUST_PARAM, token))
    return urlunsplit(parts._replace(query=urlencode(query)))
