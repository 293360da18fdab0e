"""Mapping of requested file names to data sources."""

from __future__ import annotations

import logging
import os
import re
import stat
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from rtftpd.errors import InvalidPathName, OperationNotImplemented, StringConversion, UriParse
from rtftpd.fetcher.sources import FileFetcher, UriFetcher

log = logging.getLogger(__name__)

_URI_RE = re.compile(r"^[a-z]+(\+[a-z]+)*://")


def _as_str(value: Any) -> str:
    return os.fsdecode(value) if isinstance(value, (bytes, bytearray)) else os.fspath(value)


def _is_uri(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return _URI_RE.match(text) is not None


def _parts(path: Any) -> list[str]:
    parts = []
    for comp in _as_str(path).split("/"):
        if comp in ("", "."):
            continue
        if comp == "..":
            raise InvalidPathName()
        parts.append(comp)
    return parts


def normalize_path(path: Any) -> Path:
    """Make ``path`` relative, dropping root and ``.``; reject ``..``."""
    return Path(*_parts(path))


def lookup_path(root: Any, path: Any, fallback: Any, allow_uri: bool) -> Path | str:
    """Resolve ``path`` below ``root``.

    Symlinks whose target looks like a URI redirect the rest of the path to
    that URI.  Returns a local :class:`Path` or a URI string.
    """
    parts = _parts(path)
    directory = Path(_as_str(root))
    uri: str | None = None
    is_dangling = False

    for comp in parts:
        if uri is not None:
            if uri and not uri.endswith("/"):
                uri += "/"
            uri += comp
            continue

        candidate = directory / comp
        if is_dangling:
            directory = candidate
            continue

        try:
            st = os.lstat(candidate)
        except OSError:
            is_dangling = True
            directory = candidate
            continue

        if stat.S_ISLNK(st.st_mode):
            target = os.readlink(candidate)
            if _is_uri(target):
                uri = target
                continue

        directory = candidate

    if uri is None and fallback is not None and not directory.exists():
        base = _as_str(fallback)
        joined = base + "/".join(parts)
        if _is_uri(base):
            uri = joined
        else:
            directory = Path(joined)

    if uri is None:
        return directory

    try:
        uri.encode("utf-8")
    except UnicodeEncodeError:
        raise StringConversion() from None

    try:
        parsed = urlsplit(uri)
    except ValueError:
        raise UriParse() from None
    if not parsed.scheme:
        raise UriParse()

    if not allow_uri:
        raise OperationNotImplemented()

    return uri


class Builder:
    """Creates the fetcher for a requested file name."""

    def __init__(self, env: Any) -> None:
        self.env = env

    def instantiate(self, path: Any) -> FileFetcher | UriFetcher:
        result = lookup_path(self.env.dir, path, self.env.fallback_uri, self.env.allow_uri())
        log.debug("lookup %s -> %s", path, result)
        if isinstance(result, Path):
            return FileFetcher(result)
        return UriFetcher(result)