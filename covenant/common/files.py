"""
Declaration file resolution and loading.

References are resolved against an optional directory context to an absolute
path, read as UTF-8 text off the event loop, and parsed as JSON or YAML.
Parsed content is cached per path while the file's mtime is unchanged.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from covenant.common.config import get_settings
from covenant.common.logging import log_event
from covenant.errors import ContractError, ErrorKind

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

DATA_TYPES = ("json", "yaml", "any")


def resolve_path(reference: PathLike, directory: Optional[PathLike] = None) -> Path:
    """
    Resolve `reference` to an absolute path.

    Relative references are joined onto `directory` when provided, otherwise
    onto the current working directory. Absolute references ignore `directory`.
    """
    raw = os.fspath(reference).strip()
    if not raw:
        raise ContractError(ErrorKind.RESOLUTION, "empty file reference")
    p = Path(raw).expanduser()
    if not p.is_absolute():
        base = Path(os.fspath(directory)).expanduser() if directory is not None else Path.cwd()
        p = base / p
    return p.resolve()


def _parse_text(raw: str, data_type: str, source: Path) -> Any:
    if not raw.strip():
        return {}
    if data_type == "json":
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ContractError(ErrorKind.PARSE, f"content is not valid JSON: {source}", cause=e) from e
    if data_type == "yaml":
        try:
            return yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ContractError(ErrorKind.PARSE, f"content is not valid YAML: {source}", cause=e) from e
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ContractError(ErrorKind.PARSE, f"content is neither valid JSON nor valid YAML: {source}", cause=e) from e


def parse_text(raw: str, data_type: str = "any", *, source: str = "<inline>") -> Any:
    """Parse already-read declaration text (JSON first, then YAML for `any`)."""
    dt = _normalize_data_type(data_type)
    return _parse_text(raw, dt, Path(source))


def _normalize_data_type(data_type: str) -> str:
    dt = (data_type or "").strip().lower()
    if dt not in DATA_TYPES:
        raise ContractError(
            ErrorKind.INVALID_ARGUMENT,
            f"unsupported data type '{data_type}' (supported: {', '.join(DATA_TYPES)})",
        )
    return dt


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ContractError(ErrorKind.RESOLUTION, f"no such file '{path}'", cause=e) from e
    except IsADirectoryError as e:
        raise ContractError(ErrorKind.RESOLUTION, f"not a file '{path}'", cause=e) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ContractError(ErrorKind.RESOLUTION, f"unable to read '{path}'", cause=e) from e


def _stat_mtime_ns(path: Path) -> int:
    try:
        st = path.stat()
    except FileNotFoundError as e:
        raise ContractError(ErrorKind.RESOLUTION, f"no such file '{path}'", cause=e) from e
    except OSError as e:
        raise ContractError(ErrorKind.RESOLUTION, f"unable to stat '{path}'", cause=e) from e
    return st.st_mtime_ns


async def read_data_file(path: PathLike, data_type: str = "any") -> Any:
    """
    Read and parse a declaration file without caching.

    Raises:
    - ContractError(RESOLUTION) when the file is missing or unreadable
    - ContractError(PARSE) when the content does not parse as `data_type`
    """
    dt = _normalize_data_type(data_type)
    p = resolve_path(path)
    raw = await asyncio.to_thread(_read_text, p)
    return _parse_text(raw, dt, p)


class DataFileCache:
    """
    Parsed-content cache keyed by absolute path, invalidated by mtime and
    bounded LRU (`max_entries`, default `Settings.FILE_CACHE_SIZE`).

    Callers receive a deep copy so cached content cannot be mutated through
    a returned definition.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._entries: "OrderedDict[tuple[Path, str], tuple[int, Any]]" = OrderedDict()

    async def load(self, path: PathLike, data_type: str = "any") -> Any:
        dt = _normalize_data_type(data_type)
        p = resolve_path(path)
        mtime_ns = await asyncio.to_thread(_stat_mtime_ns, p)
        key = (p, dt)

        with self._lock:
            hit = self._entries.get(key)
            if hit is not None:
                self._entries.move_to_end(key)
        if hit is not None and hit[0] == mtime_ns:
            log_event(logger, "files.cache_hit", severity="DEBUG", file_path=str(p))
            return copy.deepcopy(hit[1])

        raw = await asyncio.to_thread(_read_text, p)
        data = _parse_text(raw, dt, p)
        limit = self._max_entries or get_settings().FILE_CACHE_SIZE
        with self._lock:
            self._entries[key] = (mtime_ns, data)
            self._entries.move_to_end(key)
            while len(self._entries) > limit:
                self._entries.popitem(last=False)
        return copy.deepcopy(data)

    def invalidate(self, path: Optional[PathLike] = None) -> None:
        with self._lock:
            if path is None:
                self._entries.clear()
                return
            p = resolve_path(path)
            for key in [k for k in self._entries if k[0] == p]:
                del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_default_cache = DataFileCache()


def default_cache() -> DataFileCache:
    return _default_cache


async def load_data_file(path: PathLike, data_type: str = "any") -> Any:
    """
    Load a declaration file, reusing the process-wide mtime cache when enabled.
    """
    if get_settings().FILE_CACHE_ENABLED:
        return await _default_cache.load(path, data_type)
    return await read_data_file(path, data_type)
