"""
Utility Functions
=================

Common utilities used across the Beatmap Recs system.
"""

import json
import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .config import CACHE_DIR

logger = logging.getLogger(__name__)

ProgressSink = Callable[[float], None]


class CacheKind(Enum):
    """How a cached value is stored; chosen by the caller."""
    TEXT = "Text"
    BINARY = "Bin"
    STRUCTURED = "Json"


class Cache:
    """Simple file-based key-value cache with optional TTL."""

    def __init__(self, cache_dir: Union[str, Path] = CACHE_DIR, ttl_hours: Optional[float] = None):
        """
        Initialize cache.

        Args:
            cache_dir: Directory for cache files (created on first store)
            ttl_hours: Time-to-live in hours, None to keep entries forever
        """
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_hours * 3600 if ttl_hours is not None else None

    def _path(self, key: str, kind: CacheKind) -> Path:
        return self.cache_dir / f"{kind.value}_{key}.ch"

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and time.time() - stored_at > self.ttl_seconds

    def store(self, key: str, value: Any, kind: CacheKind = CacheKind.STRUCTURED) -> None:
        """
        Store a value under key.

        Args:
            key: Cache key
            value: str for TEXT, bytes for BINARY, JSON-compatible data
                for STRUCTURED
            kind: Storage kind

        Raises:
            TypeError: if value does not match kind
        """
        if kind is CacheKind.TEXT and not isinstance(value, str):
            raise TypeError("TEXT cache values must be str")
        if kind is CacheKind.BINARY and not isinstance(value, (bytes, bytearray)):
            raise TypeError("BINARY cache values must be bytes")

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(key, kind)

        if kind is CacheKind.TEXT:
            path.write_text(value, encoding="utf-8")
        elif kind is CacheKind.BINARY:
            path.write_bytes(bytes(value))
        else:
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"timestamp": time.time(), "data": value}, f)

    def retrieve_or_default(
        self,
        key: str,
        default: Any = None,
        kind: CacheKind = CacheKind.STRUCTURED
    ) -> Any:
        """Get value from cache, or default when missing, expired or unreadable."""
        path = self._path(key, kind)
        if not path.exists():
            return default

        try:
            if kind is CacheKind.STRUCTURED:
                with open(path, "r", encoding="utf-8") as f:
                    cached = json.load(f)
                if self._expired(cached.get("timestamp", 0)):
                    path.unlink()
                    return default
                return cached.get("data", default)

            if self._expired(path.stat().st_mtime):
                path.unlink()
                return default
            if kind is CacheKind.TEXT:
                return path.read_text(encoding="utf-8")
            return path.read_bytes()
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", path.name, e)
            return default

    def clear(self) -> int:
        """Clear all cache files. Returns number of files deleted."""
        count = 0
        if not self.cache_dir.exists():
            return count
        for cache_file in self.cache_dir.glob("*.ch"):
            try:
                cache_file.unlink()
                count += 1
            except OSError:
                logger.warning("Could not delete %s", cache_file)
        return count


class ProgressReporter:
    """
    Forwards progress fractions to a sink, clamped to [0, 1] and never
    going backwards. Safe to call from worker threads.
    """

    def __init__(self, sink: Optional[ProgressSink] = None):
        self._sink = sink
        self._lock = threading.Lock()
        self.current = 0.0

    def report(self, fraction: float):
        """Report overall progress."""
        with self._lock:
            fraction = min(max(float(fraction), 0.0), 1.0)
            if fraction < self.current:
                return
            self.current = fraction
            if self._sink is not None:
                self._sink(fraction)

    def report_step(self, start: float, end: float, done: int, total: int):
        """Report done/total of a phase that spans [start, end]."""
        if total <= 0:
            self.report(end)
            return
        self.report(start + (end - start) * min(done, total) / total)
