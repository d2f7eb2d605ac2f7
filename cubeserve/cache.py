import math
import os
import stat
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from cachetools import TTLCache


@dataclass
class FileStats:
    """Filesystem metadata captured from a single stat call"""

    size: int
    mode: int
    is_dir: bool
    mtime: datetime

    @classmethod
    def from_stat_result(cls, result: os.stat_result) -> "FileStats":
        return cls(
            size=result.st_size,
            mode=result.st_mode,
            is_dir=stat.S_ISDIR(result.st_mode),
            mtime=datetime.fromtimestamp(result.st_mtime, tz=timezone.utc),
        )

    @property
    def permissions(self) -> str:
        """Permission bits in octal, e.g. '644'."""
        return format(stat.S_IMODE(self.mode), "o")


@dataclass
class CacheEntry:
    path: str
    stats: FileStats
    captured_at: float


class StatsCache:
    """
    Cache for file metadata keyed by path.

    Thread-safe cache that memoizes stat lookups with TTL-based expiration.
    An entry is served only while ``now - captured_at < ttl``; older entries
    are refreshed from the filesystem on the next lookup. Lookup failures are
    never cached.

    The cache is unbounded: its size follows the number of distinct paths
    ever looked up, which in practice is the fixed set of served files.
    """

    def __init__(
        self,
        ttl_seconds: float,
        stat_func: Callable[[str], os.stat_result] = os.stat,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.stat_func = stat_func
        self._clock = clock
        self._cache: TTLCache = TTLCache(maxsize=math.inf, ttl=ttl_seconds, timer=clock)
        self._lock = threading.Lock()

    def get_or_refresh(self, path: str) -> FileStats:
        """
        Return cached stats for path, refreshing them when missing or stale.

        Args:
            path: Filesystem path to look up.

        Returns:
            FileStats for the path.

        Raises:
            FileNotFoundError: If the path does not exist.
            PermissionError: If the path cannot be stat'ed.
        """
        key = os.fspath(path)
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                return entry.stats

        # Stat outside the lock; concurrent refreshes of the same path are
        # harmless (last write wins).
        stats = FileStats.from_stat_result(self.stat_func(key))

        with self._lock:
            self._cache[key] = CacheEntry(path=key, stats=stats, captured_at=self._clock())
        return stats

    def peek(self, path: str) -> CacheEntry | None:
        """Return the live entry for path without refreshing it."""
        with self._lock:
            return self._cache.get(os.fspath(path))

    def invalidate(self, path: str) -> None:
        """
        Invalidate cache for a specific path.

        Args:
            path: The file path to invalidate.
        """
        with self._lock:
            self._cache.pop(os.fspath(path), None)

    def clear(self) -> None:
        """Drop every cached entry."""
        with self._lock:
            self._cache.clear()

    @property
    def size(self) -> int:
        """Number of live (unexpired) entries."""
        with self._lock:
            self._cache.expire()
            return len(self._cache)
