"""
Retrying readability checks for served paths.

Each verification stats the path through the shared StatsCache and then
checks read permission, retrying a bounded number of times with a constant
pause between attempts. The outcome of the latest verification of every
path is kept as an AccessState for diagnostics (/health, probe reports).
"""

import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from .cache import StatsCache

logger = logging.getLogger(__name__)


@dataclass
class AccessState:
    path: str
    attempts: int
    is_accessible: bool
    last_checked_at: datetime
    last_error: str | None = None


class AccessVerifier:
    """
    Verifies that paths can be stat'ed and read, with bounded retries.

    verify() never raises for filesystem errors or unrepresentable paths; it
    always resolves to a bool.
    """

    def __init__(
        self,
        stats_cache: StatsCache,
        max_retries: int = 3,
        retry_delay_seconds: float = 0.1,
        access_func: Callable[[str, int], bool] = os.access,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.stats_cache = stats_cache
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self._access = access_func
        self._sleep = sleep
        self._states: dict[str, AccessState] = {}
        self._lock = threading.Lock()

    def verify(self, path: str, max_retries: int | None = None) -> bool:
        """
        Check that path exists and is readable.

        Args:
            path: Filesystem path to verify.
            max_retries: Attempt budget; defaults to the configured value.

        Returns:
            True on the first successful attempt, False once the budget is spent.
        """
        path = os.fspath(path)
        attempts_allowed = max_retries if max_retries is not None else self.max_retries
        last_error = None

        for attempt in range(1, attempts_allowed + 1):
            try:
                stats = self.stats_cache.get_or_refresh(path)
                if stats is None:
                    last_error = "no stats returned"
                elif self._access(path, os.R_OK):
                    self._record(path, attempt, True, None)
                    if attempt > 1:
                        logger.info("%s became accessible on attempt %d", path, attempt)
                    return True
                else:
                    last_error = f"[Errno 13] Permission denied: '{path}'"
            except (OSError, ValueError) as e:
                # ValueError: paths the OS cannot represent, e.g. embedded NUL
                last_error = str(e)

            logger.debug(
                "Access check for %s failed (attempt %d/%d): %s",
                path,
                attempt,
                attempts_allowed,
                last_error,
            )
            if attempt < attempts_allowed:
                self._sleep(self.retry_delay_seconds)

        logger.warning(
            "%s not accessible after %d attempts: %s", path, attempts_allowed, last_error
        )
        self._record(path, attempts_allowed, False, last_error)
        return False

    def _record(self, path: str, attempts: int, ok: bool, error: str | None) -> None:
        state = AccessState(
            path=path,
            attempts=attempts,
            is_accessible=ok,
            last_checked_at=datetime.now(timezone.utc),
            last_error=error,
        )
        with self._lock:
            self._states[path] = state

    def get_state(self, path: str) -> AccessState | None:
        with self._lock:
            state = self._states.get(os.fspath(path))
            return replace(state) if state else None

    def states(self) -> dict[str, AccessState]:
        """Snapshot of every recorded state, keyed by path."""
        with self._lock:
            return {path: replace(state) for path, state in self._states.items()}

    def failed_paths(self) -> list[str]:
        """Paths whose most recent verification failed."""
        with self._lock:
            return [path for path, state in self._states.items() if not state.is_accessible]
