"""
Periodic filesystem health probe.

A probe stats the static root and its required subdirectories, verifies
every entry through the AccessVerifier, and on failure clears the StatsCache
and re-verifies the failed paths once (recovery pass). The probe interval
backs off multiplicatively while unhealthy and snaps back to the base value
on the first healthy run.
"""

import logging
import os
import stat
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from .access import AccessVerifier
from .cache import StatsCache
from .environment import EnvironmentInspector

logger = logging.getLogger(__name__)


@dataclass
class ProbeReport:
    timestamp: datetime
    healthy: bool = False
    per_directory: dict[str, dict] = field(default_factory=dict)
    per_file: dict[str, dict] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    container: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class HealthProber:
    """
    Re-validates the served tree on a timer and tracks aggregate health.

    Shares its StatsCache and AccessVerifier with the request handlers.
    """

    def __init__(
        self,
        static_root: str,
        required_dirs: list[str],
        stats_cache: StatsCache,
        verifier: AccessVerifier,
        interval_seconds: float = 30.0,
        backoff_factor: float = 1.5,
        max_interval_seconds: float = 300.0,
        inspector: EnvironmentInspector | None = None,
        stat_func: Callable[[str], os.stat_result] = os.stat,
        listdir_func: Callable[[str], list[str]] = os.listdir,
    ):
        self.static_root = os.fspath(static_root)
        self.required_dirs = list(required_dirs)
        self.stats_cache = stats_cache
        self.verifier = verifier
        self.base_interval_seconds = interval_seconds
        self.interval_seconds = interval_seconds
        self.backoff_factor = backoff_factor
        self.max_interval_seconds = max_interval_seconds
        self.inspector = inspector
        self._stat = stat_func
        self._listdir = listdir_func

        self.error_count = 0
        self.last_report: ProbeReport | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def _directories(self) -> dict[str, str]:
        dirs = {".": self.static_root}
        for name in self.required_dirs:
            dirs[name] = os.path.join(self.static_root, name)
        return dirs

    def _check_directories(self, report: ProbeReport) -> bool:
        ok = True
        for name, path in self._directories().items():
            try:
                result = self._stat(path)
            except FileNotFoundError:
                report.per_directory[name] = {
                    "exists": False,
                    "is_directory": False,
                    "permissions": None,
                }
                report.errors.append(f"required directory missing: {path}")
                ok = False
                continue
            except OSError as e:
                report.per_directory[name] = {
                    "exists": False,
                    "is_directory": False,
                    "permissions": None,
                }
                report.errors.append(f"cannot stat {path}: {e}")
                ok = False
                continue

            is_dir = stat.S_ISDIR(result.st_mode)
            report.per_directory[name] = {
                "exists": True,
                "is_directory": is_dir,
                "permissions": format(stat.S_IMODE(result.st_mode), "o"),
            }
            if not is_dir:
                report.errors.append(f"not a directory: {path}")
                ok = False
        return ok

    def _verify_entries(self, report: ProbeReport) -> tuple[list[str], bool]:
        failed = []
        listed = True
        for name, directory in self._directories().items():
            try:
                entries = sorted(self._listdir(directory))
            except OSError as e:
                report.errors.append(f"cannot list {directory}: {e}")
                listed = False
                continue

            for entry in entries:
                path = os.path.join(directory, entry)
                rel_path = entry if name == "." else f"{name}/{entry}"
                accessible = self.verifier.verify(path)
                cached = self.stats_cache.peek(path)
                report.per_file[rel_path] = {
                    "is_accessible": accessible,
                    "size": cached.stats.size if cached else None,
                }
                if not accessible:
                    state = self.verifier.get_state(path)
                    report.errors.append(
                        f"{rel_path} not accessible: {state.last_error if state else 'unknown'}"
                    )
                    failed.append(path)
        return failed, listed

    def _recover(self, failed: list[str], report: ProbeReport) -> list[str]:
        # Only earlier failures that still exist inside the probed directories
        probed = {os.path.normpath(d) for d in self._directories().values()}
        previous = [
            p
            for p in self.verifier.failed_paths()
            if os.path.dirname(os.path.normpath(p)) in probed and os.path.lexists(p)
        ]
        candidates = list(dict.fromkeys(failed + previous))
        logger.info(
            "Clearing stats cache (%d entries) and re-verifying %d path(s)",
            self.stats_cache.size,
            len(candidates),
        )
        self.stats_cache.clear()

        still_failed = []
        for path in candidates:
            rel_path = os.path.relpath(path, self.static_root).replace(os.sep, "/")
            if self.verifier.verify(path, max_retries=1):
                report.recovered.append(path)
                if rel_path in report.per_file:
                    cached = self.stats_cache.peek(path)
                    report.per_file[rel_path] = {
                        "is_accessible": True,
                        "size": cached.stats.size if cached else None,
                    }
            else:
                report.errors.append(f"{rel_path} still not accessible after cache clear")
                still_failed.append(path)
        return still_failed

    def probe(self) -> ProbeReport:
        """Run one probe, update health state and the probe interval."""
        report = ProbeReport(timestamp=datetime.now(timezone.utc))
        prior_errors = self.error_count

        dirs_ok = self._check_directories(report)
        failed: list[str] = []
        listed = False
        if dirs_ok:
            failed, listed = self._verify_entries(report)
            if failed or prior_errors or not listed:
                failed = self._recover(failed, report)

        drift = None
        if self.inspector is not None:
            report.container = self.inspector.is_container()
            drift = self.inspector.detect_mount_drift()
            if drift:
                report.errors.append(drift)

        report.healthy = dirs_ok and listed and not failed and drift is None
        self._apply_result(report)
        self.last_report = report
        return report

    def _apply_result(self, report: ProbeReport) -> None:
        if report.healthy:
            if self.error_count:
                logger.info("Health probe recovered after %d failed run(s)", self.error_count)
            self.error_count = 0
            self.interval_seconds = self.base_interval_seconds
            return

        self.error_count += 1
        self.interval_seconds = min(
            self.interval_seconds * self.backoff_factor, self.max_interval_seconds
        )
        logger.warning(
            "Health probe failed (%d consecutive), next probe in %.1fs: %s",
            self.error_count,
            self.interval_seconds,
            "; ".join(report.errors),
        )

    def is_healthy(self) -> bool:
        return self.last_report is not None and self.last_report.healthy

    def run_once(self) -> ProbeReport | None:
        """Probe, logging instead of raising on unexpected errors."""
        try:
            return self.probe()
        except Exception as e:
            logger.exception("Health probe crashed: %s", e)
            failed = ProbeReport(timestamp=datetime.now(timezone.utc), errors=[str(e)])
            self._apply_result(failed)
            self.last_report = failed
            return None

    def _run(self) -> None:
        logger.info("Health prober started (interval %.1fs)", self.interval_seconds)
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
        logger.info("Health prober stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="HealthProber")
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
