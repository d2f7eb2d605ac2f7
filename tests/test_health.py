"""
Unit tests for cubeserve.health module.

Tests cover:
- Healthy probe of a complete tree
- Missing / non-directory static root and required subdirectories
- Recovery pass: cache clear and re-verification of failed paths
- Error counter and interval backoff / reset
- Container signal folded into health
- run_once error handling and the timer thread
"""

import json
import os
import shutil
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

from cubeserve.access import AccessVerifier
from cubeserve.cache import StatsCache
from cubeserve.environment import EnvironmentInspector
from cubeserve.health import HealthProber, ProbeReport


def make_prober(static_root: Path, access_func=os.access, retries=1, **kwargs) -> HealthProber:
    cache = StatsCache(ttl_seconds=60)
    verifier = AccessVerifier(
        cache, max_retries=retries, retry_delay_seconds=0, access_func=access_func
    )
    kwargs.setdefault("interval_seconds", 30)
    kwargs.setdefault("backoff_factor", 1.5)
    kwargs.setdefault("max_interval_seconds", 300)
    return HealthProber(str(static_root), ["backgrounds"], cache, verifier, **kwargs)


class TestProbeHealthyTree:
    """Tests for a correctly laid out static tree."""

    def test_probe_reports_healthy(self, public_dir: Path):
        """Test that a complete tree probes healthy."""
        prober = make_prober(public_dir)

        report = prober.probe()

        assert report.healthy is True
        assert report.errors == []
        assert prober.is_healthy() is True
        assert prober.error_count == 0

    def test_probe_reports_directories(self, public_dir: Path):
        """Test that root and required directories are described."""
        report = make_prober(public_dir).probe()

        assert set(report.per_directory) == {".", "backgrounds"}
        for info in report.per_directory.values():
            assert info["exists"] is True
            assert info["is_directory"] is True
            assert info["permissions"]

    def test_probe_reports_every_file(self, public_dir: Path):
        """Test that every entry of the root and subdirectories is verified."""
        report = make_prober(public_dir).probe()

        assert set(report.per_file) == {
            "app.js",
            "backgrounds",
            "index.html",
            "styles.css",
            "backgrounds/back.png",
            "backgrounds/front.jpg",
        }
        assert report.per_file["app.js"] == {"is_accessible": True, "size": 20}
        assert all(info["is_accessible"] for info in report.per_file.values())

    def test_healthy_probe_does_not_clear_cache(self, public_dir: Path):
        """Test that the cache survives a clean probe."""
        prober = make_prober(public_dir)

        with patch.object(prober.stats_cache, "clear") as clear:
            prober.probe()

        clear.assert_not_called()
        assert prober.stats_cache.size > 0

    def test_not_healthy_before_first_probe(self, public_dir: Path):
        """Test that is_healthy is False until a probe has run."""
        assert make_prober(public_dir).is_healthy() is False


class TestProbeDirectoryFailures:
    """Tests for missing or malformed required directories."""

    def test_missing_subdirectory_is_unhealthy(self, public_dir: Path):
        """Test that a missing required subdirectory fails the probe."""
        shutil.rmtree(public_dir / "backgrounds")

        report = make_prober(public_dir).probe()

        assert report.healthy is False
        assert report.per_directory["backgrounds"]["exists"] is False
        assert any("backgrounds" in error for error in report.errors)

    def test_subdirectory_that_is_a_file_is_unhealthy(self, public_dir: Path):
        """Test that a required subdirectory replaced by a file fails the probe."""
        shutil.rmtree(public_dir / "backgrounds")
        (public_dir / "backgrounds").write_text("oops", encoding="utf-8")

        report = make_prober(public_dir).probe()

        assert report.healthy is False
        assert report.per_directory["backgrounds"]["exists"] is True
        assert report.per_directory["backgrounds"]["is_directory"] is False
        assert any("not a directory" in error for error in report.errors)

    def test_missing_root_is_unhealthy(self, tmp_path: Path):
        """Test that a missing static root fails the probe."""
        report = make_prober(tmp_path / "nowhere").probe()

        assert report.healthy is False
        assert report.per_directory["."]["exists"] is False

    def test_directory_failure_ignores_file_accessibility(self, public_dir: Path):
        """Test that directory failures decide health regardless of files."""
        shutil.rmtree(public_dir / "backgrounds")
        access_func = MagicMock(return_value=True)

        report = make_prober(public_dir, access_func=access_func).probe()

        assert report.healthy is False
        assert report.per_file == {}
        access_func.assert_not_called()


class TestRecoveryPass:
    """Tests for cache clearing and re-verification."""

    def test_transient_failure_recovers_in_same_probe(self, public_dir: Path):
        """Test that a path failing once is re-verified after a cache clear."""
        calls = {"app": 0}

        def access(path, mode):
            if path.endswith("app.js"):
                calls["app"] += 1
                return calls["app"] > 1
            return True

        prober = make_prober(public_dir, access_func=access)

        with patch.object(prober.stats_cache, "clear", wraps=prober.stats_cache.clear) as clear:
            report = prober.probe()

        clear.assert_called_once()
        assert report.healthy is True
        assert report.recovered == [str(public_dir / "app.js")]
        assert report.per_file["app.js"]["is_accessible"] is True
        assert prober.error_count == 0

    def test_persistent_failure_is_unhealthy(self, public_dir: Path):
        """Test that a path still failing after recovery marks the probe unhealthy."""

        def access(path, mode):
            return not path.endswith("styles.css")

        prober = make_prober(public_dir, access_func=access)

        report = prober.probe()

        assert report.healthy is False
        assert report.recovered == []
        assert report.per_file["styles.css"]["is_accessible"] is False
        assert any("styles.css" in error for error in report.errors)
        assert "styles.css still not accessible after cache clear" in report.errors
        assert prober.error_count == 1

    def test_prior_errors_trigger_cache_clear(self, public_dir: Path):
        """Test that a nonzero error counter from a prior run clears the cache."""
        prober = make_prober(public_dir)
        prober.error_count = 2

        with patch.object(prober.stats_cache, "clear", wraps=prober.stats_cache.clear) as clear:
            report = prober.probe()

        clear.assert_called_once()
        assert report.healthy is True
        assert prober.error_count == 0

    def test_request_failure_outside_probed_dirs_is_ignored(self, public_dir: Path):
        """Test that a failing file outside the probed directories cannot block recovery."""
        nested = public_dir / "assets"
        nested.mkdir()
        (nested / "x.js").write_text("x", encoding="utf-8")

        def access(path, mode):
            return not path.endswith("x.js")

        prober = make_prober(public_dir, access_func=access)
        assert prober.verifier.verify(str(nested / "x.js")) is False

        shutil.rmtree(public_dir / "backgrounds")
        assert prober.probe().healthy is False
        (public_dir / "backgrounds").mkdir()

        reports = [prober.probe() for _ in range(3)]

        assert [r.healthy for r in reports] == [True, True, True]
        assert str(nested / "x.js") not in reports[0].recovered
        assert prober.error_count == 0

    def test_previously_failed_probed_path_is_retried(self, public_dir: Path):
        """Test that a request-time failure inside a probed directory is re-verified."""
        target = public_dir / "backgrounds" / "back.png"
        allowed = {"back": False}

        def access(path, mode):
            if path.endswith("back.png"):
                return allowed["back"]
            return True

        prober = make_prober(public_dir, access_func=access)
        assert prober.verifier.verify(str(target)) is False
        prober.error_count = 1
        allowed["back"] = True

        report = prober.probe()

        assert report.healthy is True
        assert prober.verifier.get_state(str(target)).is_accessible is True

    def test_removed_paths_are_not_retried(self, public_dir: Path):
        """Test that stale failures for deleted files do not keep the probe unhealthy."""
        prober = make_prober(public_dir)
        prober.verifier.verify(str(public_dir / "deleted.js"))
        prober.error_count = 1

        report = prober.probe()

        assert report.healthy is True


class TestIntervalBackoff:
    """Tests for the self-tuning probe interval."""

    def test_failure_multiplies_interval(self, tmp_path: Path):
        """Test that a failed probe multiplies the interval by the factor."""
        prober = make_prober(tmp_path / "missing")

        prober.probe()

        assert prober.interval_seconds == 45

    def test_interval_capped_at_ceiling(self, tmp_path: Path):
        """Test that repeated failures stop at the configured ceiling."""
        prober = make_prober(tmp_path / "missing", max_interval_seconds=50)

        prober.probe()
        prober.probe()
        prober.probe()

        assert prober.interval_seconds == 50
        assert prober.error_count == 3

    def test_success_restores_base_interval(self, public_dir: Path):
        """Test that a failure followed by a success returns to the base interval."""
        backgrounds = public_dir / "backgrounds"
        moved = public_dir.parent / "backgrounds-moved"
        backgrounds.rename(moved)
        prober = make_prober(public_dir)

        assert prober.probe().healthy is False
        assert prober.interval_seconds == 45

        moved.rename(backgrounds)
        assert prober.probe().healthy is True

        assert prober.interval_seconds == prober.base_interval_seconds == 30
        assert prober.error_count == 0


class TestContainerSignal:
    """Tests for environment inspection folded into health."""

    def test_mount_drift_makes_probe_unhealthy(self, public_dir: Path):
        """Test that mount-table drift is reported and counted."""
        inspector = MagicMock(spec=EnvironmentInspector)
        inspector.is_container.return_value = True
        inspector.detect_mount_drift.return_value = "mount table changed"
        prober = make_prober(public_dir, inspector=inspector)

        report = prober.probe()

        assert report.healthy is False
        assert report.container is True
        assert "mount table changed" in report.errors
        assert prober.error_count == 1

    def test_no_drift_keeps_probe_healthy(self, public_dir: Path):
        """Test that a stable environment does not affect health."""
        inspector = MagicMock(spec=EnvironmentInspector)
        inspector.is_container.return_value = False
        inspector.detect_mount_drift.return_value = None

        report = make_prober(public_dir, inspector=inspector).probe()

        assert report.healthy is True
        assert report.container is False


class TestRunOnce:
    """Tests for run_once and the timer thread."""

    def test_run_once_swallows_unexpected_errors(self, public_dir: Path):
        """Test that a crashing probe is logged and counted, not raised."""
        listdir = MagicMock(side_effect=RuntimeError("boom"))
        prober = make_prober(public_dir, listdir_func=listdir)

        assert prober.run_once() is None

        assert prober.is_healthy() is False
        assert prober.error_count == 1
        assert prober.last_report.errors == ["boom"]

    def test_listing_error_fails_probe(self, public_dir: Path):
        """Test that an unreadable directory listing is reported."""
        listdir = MagicMock(side_effect=PermissionError("denied"))
        prober = make_prober(public_dir, listdir_func=listdir)

        report = prober.run_once()

        assert report.healthy is False
        assert any("cannot list" in error for error in report.errors)

    def test_timer_thread_runs_probes(self, public_dir: Path):
        """Test that start() probes periodically until stop()."""
        prober = make_prober(public_dir, interval_seconds=0.01, max_interval_seconds=0.05)

        prober.start()
        try:
            deadline = time.monotonic() + 5
            while prober.last_report is None and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            prober.stop()

        assert prober.last_report is not None
        assert prober.is_healthy() is True


class TestProbeReport:
    """Tests for report serialization."""

    def test_to_dict_is_json_serializable(self, public_dir: Path):
        """Test that the report serializes with an ISO timestamp."""
        report = make_prober(public_dir).probe()

        data = report.to_dict()
        encoded = json.dumps(data)

        assert isinstance(report, ProbeReport)
        assert data["timestamp"] == report.timestamp.isoformat()
        assert data["healthy"] is True
        assert "backgrounds/front.jpg" in encoded
