"""
Runtime environment inspection.

Provides the environment snapshot reported by /health and logged at startup,
plus the rudimentary container signals folded into probe health: marker
files, orchestration environment variables and mount-table drift.
"""

import hashlib
import logging
import os
import threading
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

SNAPSHOT_VARIABLES = ("APP_ENV", "NODE_ENV", "PORT", "RAILWAY_WORKSPACE_DIR")

CONTAINER_MARKERS = ("/.dockerenv", "/run/.containerenv")

ORCHESTRATION_VARIABLES = (
    "KUBERNETES_SERVICE_HOST",
    "RAILWAY_ENVIRONMENT",
    "RAILWAY_PROJECT_ID",
    "ECS_CONTAINER_METADATA_URI",
    "container",
)

MOUNT_TABLE = "/proc/self/mounts"


class EnvironmentInspector:
    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        server_dir: str | None = None,
        mount_table: str = MOUNT_TABLE,
        markers: tuple[str, ...] = CONTAINER_MARKERS,
    ):
        self._environ = os.environ if environ is None else environ
        self.server_dir = server_dir or str(Path(__file__).resolve().parent)
        self._mount_table = Path(mount_table)
        self._markers = markers
        self._mounts_digest: str | None = None
        self._lock = threading.Lock()

    def snapshot(self) -> dict:
        """Selected environment variables plus working and server directories."""
        data = {name: self._environ.get(name) for name in SNAPSHOT_VARIABLES}
        data["cwd"] = os.getcwd()
        data["server_dir"] = self.server_dir
        return data

    def is_container(self) -> bool:
        if any(self._environ.get(name) for name in ORCHESTRATION_VARIABLES):
            return True
        return any(os.path.exists(marker) for marker in self._markers)

    def _read_mounts_digest(self) -> str | None:
        try:
            return hashlib.sha256(self._mount_table.read_bytes()).hexdigest()
        except OSError:
            # No mount table on this platform
            return None

    def detect_mount_drift(self) -> str | None:
        """
        Compare the mount table against the last observation.

        Returns:
            A description of the change, or None when unchanged, unreadable,
            or observed for the first time.
        """
        digest = self._read_mounts_digest()
        with self._lock:
            previous, self._mounts_digest = self._mounts_digest, digest
        if previous is None or digest is None or previous == digest:
            return None
        logger.warning("Mount table changed since last probe")
        return f"mount table {self._mount_table} changed since last probe"
