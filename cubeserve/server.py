"""
Flask application serving the static tree with an SPA fallback.

Request flow: resolve the path under the static root, verify it through the
AccessVerifier and send it with cache metadata, or fall through to the entry
document. Only an inaccessible entry document turns into a 500.
"""

import logging
import os
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path

from flask import Flask, Response, jsonify, request, send_file
from werkzeug.exceptions import HTTPException
from werkzeug.utils import safe_join

from .access import AccessVerifier
from .cache import StatsCache
from .config import AppConfig
from .environment import EnvironmentInspector
from .health import HealthProber

logger = logging.getLogger(__name__)


class StaticResponder:
    """Serves files from the static root, gated by the AccessVerifier."""

    def __init__(
        self,
        static_root: str,
        entry_document: str,
        stats_cache: StatsCache,
        verifier: AccessVerifier,
        max_age_seconds: int = 86400,
    ):
        self.static_root = os.fspath(static_root)
        self.entry_document = os.fspath(entry_document)
        self.stats_cache = stats_cache
        self.verifier = verifier
        self.max_age_seconds = max_age_seconds

    def resolve(self, request_path: str) -> str | None:
        """Map a URL path onto the static root; None for traversal attempts."""
        return safe_join(self.static_root, request_path.lstrip("/"))

    def respond(self, request_path: str) -> Response | None:
        """
        Serve request_path if it names an accessible file.

        Returns:
            A response, or None to fall through to the next handler.
        """
        resolved = self.resolve(request_path)
        if resolved is None:
            logger.warning("Rejected path outside static root: %s", request_path)
            return None

        try:
            stats = self.stats_cache.get_or_refresh(resolved)
        except (FileNotFoundError, NotADirectoryError):
            return None
        except (OSError, ValueError) as e:
            logger.warning("Cannot stat %s: %s", resolved, e)
            return None

        if stats.is_dir:
            return None

        if not self.verifier.verify(resolved):
            logger.warning("Falling through for inaccessible file: %s", resolved)
            return None

        try:
            response = send_file(
                resolved,
                max_age=self.max_age_seconds,
                etag=True,
                last_modified=stats.mtime,
                conditional=True,
            )
        except OSError as e:
            logger.error("Error serving %s: %s", resolved, e)
            return None

        logger.debug(
            "Serving file: requested=%s resolved=%s size=%d", request_path, resolved, stats.size
        )
        return response

    def serve_entry_document(self) -> Response:
        """Send the entry document, or a JSON 500 when it cannot be verified."""
        if not self.verifier.verify(self.entry_document):
            state = self.verifier.get_state(self.entry_document)
            logger.error(
                "Entry document not accessible: %s (%s)",
                self.entry_document,
                state.last_error if state else "unknown",
            )
            response = jsonify({"status": "error", "message": "Entry document unavailable"})
            response.status_code = 500
            return response

        try:
            response = send_file(self.entry_document, mimetype="text/html", conditional=True)
        except OSError as e:
            logger.error("Error serving entry document: %s", e)
            response = jsonify({"status": "error", "message": "Entry document unavailable"})
            response.status_code = 500
            return response

        response.headers["Cache-Control"] = "no-cache"
        return response


def _list_directory(directory: Path, verifier: AccessVerifier, stats_cache: StatsCache) -> list:
    """Describe every entry of directory for the /health listing."""
    listing = []
    for name in sorted(os.listdir(directory)):
        path = str(directory / name)
        accessible = verifier.verify(path)
        state = verifier.get_state(path)
        cached = stats_cache.peek(path)
        stats = cached.stats if cached else None
        listing.append(
            {
                "name": name,
                "size": stats.size if stats else None,
                "permissions": stats.permissions if stats else None,
                "is_directory": stats.is_dir if stats else os.path.isdir(path),
                "is_accessible": accessible,
                "last_checked": state.last_checked_at.isoformat() if state else None,
            }
        )
    return listing


def create_app(
    config: AppConfig,
    stats_cache: StatsCache | None = None,
    verifier: AccessVerifier | None = None,
    prober: HealthProber | None = None,
    inspector: EnvironmentInspector | None = None,
) -> Flask:
    """
    Build the Flask application.

    Components not passed in are created from config, so tests and the CLI
    can share one StatsCache/AccessVerifier between the app and the prober.
    """
    static_root = config.paths.static_root_path
    entry_document = config.paths.entry_document_path

    if stats_cache is None:
        stats_cache = StatsCache(config.cache.ttl_seconds)
    if verifier is None:
        verifier = AccessVerifier(
            stats_cache,
            max_retries=config.retry.attempts,
            retry_delay_seconds=config.retry.delay_seconds,
        )
    if inspector is None:
        inspector = EnvironmentInspector()

    responder = StaticResponder(
        str(static_root),
        str(entry_document),
        stats_cache,
        verifier,
        max_age_seconds=config.http.max_age_seconds,
    )
    started_at = time.monotonic()

    # Built-in static route disabled; the responder owns static serving
    app = Flask(__name__, static_folder=None)
    app.extensions["cubeserve"] = {
        "stats_cache": stats_cache,
        "verifier": verifier,
        "prober": prober,
        "responder": responder,
    }

    @app.before_request
    def log_request():
        logger.info("%s %s", request.method, request.path)
        logger.debug("Headers: %s", dict(request.headers))

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = (
            f"max-age={config.http.hsts_max_age_seconds}; includeSubDomains"
        )
        return response

    @app.errorhandler(Exception)
    def handle_error(error):
        if isinstance(error, HTTPException):
            return error
        logger.error("Server error: %s", error, exc_info=True)
        body = {"status": "error", "message": str(error)}
        if config.server.is_development:
            body["stack"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        return jsonify(body), 500

    @app.route("/favicon.ico")
    def favicon():
        return Response(status=204)

    @app.route("/health")
    def health():
        """Health check endpoint with file listings and probe state."""
        try:
            files = {"public": _list_directory(static_root, verifier, stats_cache)}
            for name in config.paths.required_dirs:
                files[name] = _list_directory(static_root / name, verifier, stats_cache)
        except OSError as e:
            logger.error("Health check error: %s", e)
            return jsonify({"status": "error", "error": str(e)}), 500

        environment = inspector.snapshot()
        environment["container"] = inspector.is_container()

        probe_state = None
        status = "ok"
        if prober is not None:
            last = prober.last_report
            probe_state = {
                "healthy": prober.is_healthy(),
                "error_count": prober.error_count,
                "interval_seconds": prober.interval_seconds,
                "last_run": last.timestamp.isoformat() if last else None,
            }
            if last is not None and not last.healthy:
                status = "error"

        body = {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - started_at, 3),
            "environment": environment,
            "paths": {"public": str(static_root), "index": str(entry_document)},
            "files": files,
            "cache": {"size": stats_cache.size, "ttl_seconds": stats_cache.ttl_seconds},
            "probe": probe_state,
        }
        return jsonify(body), 200 if status == "ok" else 503

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def static_or_entry(path):
        if path:
            response = responder.respond(path)
            if response is not None:
                return response
        logger.debug("Serving entry document for route: /%s", path)
        return responder.serve_entry_document()

    return app
