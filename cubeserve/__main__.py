"""
cubeserve - Main Entry Point

This module provides the CLI interface and wires up all components to serve
the cube navigation SPA with periodic filesystem health probing.
"""

import argparse
import errno
import json
import logging
import signal
import sys
import threading

from werkzeug.serving import make_server

from .access import AccessVerifier
from .cache import StatsCache
from .config import AppConfig, load_config
from .environment import EnvironmentInspector
from .health import HealthProber
from .logger import setup_logging
from .server import create_app

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="cubeserve - Static SPA server with filesystem health probing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cubeserve serve --port 3002 --static-root ./public
  cubeserve serve --config cubeserve.ini
  cubeserve check --static-root ./public
  cubeserve probe
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--config", help="Path to configuration file")
    serve_parser.add_argument("--host", help="Address to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to bind to")
    serve_parser.add_argument("--static-root", help="Directory holding the built SPA")
    serve_parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    # Check command
    check_parser = subparsers.add_parser("check", help="Verify the static tree and exit")
    check_parser.add_argument("--config", help="Path to configuration file")
    check_parser.add_argument("--static-root", help="Directory holding the built SPA")

    # Probe command
    probe_parser = subparsers.add_parser("probe", help="Run one health probe and print it")
    probe_parser.add_argument("--config", help="Path to configuration file")
    probe_parser.add_argument("--static-root", help="Directory holding the built SPA")

    return parser.parse_args(argv)


def _load(args) -> AppConfig:
    return load_config(
        config_path=getattr(args, "config", None),
        host=getattr(args, "host", None),
        port=getattr(args, "port", None),
        static_root=getattr(args, "static_root", None),
        debug=getattr(args, "verbose", False),
    )


def verify_startup(config: AppConfig) -> list[str]:
    """
    Check the static root, required subdirectories and entry document.

    Returns:
        A list of problems; empty when the tree can be served.
    """
    problems = []
    static_root = config.paths.static_root_path

    if not static_root.exists():
        problems.append(f"Static root not found: {static_root}")
        return problems
    if not static_root.is_dir():
        problems.append(f"Static root is not a directory: {static_root}")
        return problems

    for name in config.paths.required_dirs:
        subdir = static_root / name
        if not subdir.exists():
            problems.append(f"Required directory not found: {subdir}")
        elif not subdir.is_dir():
            problems.append(f"Required path is not a directory: {subdir}")

    entry = config.paths.entry_document_path
    if not entry.is_file():
        problems.append(f"Entry document not found: {entry}")

    return problems


def build_components(config: AppConfig):
    """Create the shared cache, verifier, inspector and prober."""
    stats_cache = StatsCache(config.cache.ttl_seconds)
    verifier = AccessVerifier(
        stats_cache,
        max_retries=config.retry.attempts,
        retry_delay_seconds=config.retry.delay_seconds,
    )
    inspector = EnvironmentInspector()
    prober = HealthProber(
        str(config.paths.static_root_path),
        config.paths.required_dirs,
        stats_cache,
        verifier,
        interval_seconds=config.probe.interval_seconds,
        backoff_factor=config.probe.backoff_factor,
        max_interval_seconds=config.probe.max_interval_seconds,
        inspector=inspector if config.probe.container_checks else None,
    )
    return stats_cache, verifier, inspector, prober


def _log_startup(config: AppConfig, inspector: EnvironmentInspector) -> None:
    from . import __version__

    static_root = config.paths.static_root_path
    logger.info("Starting cubeserve v%s", __version__)
    logger.info("Static root: %s", static_root)
    logger.info("Entry document: %s", config.paths.entry_document_path)
    logger.info("Environment: %s", inspector.snapshot())
    if inspector.is_container():
        logger.info("Container environment detected")

    listing = {"public": sorted(p.name for p in static_root.iterdir())}
    for name in config.paths.required_dirs:
        listing[name] = sorted(p.name for p in (static_root / name).iterdir())
    logger.info("Available files: %s", listing)


def cmd_serve(args):
    """
    Handle the serve command.

    Verifies the static tree, starts the prober and serves until SIGTERM or
    Ctrl+C, then drains in-flight requests.
    """
    server = None
    prober = None

    try:
        # 1. Load Configuration
        config = _load(args)

        # 2. Setup Logging
        setup_logging(config.logging)

        # 3. Verify the static tree before binding
        problems = verify_startup(config)
        if problems:
            for problem in problems:
                logger.error(problem)
            print(f"[ERROR] {problems[0]}")
            return 1

        # 4. Build shared components
        stats_cache, verifier, inspector, prober = build_components(config)
        _log_startup(config, inspector)

        # 5. Initial probe, then the periodic timer
        report = prober.run_once()
        if report is not None and not report.healthy:
            logger.warning("Initial health probe unhealthy: %s", "; ".join(report.errors))
        if config.probe.enabled:
            prober.start()

        # 6. Bind the listener
        app = create_app(
            config,
            stats_cache=stats_cache,
            verifier=verifier,
            prober=prober,
            inspector=inspector,
        )
        try:
            server = make_server(config.server.host, config.server.port, app, threaded=True)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                logger.error("Port %d is already in use", config.server.port)
                print(f"[ERROR] Port {config.server.port} is already in use")
            else:
                logger.error("Failed to bind %s:%d: %s", config.server.host, config.server.port, e)
                print(f"[ERROR] Failed to start server: {e}")
            return 1
        # Join request threads on server_close so shutdown drains them
        server.daemon_threads = False

        def handle_signal(signum, frame):
            logger.info("Received %s, shutting down...", signal.Signals(signum).name)
            # shutdown() blocks until serve_forever returns; call it off the main thread
            threading.Thread(target=server.shutdown, name="Shutdown").start()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        logger.info("Server running at http://%s:%d", config.server.host, config.server.port)
        print(f"[OK] Serving {config.paths.static_root_path}")
        print(f"     http://{config.server.host}:{config.server.port}")
        print("     Press Ctrl+C to stop.")

        server.serve_forever()
        logger.info("Listener stopped, waiting for in-flight requests")
        return 0

    except ValueError as e:
        # Configuration validation errors
        print(f"[ERROR] Configuration error: {e}")
        return 1
    except FileNotFoundError as e:
        # Config file not found
        print(f"[ERROR] {e}")
        return 1
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        print(f"[ERROR] Fatal error: {e}")
        return 1
    finally:
        if server is not None:
            server.server_close()
            logger.info("Server closed")
        if prober is not None:
            prober.stop()


def cmd_check(args):
    """Handle the check command: startup verification only."""
    try:
        config = _load(args)
    except (ValueError, FileNotFoundError) as e:
        print(f"[ERROR] {e}")
        return 1

    setup_logging(config.logging)

    problems = verify_startup(config)
    if problems:
        for problem in problems:
            print(f"[ERROR] {problem}")
        return 1

    print(f"[OK] {config.paths.static_root_path} is ready to serve")
    return 0


def cmd_probe(args):
    """Handle the probe command: run one probe and print the report as JSON."""
    try:
        config = _load(args)
    except (ValueError, FileNotFoundError) as e:
        print(f"[ERROR] {e}")
        return 1

    setup_logging(config.logging)

    *_, prober = build_components(config)
    report = prober.probe()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.healthy else 1


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "check":
        return cmd_check(args)
    elif args.command == "probe":
        return cmd_probe(args)
    else:
        print("Usage: cubeserve <command> [options]")
        print()
        print("Commands:")
        print("  serve    Serve the static tree over HTTP")
        print("  check    Verify the static tree and exit")
        print("  probe    Run one health probe and print the report")
        print()
        print("Run 'cubeserve <command> --help' for more information.")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
