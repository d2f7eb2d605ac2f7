import logging
import sys
from pathlib import Path

from .config import LogConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"


def _parse_level(name: str) -> int:
    level = getattr(logging, name.upper(), None)
    # logging also exposes non-level names such as BASIC_FORMAT
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: LogConfig) -> None:
    """
    Route cubeserve's logs according to the [logging] section.

    Replaces any handlers already on the root logger, so serve, check and
    probe can each call this once after loading configuration.

    Note:
        - config.file appends UTF-8 lines to that path, creating parent
          directories as needed.
        - config.console writes to stderr, keeping stdout free for the
          check/probe command output.
        - The thread name is part of every line, so request threads and the
          HealthProber thread can be told apart.
        - Werkzeug's per-request access log stays at DEBUG only when running
          at DEBUG; otherwise it is raised to WARNING because the app logs
          each request itself.
    """
    level = _parse_level(config.level)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: list[logging.Handler] = []
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))
    if config.console:
        handlers.append(logging.StreamHandler(sys.stderr))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logging.getLogger("werkzeug").setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
