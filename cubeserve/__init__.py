__version__ = "0.1.0"

# Public API exports
from .access import AccessState, AccessVerifier
from .cache import CacheEntry, FileStats, StatsCache
from .config import (
    AppConfig,
    CacheConfig,
    HttpConfig,
    LogConfig,
    PathsConfig,
    ProbeConfig,
    RetryConfig,
    ServerConfig,
    load_config,
)
from .environment import EnvironmentInspector
from .health import HealthProber, ProbeReport
from .server import StaticResponder, create_app

__all__ = [
    "__version__",
    # Configuration
    "AppConfig",
    "ServerConfig",
    "PathsConfig",
    "CacheConfig",
    "RetryConfig",
    "ProbeConfig",
    "HttpConfig",
    "LogConfig",
    "load_config",
    # Cache
    "CacheEntry",
    "FileStats",
    "StatsCache",
    # Access checks
    "AccessState",
    "AccessVerifier",
    # Health
    "EnvironmentInspector",
    "HealthProber",
    "ProbeReport",
    # HTTP
    "StaticResponder",
    "create_app",
]
