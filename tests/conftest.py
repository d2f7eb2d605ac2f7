"""
Shared pytest fixtures for cubeserve tests.
"""

from collections.abc import Generator
from pathlib import Path

import pytest

from cubeserve.access import AccessVerifier
from cubeserve.cache import StatsCache
from cubeserve.config import (
    AppConfig,
    CacheConfig,
    HttpConfig,
    LogConfig,
    PathsConfig,
    ProbeConfig,
    RetryConfig,
    ServerConfig,
)

INDEX_HTML = "<!DOCTYPE html><html><body><div id='cube'></div></body></html>"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def index_html() -> str:
    return INDEX_HTML


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def public_dir(tmp_path: Path) -> Path:
    """
    Creates a served tree: index.html, two assets and a backgrounds/ folder.

    Returns:
        Path to the public directory.
    """
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (public / "app.js").write_text("console.log('cube');", encoding="utf-8")
    (public / "styles.css").write_text("body { margin: 0; }", encoding="utf-8")

    backgrounds = public / "backgrounds"
    backgrounds.mkdir()
    (backgrounds / "front.jpg").write_bytes(b"\xff\xd8\xff\xe0fakejpeg")
    (backgrounds / "back.png").write_bytes(b"\x89PNGfakepng")
    return public


@pytest.fixture
def tmp_config_file(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Creates a temporary INI configuration file for config tests.

    Returns:
        Path to the temporary config file.
    """
    config_content = """[server]
host = 127.0.0.1
port = 8081
environment = development

[paths]
static_root = /srv/cube/public
entry_document = app.html
required_dirs = backgrounds, textures

[cache]
ttl_seconds = 15

[retry]
attempts = 5
delay_seconds = 0.25

[probe]
enabled = false
interval_seconds = 10
backoff_factor = 2
max_interval_seconds = 120
container_checks = no

[http]
max_age_seconds = 600
hsts_max_age_seconds = 3600

[logging]
level = DEBUG
file = test.log
console = false
"""
    config_path = tmp_path / "test_config.ini"
    config_path.write_text(config_content, encoding="utf-8")
    yield config_path


@pytest.fixture
def stats_cache() -> StatsCache:
    return StatsCache(ttl_seconds=60)


@pytest.fixture
def verifier(stats_cache: StatsCache) -> AccessVerifier:
    return AccessVerifier(stats_cache, max_retries=3, retry_delay_seconds=0)


@pytest.fixture
def app_config(public_dir: Path) -> AppConfig:
    """Creates a complete AppConfig pointing at the public_dir fixture."""
    return AppConfig(
        server=ServerConfig(host="127.0.0.1", port=3002, environment="development"),
        paths=PathsConfig(
            static_root=str(public_dir), entry_document="index.html", required_dirs=["backgrounds"]
        ),
        cache=CacheConfig(ttl_seconds=60),
        retry=RetryConfig(attempts=3, delay_seconds=0),
        probe=ProbeConfig(interval_seconds=30, backoff_factor=1.5, max_interval_seconds=300),
        http=HttpConfig(max_age_seconds=600, hsts_max_age_seconds=31536000),
        logging=LogConfig(level="DEBUG", file="", console=False),
    )
