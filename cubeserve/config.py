import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path

TRUE_VALUES = ("true", "1", "yes", "on")
ENVIRONMENTS = ("development", "production")


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3002
    environment: str = "production"  # "development" or "production"
    workspace_dir: str | None = None  # Diagnostics only (RAILWAY_WORKSPACE_DIR)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@dataclass
class PathsConfig:
    static_root: str = "public"
    entry_document: str = "index.html"
    required_dirs: list[str] = field(default_factory=lambda: ["backgrounds"])

    @property
    def static_root_path(self) -> Path:
        return Path(self.static_root).resolve()

    @property
    def entry_document_path(self) -> Path:
        return self.static_root_path / self.entry_document


@dataclass
class CacheConfig:
    ttl_seconds: float = 60.0


@dataclass
class RetryConfig:
    attempts: int = 3
    delay_seconds: float = 0.1


@dataclass
class ProbeConfig:
    enabled: bool = True
    interval_seconds: float = 30.0
    backoff_factor: float = 1.5
    max_interval_seconds: float = 300.0
    container_checks: bool = True


@dataclass
class HttpConfig:
    max_age_seconds: int = 86400
    hsts_max_age_seconds: int = 31536000


@dataclass
class LogConfig:
    level: str = "INFO"
    file: str = ""
    console: bool = True


@dataclass
class AppConfig:
    server: ServerConfig
    paths: PathsConfig
    cache: CacheConfig
    retry: RetryConfig
    probe: ProbeConfig
    http: HttpConfig
    logging: LogConfig


def _to_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


def _to_int(value: str, name: str, source: str = "config") -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name} value in {source}: '{value}' - must be an integer")


def _to_float(value: str, name: str, source: str = "config") -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name} value in {source}: '{value}' - must be a number")


def _to_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(
    config_path: str | None = None, environ: dict[str, str] | None = None, **cli_args
) -> AppConfig:
    """
    Load configuration from an INI file, environment variables and CLI arguments.

    Precedence (lowest to highest): defaults, INI file, environment, CLI.

    Args:
        config_path: Path to the INI configuration file. Falls back to the
            CUBESERVE_CONFIG environment variable when not given.
        environ: Environment mapping to read from (defaults to os.environ).
        **cli_args: Key-value pairs from command line arguments.

    Returns:
        AppConfig: The populated configuration object.

    Raises:
        FileNotFoundError: If a config path is given but does not exist.
        ValueError: If a value cannot be parsed or fails validation.
    """
    env = os.environ if environ is None else environ

    # Initialize with defaults
    server_config = {
        "host": "0.0.0.0",
        "port": 3002,
        "environment": "production",
        "workspace_dir": None,
    }
    paths_config = {
        "static_root": "public",
        "entry_document": "index.html",
        "required_dirs": ["backgrounds"],
    }
    cache_config = {"ttl_seconds": 60.0}
    retry_config = {"attempts": 3, "delay_seconds": 0.1}
    probe_config = {
        "enabled": True,
        "interval_seconds": 30.0,
        "backoff_factor": 1.5,
        "max_interval_seconds": 300.0,
        "container_checks": True,
    }
    http_config = {"max_age_seconds": 86400, "hsts_max_age_seconds": 31536000}
    log_config = {"level": "INFO", "file": "", "console": True}

    if config_path is None:
        config_path = env.get("CUBESERVE_CONFIG") or None

    # Parse INI file if provided
    if config_path is not None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        parser = configparser.ConfigParser()
        parser.read(config_file, encoding="utf-8")

        # Load [server] section
        if parser.has_section("server"):
            section = parser["server"]
            if section.get("host"):
                server_config["host"] = section.get("host")
            if section.get("port"):
                server_config["port"] = _to_int(section.get("port"), "port")
            if section.get("environment"):
                server_config["environment"] = section.get("environment")
            if section.get("workspace_dir"):
                server_config["workspace_dir"] = section.get("workspace_dir")

        # Load [paths] section
        if parser.has_section("paths"):
            section = parser["paths"]
            if section.get("static_root"):
                paths_config["static_root"] = section.get("static_root")
            if section.get("entry_document"):
                paths_config["entry_document"] = section.get("entry_document")
            if section.get("required_dirs") is not None:
                paths_config["required_dirs"] = _to_list(section.get("required_dirs"))

        # Load [cache] section
        if parser.has_section("cache"):
            section = parser["cache"]
            if section.get("ttl_seconds"):
                cache_config["ttl_seconds"] = _to_float(section.get("ttl_seconds"), "ttl_seconds")

        # Load [retry] section
        if parser.has_section("retry"):
            section = parser["retry"]
            if section.get("attempts"):
                retry_config["attempts"] = _to_int(section.get("attempts"), "attempts")
            if section.get("delay_seconds"):
                retry_config["delay_seconds"] = _to_float(
                    section.get("delay_seconds"), "delay_seconds"
                )

        # Load [probe] section
        if parser.has_section("probe"):
            section = parser["probe"]
            if section.get("enabled"):
                probe_config["enabled"] = _to_bool(section.get("enabled"))
            if section.get("interval_seconds"):
                probe_config["interval_seconds"] = _to_float(
                    section.get("interval_seconds"), "interval_seconds"
                )
            if section.get("backoff_factor"):
                probe_config["backoff_factor"] = _to_float(
                    section.get("backoff_factor"), "backoff_factor"
                )
            if section.get("max_interval_seconds"):
                probe_config["max_interval_seconds"] = _to_float(
                    section.get("max_interval_seconds"), "max_interval_seconds"
                )
            if section.get("container_checks"):
                probe_config["container_checks"] = _to_bool(section.get("container_checks"))

        # Load [http] section
        if parser.has_section("http"):
            section = parser["http"]
            if section.get("max_age_seconds"):
                http_config["max_age_seconds"] = _to_int(
                    section.get("max_age_seconds"), "max_age_seconds"
                )
            if section.get("hsts_max_age_seconds"):
                http_config["hsts_max_age_seconds"] = _to_int(
                    section.get("hsts_max_age_seconds"), "hsts_max_age_seconds"
                )

        # Load [logging] section
        if parser.has_section("logging"):
            section = parser["logging"]
            if section.get("level"):
                log_config["level"] = section.get("level")
            if section.get("file") is not None:
                log_config["file"] = section.get("file")
            if section.get("console"):
                log_config["console"] = _to_bool(section.get("console"))

    # Environment overrides (platform-provided variables)
    if env.get("PORT"):
        server_config["port"] = _to_int(env["PORT"], "PORT", "environment")
    if env.get("APP_ENV"):
        server_config["environment"] = env["APP_ENV"]
    elif env.get("NODE_ENV"):
        # NODE_ENV carries platform values such as "test" or "staging"
        node_env = env["NODE_ENV"].strip().lower()
        server_config["environment"] = "development" if node_env == "development" else "production"
    if env.get("RAILWAY_WORKSPACE_DIR"):
        server_config["workspace_dir"] = env["RAILWAY_WORKSPACE_DIR"]

    # Override with CLI arguments (cli_args take precedence)
    if cli_args.get("host") is not None:
        server_config["host"] = cli_args["host"]
    if cli_args.get("port") is not None:
        server_config["port"] = int(cli_args["port"])
    if cli_args.get("static_root") is not None:
        paths_config["static_root"] = cli_args["static_root"]
    if cli_args.get("debug"):
        log_config["level"] = "DEBUG"
        log_config["console"] = True

    # Validate
    environment = server_config["environment"].strip().lower()
    if environment not in ENVIRONMENTS:
        raise ValueError(
            f"Invalid environment: {server_config['environment']}. "
            f"Must be one of: {', '.join(ENVIRONMENTS)}"
        )
    server_config["environment"] = environment

    if not 0 < server_config["port"] < 65536:
        raise ValueError(f"Invalid port: {server_config['port']}. Must be between 1 and 65535.")
    if retry_config["attempts"] < 1:
        raise ValueError("retry attempts must be at least 1")
    if retry_config["delay_seconds"] < 0:
        raise ValueError("retry delay_seconds must not be negative")
    if cache_config["ttl_seconds"] <= 0:
        raise ValueError("cache ttl_seconds must be positive")
    if probe_config["interval_seconds"] <= 0:
        raise ValueError("probe interval_seconds must be positive")
    if probe_config["backoff_factor"] < 1:
        raise ValueError("probe backoff_factor must be at least 1")
    if probe_config["max_interval_seconds"] < probe_config["interval_seconds"]:
        raise ValueError("probe max_interval_seconds must not be below interval_seconds")
    if not paths_config["entry_document"]:
        raise ValueError("Missing required configuration field: entry_document")

    # Build and return AppConfig
    return AppConfig(
        server=ServerConfig(**server_config),
        paths=PathsConfig(**paths_config),
        cache=CacheConfig(**cache_config),
        retry=RetryConfig(**retry_config),
        probe=ProbeConfig(**probe_config),
        http=HttpConfig(**http_config),
        logging=LogConfig(**log_config),
    )
