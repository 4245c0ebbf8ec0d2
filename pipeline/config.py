"""Configuration management for phpext.

Loads configuration from:
1. phpext.toml (defaults)
2. Environment variables (overrides)
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

CONFIG_FILENAME = "phpext.toml"


@dataclass
class PathsConfig:
    """On-disk layout.

    Empty strings are derived from ``home`` (default: ~/.phpext).
    """

    home: str = ""
    runtimes_dir: str = ""  # <home>/php
    cache_dir: str = ""  # <home>/cache
    build_dir: str = ""  # <home>/build

    @property
    def home_path(self) -> Path:
        return Path(self.home or Path.home() / ".phpext").expanduser()

    @property
    def runtimes_path(self) -> Path:
        if self.runtimes_dir:
            return Path(self.runtimes_dir).expanduser()
        return self.home_path / "php"

    @property
    def cache_path(self) -> Path:
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return self.home_path / "cache"

    @property
    def build_path(self) -> Path:
        if self.build_dir:
            return Path(self.build_dir).expanduser()
        return self.home_path / "build"


@dataclass
class FetchConfig:
    """Download behaviour."""

    timeout: float = 60.0  # per request, seconds
    retries: int = 3  # total attempts for transient failures
    backoff_min: float = 1.0
    backoff_max: float = 10.0
    chunk_size: int = 64 * 1024
    user_agent: str = "phpext/0.1"


@dataclass
class BuildConfig:
    """Compile stage behaviour."""

    jobs: int = 0  # 0 = os.cpu_count()
    configure_timeout: int = 600
    build_timeout: int = 1800
    keep_source: bool = False  # keep extracted sources after success

    @property
    def effective_jobs(self) -> int:
        return self.jobs or os.cpu_count() or 1


@dataclass
class ProvidersConfig:
    """Package source configuration."""

    default: str = "pecl"  # "pecl" | "github" | "bitbucket" | "local"
    pecl_url: str = "https://pecl.php.net"
    github_api_url: str = "https://api.github.com"
    github_url: str = "https://github.com"
    github_token: str = ""
    bitbucket_api_url: str = "https://api.bitbucket.org"
    bitbucket_url: str = "https://bitbucket.org"
    timeout: float = 30.0


@dataclass
class RuntimeConfig:
    """Target runtime selection.

    The active runtime is switched by an external tool; we only read it.
    """

    active: str = ""  # version name under runtimes_dir, e.g. "8.1"


@dataclass
class RecipesConfig:
    """Extra build recipes loaded on top of the builtin table."""

    file: str = ""  # YAML file with a `recipes:` list
    builtin: bool = True


@dataclass
class Config:
    """Main configuration container."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    recipes: RecipesConfig = field(default_factory=RecipesConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        return cls(
            paths=PathsConfig(**data.get("paths", {})),
            fetch=FetchConfig(**data.get("fetch", {})),
            build=BuildConfig(**data.get("build", {})),
            providers=ProvidersConfig(**data.get("providers", {})),
            runtime=RuntimeConfig(**data.get("runtime", {})),
            recipes=RecipesConfig(**data.get("recipes", {})),
            log_level=data.get("log_level", "INFO"),
        )


def find_config_file() -> Path | None:
    """Find phpext.toml in current or parent directories.

    Returns:
        Path to phpext.toml or None if not found.
    """
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_path = directory / CONFIG_FILENAME
        if config_path.exists():
            return config_path

    return None


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Optional explicit path to phpext.toml

    Returns:
        Config object with merged settings.
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "rb") as f:
                config_data = tomllib.load(f)

    env_overrides = {
        "paths": {
            "home": os.getenv("PHPEXT_HOME"),
            "cache_dir": os.getenv("PHPEXT_CACHE_DIR"),
            "build_dir": os.getenv("PHPEXT_BUILD_DIR"),
        },
        "fetch": {
            "retries": _int_or_none(os.getenv("PHPEXT_FETCH_RETRIES")),
        },
        "build": {
            "jobs": _int_or_none(os.getenv("PHPEXT_JOBS")),
        },
        "providers": {
            "default": os.getenv("PHPEXT_PROVIDER"),
            "github_token": os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN"),
        },
        "runtime": {
            "active": os.getenv("PHPEXT_RUNTIME"),
        },
    }

    # Merge env overrides (only non-None values)
    for section, values in env_overrides.items():
        if section not in config_data:
            config_data[section] = {}
        for key, value in values.items():
            if value is not None:
                config_data[section][key] = value

    log_level = os.getenv("PHPEXT_LOG_LEVEL")
    if log_level:
        config_data["log_level"] = log_level

    return Config.from_dict(config_data)


def _int_or_none(value: str | None) -> int | None:
    """Convert string to int, or return None."""
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config object (loaded once, cached).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | str | None = None) -> Config:
    """Force reload of configuration.

    Returns:
        Fresh Config object.
    """
    global _config
    _config = load_config(config_path)
    return _config
