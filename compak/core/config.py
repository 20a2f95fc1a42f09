# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
compak Configuration - Single source of truth.
YAML is king. Env vars for locations and secrets.

- ALL configuration in plain text (<state_dir>/config.yaml)
- NO hidden state - installed packages, catalog mirror and working
  directories all live under the state directory
"""

import os
import yaml
from dotenv import load_dotenv
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple

from compak.core.errors import ConfigurationError

DEFAULT_INDEX_REPO = "https://github.com/LoriKarikari/compak.git"
DEFAULT_PAKS_SUBDIR = "paks"


def default_state_dir() -> Path:
    """State directory: $COMPAK_HOME or ~/.compak"""
    home = os.getenv("COMPAK_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".compak"


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable application configuration.
    Threaded explicitly through every service; nothing reads globals.
    """

    # -- Paths --
    state_dir: Path = Path.home() / ".compak"

    # -- Catalog --
    index_repo_url: str = DEFAULT_INDEX_REPO
    index_paks_subdir: str = DEFAULT_PAKS_SUBDIR
    index_ttl_seconds: float = 3600.0

    # -- HTTP --
    http_timeout: float = 30.0

    # -- Registry --
    docker_config_dir: Optional[Path] = None
    registry_plain_http: bool = False

    # -- Compose --
    compose_command: Optional[Tuple[str, ...]] = None
    project_prefix: str = "compak"

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[Path] = None

    # -- Derived paths --
    @property
    def index_dir(self) -> Path:
        return self.state_dir / "index"

    @property
    def packages_dir(self) -> Path:
        return self.state_dir / "packages"

    @property
    def state_file(self) -> Path:
        return self.state_dir / "installed.json"

    @property
    def tmp_dir(self) -> Path:
        return self.state_dir / "tmp"

    def with_overrides(self, **changes) -> "Config":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


# =============================================================================
# SECRETS - The ONLY thing read from the environment at call time
# =============================================================================

def get_github_credentials() -> Tuple[Optional[str], Optional[str]]:
    """Registry tokens cannot be in version control."""
    return os.getenv("GITHUB_USER"), os.getenv("GITHUB_TOKEN")


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.

    Environment overrides:
    COMPAK_HOME, COMPAK_INDEX_REPO, COMPAK_INDEX_PATH, LOG_LEVEL, LOG_FORMAT, LOG_FILE

    Variables in <state_dir>/.env (e.g. GITHUB_TOKEN) are loaded first;
    the real environment wins over them.
    """
    state_dir = default_state_dir()
    env_file = state_dir / ".env"
    if env_file.is_file():
        load_dotenv(env_file, override=False)

    config_path = Path(path) if path else state_dir / "config.yaml"

    y = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                y = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid configuration file: {e}", config_file=str(config_path)) from e
        if not isinstance(y, dict):
            raise ConfigurationError("Configuration root must be a mapping", config_file=str(config_path))

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    docker_config_dir = os.getenv("DOCKER_CONFIG") or get(y, "registry", "docker_config_dir")
    log_file = os.getenv("LOG_FILE") or get(y, "logging", "file")
    compose_command = get(y, "compose", "command")
    if isinstance(compose_command, str):
        compose_command = compose_command.split()

    try:
        return Config(
            state_dir=Path(get(y, "paths", "state_dir") or state_dir).expanduser(),
            index_repo_url=os.getenv("COMPAK_INDEX_REPO") or get(y, "index", "repo_url") or DEFAULT_INDEX_REPO,
            index_paks_subdir=os.getenv("COMPAK_INDEX_PATH") or get(y, "index", "paks_subdir") or DEFAULT_PAKS_SUBDIR,
            index_ttl_seconds=float(get(y, "index", "ttl_seconds") or 3600.0),
            http_timeout=float(get(y, "http", "timeout") or 30.0),
            docker_config_dir=Path(docker_config_dir).expanduser() if docker_config_dir else None,
            registry_plain_http=bool(get(y, "registry", "plain_http") or False),
            compose_command=tuple(compose_command) if compose_command else None,
            project_prefix=get(y, "compose", "project_prefix") or "compak",
            log_level=os.getenv("LOG_LEVEL") or get(y, "logging", "level") or "INFO",
            log_format=os.getenv("LOG_FORMAT") or get(y, "logging", "format") or "text",
            log_file=Path(log_file).expanduser() if log_file else None,
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}", config_file=str(config_path)) from e


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = load_config(os.getenv("COMPAK_CONFIG"))
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
