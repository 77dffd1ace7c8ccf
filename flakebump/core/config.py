# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
flakebump Configuration System

Centralized configuration management supporting:
- Environment variables (FLAKEBUMP_*)
- Config files (~/.config/flakebump/config.yaml, ./.flakebump.yaml)
- Programmatic defaults
- Pydantic validation

Write mode is deliberately not part of the configuration: it is only ever
enabled by the --allow-write command line flag.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from jinja2 import Environment, TemplateSyntaxError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError, ConfigValidationError

logger = logging.getLogger("flakebump.config")


def _default_registry_file() -> Path:
    config_home = os.getenv("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "nix" / "registry.json"


# ============================================================================
# Configuration Models
# ============================================================================


class PathsConfig(BaseModel):
    """Path configuration"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    gcroots_dir: Path = Field(
        default=Path("/nix/var/nix/gcroots/auto"),
        description="Directory of automatic garbage-collector roots",
    )
    registry_file: Path = Field(
        default_factory=_default_registry_file,
        description="User Nix flake registry",
    )

    @field_validator("*", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert strings to Path objects"""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class OracleConfig(BaseModel):
    """Upstream revision lookup configuration"""

    source: Literal["registry", "nix", "github"] = Field(
        default="registry", description="Where candidate revisions come from"
    )
    nix_binary: str = Field(default="nix", description="nix executable")
    timeout_seconds: int = Field(
        default=60, description="Timeout for a single metadata query", ge=1
    )
    max_parallel_queries: int = Field(
        default=4, description="Concurrent metadata queries across flakes", ge=1
    )
    github_api_url: str = Field(
        default="https://api.github.com", description="GitHub REST API base URL"
    )
    github_token: Optional[str] = Field(
        default=None, description="Token for the GitHub API"
    )
    retries: int = Field(default=2, description="Retries for network queries", ge=0)


class ApplyConfig(BaseModel):
    """Interactive apply configuration"""

    diff_context: int = Field(
        default=3, description="Context lines shown around a hunk", ge=0
    )
    commit_message: str = Field(
        default='chore: bump flake input {{ inputs | join(", ") }}',
        description="Jinja2 template for the commit message",
    )
    git_binary: str = Field(default="git", description="git executable")
    direnv_binary: str = Field(default="direnv", description="direnv executable")

    @field_validator("commit_message")
    @classmethod
    def validate_commit_message(cls, v):
        """Reject templates that do not compile"""
        try:
            Environment().parse(v)
        except TemplateSyntaxError as e:
            raise ValueError(f"Invalid commit message template: {e}")
        return v


class ObservabilityConfig(BaseModel):
    """Observability configuration"""

    log_level: str = Field(default="WARNING", description="Logging level")
    log_file: Optional[Path] = Field(
        default=None, description="Optional rotating log file"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator("log_file", mode="before")
    @classmethod
    def expand_log_file(cls, v):
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class FlakeBumpConfig(BaseModel):
    """Complete flakebump configuration"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: PathsConfig = Field(
        default_factory=PathsConfig, description="Path configuration"
    )
    oracle: OracleConfig = Field(
        default_factory=OracleConfig, description="Revision lookup configuration"
    )
    apply: ApplyConfig = Field(
        default_factory=ApplyConfig, description="Interactive apply configuration"
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )


# ============================================================================
# Configuration Loader
# ============================================================================


class ConfigLoader:
    """Load configuration from multiple sources"""

    @staticmethod
    def load_from_env() -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        gcroots_dir = os.getenv("FLAKEBUMP_GCROOTS_DIR")
        if gcroots_dir:
            config.setdefault("paths", {})["gcroots_dir"] = gcroots_dir

        registry = os.getenv("FLAKEBUMP_REGISTRY")
        if registry:
            config.setdefault("paths", {})["registry_file"] = registry

        source = os.getenv("FLAKEBUMP_SOURCE")
        if source:
            config.setdefault("oracle", {})["source"] = source

        timeout = os.getenv("FLAKEBUMP_TIMEOUT")
        if timeout:
            config.setdefault("oracle", {})["timeout_seconds"] = timeout

        max_parallel = os.getenv("FLAKEBUMP_MAX_PARALLEL")
        if max_parallel:
            config.setdefault("oracle", {})["max_parallel_queries"] = max_parallel

        github_token = os.getenv("GITHUB_TOKEN")
        if github_token:
            config.setdefault("oracle", {})["github_token"] = github_token

        diff_context = os.getenv("FLAKEBUMP_DIFF_CONTEXT")
        if diff_context:
            config.setdefault("apply", {})["diff_context"] = diff_context

        log_level = os.getenv("FLAKEBUMP_LOG_LEVEL")
        if log_level:
            config.setdefault("observability", {})["log_level"] = log_level

        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(
                f"Failed to load config file {file_path}",
                details={"path": str(file_path)},
                cause=e,
            )

        if not isinstance(data, dict):
            raise ConfigError(
                f"Config file {file_path} must contain a mapping",
                details={"path": str(file_path)},
            )
        return data

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


# ============================================================================
# Global Configuration Instance
# ============================================================================

_config: Optional[FlakeBumpConfig] = None


def get_config() -> FlakeBumpConfig:
    """
    Get global flakebump configuration

    Configuration is loaded from (in order of precedence):
    1. Environment variables (FLAKEBUMP_*)
    2. .flakebump.yaml in current directory
    3. ~/.config/flakebump/config.yaml
    4. Default values

    Returns:
        FlakeBumpConfig instance
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def load_config(
    config_file: Optional[Path] = None, env_override: bool = True
) -> FlakeBumpConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config

    Returns:
        FlakeBumpConfig instance

    Raises:
        ConfigError: A config file is unreadable or not a mapping
        ConfigValidationError: The merged configuration is invalid
    """
    configs = []

    # 1. Load from default locations
    default_locations = [
        Path.home() / ".config" / "flakebump" / "config.yaml",
        Path.cwd() / ".flakebump.yaml",
    ]

    for location in default_locations:
        if location.exists():
            file_config = ConfigLoader.load_from_file(location)
            if file_config:
                configs.append(file_config)
                logger.debug(f"Loaded config from {location}")

    # 2. Load from specific file if provided
    if config_file:
        if not config_file.exists():
            raise ConfigError(
                f"Config file {config_file} does not exist",
                details={"path": str(config_file)},
            )
        file_config = ConfigLoader.load_from_file(config_file)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    # 3. Load from environment variables
    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    # 4. Merge all configs
    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    # 5. Create FlakeBumpConfig instance
    try:
        return FlakeBumpConfig(**merged)
    except ValidationError as e:
        raise ConfigValidationError(
            "Invalid configuration",
            errors=[
                {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ],
            cause=e,
        )

