"""
Configuration for provsig.

Supports:
- Environment variable configuration
- YAML file configuration
- Runtime overrides (CLI options)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable

import yaml

from provsig.errors import MalformedInput

REGISTRY_BACKENDS = ("crane", "memory")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class ProvsigConfig:
    """
    Runtime configuration.

    Defaults target a workstation with crane and gpg on PATH.
    """

    registry_backend: str = "crane"
    crane_binary: str = "crane"
    gpg_binary: str = "gpg"
    command_timeout: float = 300.0
    builder_name: str = "provsig"
    log_level: str = "WARNING"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.registry_backend not in REGISTRY_BACKENDS:
            raise ValueError(
                f"registry_backend must be one of {', '.join(REGISTRY_BACKENDS)}, got {self.registry_backend!r}"
            )
        if self.command_timeout <= 0:
            raise ValueError(f"command_timeout must be > 0, got {self.command_timeout}")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level.upper())

    @classmethod
    def from_env(cls) -> ProvsigConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            PROVSIG_REGISTRY: Registry backend (crane/memory)
            PROVSIG_CRANE: crane executable
            PROVSIG_GPG: gpg executable
            PROVSIG_TIMEOUT: Per-command timeout in seconds
            PROVSIG_BUILDER: Builder name recorded in manifests
            PROVSIG_LOG_LEVEL: Log level
        """
        defaults = cls()
        timeout = os.getenv("PROVSIG_TIMEOUT")
        try:
            command_timeout = float(timeout) if timeout else defaults.command_timeout
        except ValueError:
            raise ValueError(f"PROVSIG_TIMEOUT must be a number, got {timeout!r}")
        return cls(
            registry_backend=os.getenv("PROVSIG_REGISTRY", defaults.registry_backend).lower(),
            crane_binary=os.getenv("PROVSIG_CRANE", defaults.crane_binary),
            gpg_binary=os.getenv("PROVSIG_GPG", defaults.gpg_binary),
            command_timeout=command_timeout,
            builder_name=os.getenv("PROVSIG_BUILDER", defaults.builder_name),
            log_level=os.getenv("PROVSIG_LOG_LEVEL", defaults.log_level).upper(),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvsigConfig:
        """Create configuration from dictionary (e.g., YAML)."""
        return cls(**_known_fields(data))

    @classmethod
    def from_yaml(cls, path: Path) -> ProvsigConfig:
        """Load configuration from a YAML file."""
        return _validated(path, lambda: cls.from_dict(_read_yaml(path)))

    @classmethod
    def load(cls, path: Path | None = None, **overrides: Any) -> ProvsigConfig:
        """Build configuration: environment, then keys set in the YAML file, then non-None overrides."""
        config = cls.from_env()
        if path is not None:
            values = _known_fields(_read_yaml(path))
            config = _validated(path, lambda: replace(config, **values))
        explicit = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **explicit) if explicit else config

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "registry_backend": self.registry_backend,
            "crane_binary": self.crane_binary,
            "gpg_binary": self.gpg_binary,
            "command_timeout": self.command_timeout,
            "builder_name": self.builder_name,
            "log_level": self.log_level,
        }


def _known_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k in ProvsigConfig.__dataclass_fields__}


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping.

    Raises:
        MalformedInput: If the file is not valid YAML or not a mapping
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise MalformedInput(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise MalformedInput(f"Config file {path} must contain a mapping")
    return data


def _validated(path: Path, build: Callable[[], ProvsigConfig]) -> ProvsigConfig:
    try:
        return build()
    except (TypeError, ValueError) as e:
        raise MalformedInput(f"Invalid config in {path}: {e}")
