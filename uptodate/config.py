"""Configuration loading.

Settings live in `.uptodate.toml` at the project root. tomlkit is used for
both reading and writing so a generated sample config keeps its comments
and stays diff-friendly when edited by hand.
"""

from __future__ import annotations

import logging
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, Field, ValidationError
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigurationError
from .versions import UpdateStrategy

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".uptodate.toml"


class Config(BaseModel):
    """User configuration for a check run.

    Attributes:
        ignored_packages: Names (or fnmatch patterns like "@types/*") to skip.
        ignored_versions: Name → version patterns that must never be offered.
        update_strategy: Default strategy bounding the size of a version jump.
        package_strategies: Per-package strategy overrides (names or patterns).
        allow_major_updates: Whether breaking (major) updates may be applied.
            They are always reported.
        include_dev: Whether devDependencies take part in the check.
        retry_attempts: Attempts for upstream version lookups.
        retry_delay: Base backoff between attempts, in seconds.
        pattern_timeout: Timeout for expanding a single workspace pattern.
        discovery_timeout: Timeout for the whole workspace discovery.
        fallback_batch_size: Per-package lookups issued concurrently.
    """

    ignored_packages: list[str] = Field(default_factory=list)
    ignored_versions: dict[str, list[str]] = Field(default_factory=dict)
    update_strategy: UpdateStrategy = "major"
    package_strategies: dict[str, UpdateStrategy] = Field(default_factory=dict)
    allow_major_updates: bool = False
    include_dev: bool = True
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0)
    pattern_timeout: float = Field(default=5.0, gt=0)
    discovery_timeout: float = Field(default=30.0, gt=0)
    fallback_batch_size: int = Field(default=50, ge=1)

    def should_ignore_package(self, name: str) -> bool:
        return any(fnmatchcase(name, pattern) for pattern in self.ignored_packages)

    def should_ignore_version(self, name: str, version: str) -> bool:
        for pattern, versions in self.ignored_versions.items():
            if fnmatchcase(name, pattern) and any(
                fnmatchcase(version, v) for v in versions
            ):
                return True
        return False

    def get_update_strategy_for_package(self, name: str) -> UpdateStrategy:
        """Return the strategy for a package, exact names beating patterns."""
        if name in self.package_strategies:
            return self.package_strategies[name]
        for pattern, strategy in self.package_strategies.items():
            if fnmatchcase(name, pattern):
                return strategy
        return self.update_strategy

    def should_allow_major_update(self) -> bool:
        return self.allow_major_updates


def load_config(project_path: str | Path) -> Config:
    """Load `.uptodate.toml` from a project root, falling back to defaults.

    Raises:
        ConfigurationError: If the file exists but is not valid.
    """
    path = Path(project_path) / CONFIG_FILENAME
    if not path.exists():
        logger.debug("No config file found, using defaults")
        return Config()

    logger.debug(f"Loading config from {path}")
    try:
        doc = tomlkit.parse(path.read_text(encoding="utf-8"))
        data: dict[str, Any] = doc.unwrap()
        return Config.model_validate(data)
    except (OSError, TOMLKitError, ValidationError) as exc:
        raise ConfigurationError(f"Failed to load configuration from {path}", exc) from exc


def write_sample_config(project_path: str | Path) -> Path:
    """Write a commented sample `.uptodate.toml` and return its path."""
    path = Path(project_path) / CONFIG_FILENAME
    defaults = Config()

    doc = tomlkit.document()
    doc.add(tomlkit.comment("uptodate configuration"))
    doc.add(tomlkit.nl())
    doc["ignored_packages"] = ["@types/node"]
    doc["allow_major_updates"] = defaults.allow_major_updates
    doc["update_strategy"] = defaults.update_strategy
    doc["update_strategy"].comment("none | patch | minor | major")
    doc["include_dev"] = defaults.include_dev
    doc["retry_attempts"] = defaults.retry_attempts
    doc["retry_delay"] = defaults.retry_delay

    strategies = tomlkit.table()
    strategies.add(tomlkit.comment('react = "minor"'))
    doc["package_strategies"] = strategies

    ignored_versions = tomlkit.table()
    ignored_versions.add(tomlkit.comment('typescript = ["6.*"]'))
    doc["ignored_versions"] = ignored_versions

    try:
        path.write_text(tomlkit.dumps(doc), encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Failed to write sample configuration to {path}", exc) from exc
    logger.info(f"Sample configuration created at {path}")
    return path
