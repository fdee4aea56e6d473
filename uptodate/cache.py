"""On-disk caches for latest-version lookups and workspace topology.

Two independent JSON documents live in a project-local cache directory:

- version-cache.json: package name → CacheEntry. Entries expire after two
  hours, or after 24 hours for a fixed list of slow-moving "stable" packages,
  and only match the package manager that produced them.
- workspace-cache.json: a single WorkspaceCacheEntry for the project root,
  expiring after 24 hours or as soon as any workspace-definition file
  (manifest, pnpm-workspace.yaml, lockfiles) is modified.

Every operation degrades to "no cache" on I/O or parse errors; the files are
safe to delete at any time.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .manifest import WORKSPACE_DEFINITION_FILES
from .models import CacheEntry, CacheStats, WorkspaceCacheEntry

logger = logging.getLogger(__name__)

CACHE_DIR_NAME = ".uptodate"
VERSION_CACHE_FILE = "version-cache.json"
WORKSPACE_CACHE_FILE = "workspace-cache.json"

VERSION_CACHE_TTL = 2 * 60 * 60
STABLE_PACKAGE_TTL = 24 * 60 * 60
WORKSPACE_CACHE_TTL = 24 * 60 * 60

STABLE_PACKAGES = [
    "react",
    "react-dom",
    "lodash",
    "moment",
    "express",
    "axios",
    "typescript",
    "@types/node",
    "@types/react",
    "eslint",
    "prettier",
    "jest",
    "webpack",
    "babel",
]


def is_stable_package(name: str) -> bool:
    """Check if a package is on the slow-moving allow-list.

    Matches the exact name, sub-paths ("babel/core"), the scope of the same
    name ("@babel/core") and its type definitions ("@types/react-dom").
    """
    return any(
        name == stable
        or name.startswith(f"{stable}/")
        or name.startswith(f"@{stable}/")
        or name.startswith(f"@types/{stable}")
        for stable in STABLE_PACKAGES
    )


def version_ttl(name: str) -> float:
    return STABLE_PACKAGE_TTL if is_stable_package(name) else VERSION_CACHE_TTL


class CacheStore:
    """Handle on a project's cache directory.

    Constructed explicitly and passed to the components that need it, so
    tests can point it at a temporary directory and a fake clock.

    Args:
        project_path: Project root; the cache lives in `<root>/.uptodate`.
        cache_dir: Override the cache directory entirely.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        project_path: str | Path,
        *,
        cache_dir: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir else Path(project_path) / CACHE_DIR_NAME
        self.version_cache_file = self.cache_dir / VERSION_CACHE_FILE
        self.workspace_cache_file = self.cache_dir / WORKSPACE_CACHE_FILE
        self._clock = clock

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    def _write_json(self, path: Path, data: Any) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _load_version_document(self) -> dict[str, Any]:
        """Load the raw version document, starting fresh if it is unusable."""
        if not self.version_cache_file.exists():
            return {}
        try:
            data = self._read_json(self.version_cache_file)
        except (OSError, ValueError) as exc:
            logger.debug(f"Invalid version cache file, starting fresh: {exc}")
            return {}
        return data if isinstance(data, dict) else {}

    # -- version cache -----------------------------------------------------

    def get_cached_version(self, name: str, package_manager: str = "npm") -> str | None:
        """Return a cached latest version, or None on a miss or expired entry."""
        raw = self._load_version_document().get(name)
        if raw is None:
            return None
        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError as exc:
            logger.debug(f"Ignoring malformed cache entry for {name}: {exc}")
            return None

        age = self._clock() - entry.timestamp
        if age >= version_ttl(name) or entry.package_manager != package_manager:
            return None

        logger.debug(f"Cache hit for {name}: {entry.version} (age: {round(age)}s)")
        return entry.version

    def get_cached_versions(
        self, names: Iterable[str], package_manager: str = "npm"
    ) -> dict[str, str]:
        """Return every fresh cached version among names."""
        document = self._load_version_document()
        now = self._clock()
        found: dict[str, str] = {}
        for name in names:
            raw = document.get(name)
            if raw is None:
                continue
            try:
                entry = CacheEntry.model_validate(raw)
            except ValidationError:
                continue
            if now - entry.timestamp < version_ttl(name) and entry.package_manager == package_manager:
                found[name] = entry.version
        return found

    def set_cached_version(self, name: str, version: str, package_manager: str = "npm") -> None:
        self.set_cached_versions({name: version}, package_manager)

    def set_cached_versions(
        self, versions: Mapping[str, str], package_manager: str = "npm"
    ) -> None:
        """Write versions into the cache, keeping all other entries."""
        if not versions:
            return
        document = self._load_version_document()
        timestamp = self._clock()
        for name, version in versions.items():
            document[name] = CacheEntry(
                version=version, timestamp=timestamp, package_manager=package_manager
            ).model_dump()
        try:
            self._write_json(self.version_cache_file, document)
            logger.debug(f"Cached {len(versions)} package versions")
        except OSError as exc:
            logger.debug(f"Error writing version cache: {exc}")

    # -- workspace cache ---------------------------------------------------

    def get_cached_workspace(self, root_path: str) -> WorkspaceCacheEntry | None:
        """Return the cached topology for root_path if it has not expired."""
        if not self.workspace_cache_file.exists():
            return None
        try:
            entry = WorkspaceCacheEntry.model_validate(self._read_json(self.workspace_cache_file))
        except (OSError, ValueError) as exc:
            logger.debug(f"Error reading workspace cache: {exc}")
            return None

        if entry.root_path != root_path:
            return None
        age = self._clock() - entry.timestamp
        if age >= WORKSPACE_CACHE_TTL:
            return None

        logger.debug(f"Workspace cache hit (age: {round(age)}s)")
        return entry

    def set_cached_workspace(
        self, packages: list[str], patterns: list[str], root_path: str
    ) -> None:
        entry = WorkspaceCacheEntry(
            packages=packages,
            patterns=patterns,
            timestamp=self._clock(),
            root_path=root_path,
        )
        try:
            self._write_json(self.workspace_cache_file, entry.model_dump())
            logger.debug(f"Cached workspace structure with {len(packages)} packages")
        except OSError as exc:
            logger.debug(f"Error writing workspace cache: {exc}")

    def is_workspace_cache_valid(self, root_path: str) -> bool:
        """Check the cached topology against the workspace-definition files.

        Valid only when the cache exists for this exact root, has not expired,
        and none of the tracked files was modified after it was written.
        """
        cached = self.get_cached_workspace(root_path)
        if cached is None:
            return False

        root = Path(root_path)
        try:
            for filename in WORKSPACE_DEFINITION_FILES:
                path = root / filename
                if path.exists() and path.stat().st_mtime > cached.timestamp:
                    logger.debug(f"Workspace file {path} modified since cache")
                    return False
        except OSError as exc:
            logger.debug(f"Error checking workspace cache validity: {exc}")
            return False
        return True

    # -- maintenance -------------------------------------------------------

    def clear_cache(self) -> None:
        """Delete both cache documents."""
        for path, label in (
            (self.version_cache_file, "version"),
            (self.workspace_cache_file, "workspace"),
        ):
            try:
                if path.exists():
                    path.unlink()
                    logger.info(f"Cleared {label} cache")
            except OSError as exc:
                logger.warning(f"Error clearing {label} cache: {exc}")

    def clean_expired_entries(self) -> int:
        """Remove expired version entries and an expired workspace document.

        Returns:
            Number of version entries removed.
        """
        removed = 0
        now = self._clock()

        if self.version_cache_file.exists():
            document = self._load_version_document()
            kept: dict[str, Any] = {}
            for name, raw in document.items():
                timestamp = raw.get("timestamp") if isinstance(raw, dict) else None
                if isinstance(timestamp, (int, float)) and now - timestamp < version_ttl(name):
                    kept[name] = raw
                else:
                    removed += 1
            if removed:
                try:
                    self._write_json(self.version_cache_file, kept)
                    logger.debug(f"Cleaned {removed} expired cache entries")
                except OSError as exc:
                    logger.debug(f"Error cleaning version cache: {exc}")

        if self.workspace_cache_file.exists():
            try:
                entry = WorkspaceCacheEntry.model_validate(
                    self._read_json(self.workspace_cache_file)
                )
                if now - entry.timestamp >= WORKSPACE_CACHE_TTL:
                    self.workspace_cache_file.unlink()
                    logger.debug("Cleaned expired workspace cache")
            except (OSError, ValueError) as exc:
                logger.debug(f"Error cleaning workspace cache: {exc}")

        return removed

    def get_cache_stats(self) -> CacheStats:
        stats = CacheStats()
        try:
            if self.version_cache_file.exists():
                stats.version_entries = len(self._load_version_document())
                stats.total_size += self.version_cache_file.stat().st_size
            if self.workspace_cache_file.exists():
                stats.workspace_cached = True
                stats.total_size += self.workspace_cache_file.stat().st_size
        except OSError as exc:
            logger.debug(f"Error getting cache stats: {exc}")
        return stats
