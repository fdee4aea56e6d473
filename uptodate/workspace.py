"""Workspace discovery.

Finds every package in a JavaScript project. A project without workspace
patterns is a single package; otherwise the patterns from
pnpm-workspace.yaml and/or package.json "workspaces" are expanded into
package directories and each manifest is loaded.

Glob expansion and manifest loading run in worker threads. Each pattern has
its own timeout and the whole scan has an outer deadline; whatever settled
in time is returned. A partial scan is never written to the workspace cache.
"""

from __future__ import annotations

import asyncio
import glob
import logging
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Any

from .cache import CacheStore
from .manifest import (
    MANIFEST_NAME,
    detect_package_manager,
    get_workspace_patterns,
    load_manifest,
    load_root_manifest,
    package_from_manifest,
)
from .models import PackageManagerName, WorkspaceInfo, WorkspacePackage

logger = logging.getLogger(__name__)

DEFAULT_PATTERN_TIMEOUT = 5.0
DEFAULT_DISCOVERY_TIMEOUT = 30.0


def _expand_pattern(root: Path, pattern: str) -> list[str]:
    """Expand one workspace pattern into package directories relative to root."""
    matches = glob.glob(f"{pattern.rstrip('/')}/{MANIFEST_NAME}", root_dir=root, recursive=True)
    directories: list[str] = []
    for match in sorted(matches):
        directory = PurePosixPath(Path(match).parent.as_posix())
        if "node_modules" in directory.parts:
            continue
        directories.append(str(directory))
    return directories


def _is_excluded(directory: str, exclusions: list[str]) -> bool:
    return any(fnmatchcase(directory, pattern.rstrip("/")) for pattern in exclusions)


def _load_package(root: Path, directory: str) -> WorkspacePackage | None:
    """Load one workspace manifest; a broken one is skipped with a warning."""
    path = root / directory
    try:
        manifest = load_manifest(path / MANIFEST_NAME)
    except (OSError, ValueError) as exc:
        logger.warning(f"Failed to parse {path / MANIFEST_NAME}: {exc}")
        return None
    pkg = package_from_manifest(manifest, path, directory, is_root=False)
    logger.debug(f"Found workspace package: {pkg.name} at {directory}")
    return pkg


def _has_dependencies(manifest: dict[str, Any]) -> bool:
    return bool(manifest.get("dependencies")) or bool(manifest.get("devDependencies"))


class WorkspaceDiscoverer:
    """Discovers the package topology of a project.

    Args:
        cache: Optional cache store; enables reuse of a previous scan.
        pattern_timeout: Seconds allowed for expanding a single pattern.
        discovery_timeout: Seconds allowed for expansion plus loading.
    """

    def __init__(
        self,
        cache: CacheStore | None = None,
        *,
        pattern_timeout: float = DEFAULT_PATTERN_TIMEOUT,
        discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    ) -> None:
        self.cache = cache
        self.pattern_timeout = pattern_timeout
        self.discovery_timeout = discovery_timeout

    async def detect(self, project_path: str | Path) -> WorkspaceInfo:
        """Discover the workspace rooted at project_path.

        Raises:
            ConfigurationError: If the root package.json is missing or invalid.
        """
        root = Path(project_path).resolve()
        manifest = load_root_manifest(root)
        package_manager = detect_package_manager(root, manifest)
        root_package = package_from_manifest(manifest, root, root.name, is_root=True)

        try:
            return await self._detect_workspace(root, manifest, root_package, package_manager)
        except Exception as exc:
            logger.warning(f"Workspace detection failed, treating {root} as a single package: {exc}")
            return self._single_package(root, root_package, package_manager)

    def _single_package(
        self,
        root: Path,
        root_package: WorkspacePackage,
        package_manager: PackageManagerName,
        catalog: dict[str, str] | None = None,
    ) -> WorkspaceInfo:
        return WorkspaceInfo(
            is_monorepo=False,
            root_path=str(root),
            packages=[root_package],
            workspace_patterns=[],
            package_manager=package_manager,
            catalog=catalog,
        )

    async def _detect_workspace(
        self,
        root: Path,
        manifest: dict[str, Any],
        root_package: WorkspacePackage,
        package_manager: PackageManagerName,
    ) -> WorkspaceInfo:
        patterns, catalog = get_workspace_patterns(manifest, package_manager, root)
        if not patterns:
            return self._single_package(root, root_package, package_manager, catalog)

        directories = self._cached_directories(root, patterns)
        from_cache = directories is not None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.discovery_timeout
        partial = False
        if directories is None:
            directories, partial = await self._expand_patterns(root, patterns, deadline)

        packages, load_partial = await self._load_packages(root, directories, deadline)
        partial = partial or load_partial

        if _has_dependencies(manifest):
            packages.insert(0, root_package)

        if self.cache is not None and not from_cache:
            if partial:
                logger.warning("Workspace scan was incomplete; not caching it")
            else:
                self.cache.set_cached_workspace(directories, patterns, str(root))

        logger.debug(f"Detected monorepo with {len(packages)} packages")
        return WorkspaceInfo(
            is_monorepo=True,
            root_path=str(root),
            packages=packages,
            workspace_patterns=patterns,
            package_manager=package_manager,
            catalog=catalog,
        )

    def _cached_directories(self, root: Path, patterns: list[str]) -> list[str] | None:
        if self.cache is None or not self.cache.is_workspace_cache_valid(str(root)):
            return None
        cached = self.cache.get_cached_workspace(str(root))
        if cached is None or cached.patterns != patterns:
            return None
        logger.debug(f"Using cached workspace structure ({len(cached.packages)} packages)")
        return list(cached.packages)

    async def _expand_one(self, root: Path, pattern: str) -> tuple[list[str], bool]:
        """Expand a pattern under its own timeout.

        Returns:
            Tuple of (directories, timed_out).
        """
        try:
            directories = await asyncio.wait_for(
                asyncio.to_thread(_expand_pattern, root, pattern), timeout=self.pattern_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Workspace pattern {pattern!r} timed out after {self.pattern_timeout}s")
            return [], True
        except (OSError, ValueError) as exc:
            logger.warning(f"Failed to process workspace pattern {pattern!r}: {exc}")
            return [], True
        return directories, False

    async def _expand_patterns(
        self, root: Path, patterns: list[str], deadline: float
    ) -> tuple[list[str], bool]:
        includes = [p for p in patterns if not p.startswith("!")]
        exclusions = [p[1:] for p in patterns if p.startswith("!")]

        tasks = [asyncio.ensure_future(self._expand_one(root, p)) for p in includes]
        if not tasks:
            return [], False
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)
        done, pending = await asyncio.wait(tasks, timeout=remaining)
        for task in pending:
            task.cancel()
        partial = bool(pending)
        if pending:
            logger.warning(f"Workspace discovery timed out with {len(pending)} patterns pending")

        directories: list[str] = []
        for task in tasks:
            if task not in done:
                continue
            found, timed_out = task.result()
            partial = partial or timed_out
            directories.extend(found)

        unique = [
            d
            for d in dict.fromkeys(directories)
            if d not in ("", ".") and not _is_excluded(d, exclusions)
        ]
        return unique, partial

    async def _load_packages(
        self, root: Path, directories: list[str], deadline: float
    ) -> tuple[list[WorkspacePackage], bool]:
        if not directories:
            return [], False
        tasks = [asyncio.ensure_future(asyncio.to_thread(_load_package, root, d)) for d in directories]
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)
        done, pending = await asyncio.wait(tasks, timeout=remaining)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Workspace discovery timed out with {len(pending)} manifests pending")

        packages = [
            task.result() for task in tasks if task in done and task.result() is not None
        ]
        return packages, bool(pending)


def is_internal_dependency(name: str, packages: list[WorkspacePackage]) -> bool:
    """True if name refers to a package of the workspace itself."""
    return any(pkg.name == name for pkg in packages)


def get_workspaces_depending_on(
    name: str, packages: list[WorkspacePackage]
) -> list[WorkspacePackage]:
    return [pkg for pkg in packages if pkg.get_specifier(name)]


def get_all_external_dependencies(
    packages: list[WorkspacePackage], include_dev: bool = True
) -> dict[str, set[str]]:
    """Map every external dependency to the set of raw specifiers declaring it."""
    internal = {pkg.name for pkg in packages}
    result: dict[str, set[str]] = {}
    for pkg in packages:
        for name, specifier in pkg.all_dependencies(include_dev).items():
            if name in internal:
                continue
            result.setdefault(name, set()).add(specifier)
    return result


def find_version_conflicts(packages: list[WorkspacePackage]) -> dict[str, list[str]]:
    """Return dependencies declared with more than one distinct specifier."""
    return {
        name: sorted(specifiers)
        for name, specifiers in get_all_external_dependencies(packages).items()
        if len(specifiers) > 1
    }
