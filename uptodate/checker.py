"""Resolution orchestration.

DependencyChecker drives one check run: discover the workspace, gather the
latest version of every external dependency (bulk report for monorepos,
per-package lookups otherwise or as a fallback), then apply the update
policy to partition candidates into updatable and breaking changes.

Only a broken workspace root (ConfigurationError) escapes check_for_updates;
every other failure shrinks the result and is logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from pydantic import BaseModel, Field

from .bulk import BulkFailure, BulkProcessor, merge_latest_versions
from .cache import CacheStore
from .catalog import resolve_catalog_specifier
from .config import Config, load_config
from .errors import PackageManagerError
from .managers import PackageManager, create_package_manager
from .manifest import is_catalog_reference
from .models import BulkDependencyInfo, DependencyUpdate, UpdateCheckResult, WorkspaceInfo
from .versions import can_update, clean_version, highest_version, is_breaking, is_update_allowed, is_valid
from .workspace import WorkspaceDiscoverer

logger = logging.getLogger(__name__)

# (package name, current version, latest version) -> instructions text
MigrationAdvisor = Callable[[str, str, str], Awaitable[str | None]]


class Candidate(BaseModel):
    """A dependency with a known latest version, before policy is applied."""

    name: str
    current_version: str
    installed_version: str | None = None
    latest_version: str
    workspaces: list[str] = Field(default_factory=list)


class DependencyChecker:
    """Checks a project for dependency updates and applies them.

    Args:
        project_path: Project (or workspace) root.
        config: Settings; loaded from `.uptodate.toml` when omitted.
        cache: Cache store; a project-local one is created when omitted.
        package_manager: Manager to use; detected from the workspace when omitted.
        discoverer: Workspace discoverer; built from config when omitted.
        migration_advisor: Optional coroutine producing migration notes for
            breaking changes.

    Raises:
        ConfigurationError: If the configuration file is invalid.
    """

    def __init__(
        self,
        project_path: str | Path = ".",
        *,
        config: Config | None = None,
        cache: CacheStore | None = None,
        package_manager: PackageManager | None = None,
        discoverer: WorkspaceDiscoverer | None = None,
        migration_advisor: MigrationAdvisor | None = None,
    ) -> None:
        self.project_path = Path(project_path)
        self.config = config if config is not None else load_config(self.project_path)
        self.cache = cache if cache is not None else CacheStore(self.project_path)
        self.discoverer = discoverer or WorkspaceDiscoverer(
            self.cache,
            pattern_timeout=self.config.pattern_timeout,
            discovery_timeout=self.config.discovery_timeout,
        )
        self.migration_advisor = migration_advisor
        self._package_manager = package_manager
        self.workspace: WorkspaceInfo | None = None

    def _manager_for(self, workspace: WorkspaceInfo) -> PackageManager:
        if self._package_manager is None:
            self._package_manager = create_package_manager(
                workspace.package_manager,
                retries=self.config.retry_attempts,
                retry_delay=self.config.retry_delay,
            )
        return self._package_manager

    def _processor_for(self, workspace: WorkspaceInfo) -> BulkProcessor:
        return BulkProcessor(
            self._manager_for(workspace),
            workspace,
            cache=self.cache,
            include_dev=self.config.include_dev,
            fallback_batch_size=self.config.fallback_batch_size,
        )

    async def check_for_updates(self) -> UpdateCheckResult:
        """Find available updates for every external dependency.

        Raises:
            ConfigurationError: If the project root has no usable package.json.
        """
        workspace = await self.discoverer.detect(self.project_path)
        self.workspace = workspace
        processor = self._processor_for(workspace)

        if workspace.is_monorepo:
            logger.info(
                f"Checking {len(workspace.packages)} workspace packages "
                f"({workspace.package_manager})"
            )
            candidates = await self._monorepo_candidates(processor)
        else:
            candidates = await self._single_package_candidates(processor, workspace)

        return await self._classify(candidates)

    def _lookup_names(self, names: list[str]) -> list[str]:
        return [n for n in names if not self.config.should_ignore_package(n)]

    async def _fallback_aggregation(
        self, processor: BulkProcessor, dependencies: dict[str, BulkDependencyInfo]
    ) -> None:
        missing = self._lookup_names([n for n, info in dependencies.items() if not info.latest_version])
        latest = await processor.process_fallback_batch(missing)
        merge_latest_versions(dependencies, latest)

    async def _monorepo_candidates(self, processor: BulkProcessor) -> list[Candidate]:
        try:
            result = await processor.process_bulk_dependencies()
            dependencies = result.dependencies
            if isinstance(result, BulkFailure):
                logger.warning(
                    f"Bulk check unavailable ({result.reason}); looking up packages individually"
                )
                await self._fallback_aggregation(processor, dependencies)
        except Exception as exc:
            logger.warning(f"Bulk processing failed, falling back to individual processing: {exc}")
            dependencies = processor.collect_unique_dependencies()
            await self._fallback_aggregation(processor, dependencies)

        candidates: list[Candidate] = []
        for name, info in dependencies.items():
            if not info.latest_version:
                continue
            candidates.append(
                Candidate(
                    name=name,
                    current_version=highest_version(info.current_versions) or "",
                    latest_version=info.latest_version,
                    workspaces=list(info.workspaces),
                )
            )
        return candidates

    async def _single_package_candidates(
        self, processor: BulkProcessor, workspace: WorkspaceInfo
    ) -> list[Candidate]:
        manager = processor.package_manager
        root = workspace.root_path
        try:
            dependencies = await manager.get_dependencies(root, self.config.include_dev)
        except PackageManagerError as exc:
            logger.warning(f"Could not read dependencies: {exc}")
            return []

        specifiers: dict[str, str] = {}
        for name, specifier in dependencies.items():
            if is_catalog_reference(specifier):
                resolved = resolve_catalog_specifier(name, specifier, workspace)
                if resolved is None:
                    logger.warning(f"Catalog reference for {name} found but no catalog entry exists")
                    continue
                specifier = resolved
            specifiers[name] = specifier

        names = self._lookup_names(list(specifiers))
        latest = await processor.process_fallback_batch(names)
        installed = await asyncio.gather(*(manager.get_installed_version(root, n) for n in names))

        owner = workspace.packages[0].name if workspace.packages else Path(root).name
        candidates: list[Candidate] = []
        for name, installed_version in zip(names, installed):
            if name not in latest:
                continue
            candidates.append(
                Candidate(
                    name=name,
                    current_version=clean_version(specifiers[name]),
                    installed_version=clean_version(installed_version) if installed_version else None,
                    latest_version=latest[name],
                    workspaces=[owner],
                )
            )
        return candidates

    async def _classify(self, candidates: list[Candidate]) -> UpdateCheckResult:
        result = UpdateCheckResult()
        for candidate in sorted(candidates, key=lambda c: c.name):
            name = candidate.name
            current = candidate.current_version
            installed = candidate.installed_version
            latest = candidate.latest_version

            if self.config.should_ignore_package(name):
                logger.debug(f"Skipping {name}: ignored")
                continue
            if self.config.should_ignore_version(name, latest):
                logger.debug(f"Skipping {name}@{latest}: version ignored")
                continue

            if not (can_update(current, latest) or (installed and can_update(installed, latest))):
                continue

            strategy = self.config.get_update_strategy_for_package(name)
            baseline = current if is_valid(current) else (installed or current)
            if not is_update_allowed(strategy, baseline, latest):
                logger.debug(f"Skipping {name} {baseline} -> {latest}: not allowed by {strategy!r} strategy")
                continue

            breaking = is_breaking(current, latest) or bool(installed and is_breaking(installed, latest))
            update = DependencyUpdate(
                name=name,
                current_version=current,
                installed_version=installed,
                new_version=latest,
                has_breaking_changes=breaking,
                workspaces=candidate.workspaces,
            )
            if breaking:
                update.migration_instructions = await self._migration_instructions(name, current, latest)
                result.breaking_changes.append(update)
            else:
                result.updatable.append(update)

        return result

    async def _migration_instructions(self, name: str, current: str, latest: str) -> str | None:
        if self.migration_advisor is None:
            return None
        try:
            return await self.migration_advisor(name, current, latest)
        except Exception as exc:
            logger.error(f"Error getting migration instructions for {name}: {exc}")
            return f"Unable to fetch migration instructions for {name}."

    async def update_dependencies(self) -> list[DependencyUpdate]:
        """Check for updates and apply the allowed ones.

        Non-breaking updates are always applied; breaking ones only when
        allow_major_updates is set.

        Returns:
            The updates that were applied.
        """
        result = await self.check_for_updates()
        to_apply = list(result.updatable)
        if self.config.should_allow_major_update():
            to_apply.extend(result.breaking_changes)
        elif result.breaking_changes:
            logger.info(
                f"Skipping {len(result.breaking_changes)} major updates "
                "(set allow_major_updates to apply them)"
            )

        if not to_apply or self.workspace is None:
            return []

        for update in to_apply:
            logger.info(f"Updating {update.name} from {update.current_version} to {update.new_version}")
        applied = await self._processor_for(self.workspace).perform_bulk_updates(to_apply)
        logger.info(f"Applied {len(applied)}/{len(to_apply)} updates")
        return applied


async def check_for_updates(project_path: str | Path = ".") -> UpdateCheckResult:
    return await DependencyChecker(project_path).check_for_updates()


async def update_dependencies(project_path: str | Path = ".") -> list[DependencyUpdate]:
    return await DependencyChecker(project_path).update_dependencies()
