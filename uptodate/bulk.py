"""Bulk dependency aggregation and update application.

Collects the unique external dependencies of a workspace, asks the package
manager for upstream versions with a single "outdated" command where
possible, and falls back to batched per-package lookups when that fails.
Updates are applied through the cheapest primitive the manager offers,
degrading step by step down to one package at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Union

from pydantic import BaseModel, Field

from .cache import CacheStore
from .catalog import get_direct_update_workspaces, resolve_catalog_specifier, should_update_catalog
from .errors import PackageManagerError, UptodateError
from .managers import PackageManager
from .manifest import PNPM_WORKSPACE_FILE, is_catalog_reference, update_catalog_entries
from .models import BulkDependencyInfo, DependencyUpdate, PackageUpdate, WorkspaceInfo
from .outdated import extract_latest_version, parse_outdated_output
from .versions import clean_version, highest_version, is_breaking
from .workspace import get_workspaces_depending_on

logger = logging.getLogger(__name__)

FALLBACK_BATCH_SIZE = 50
FALLBACK_BATCH_DELAY = 0.1
UPDATE_BATCH_SIZE = 5
UPDATE_BATCH_DELAY = 0.5


class BulkSuccess(BaseModel):
    """The bulk command ran (or was unnecessary) and its report was merged."""

    dependencies: dict[str, BulkDependencyInfo] = Field(default_factory=dict)


class BulkFailure(BaseModel):
    """The bulk command could not be used.

    dependencies still holds the aggregation, with any latest versions that
    were known from the cache; the rest need a fallback lookup.
    """

    reason: str
    dependencies: dict[str, BulkDependencyInfo] = Field(default_factory=dict)


BulkResult = Union[BulkSuccess, BulkFailure]


def merge_latest_versions(
    dependencies: dict[str, BulkDependencyInfo], latest: dict[str, str]
) -> None:
    """Attach latest versions and breaking-change flags in place.

    A dependency is breaking when the latest major exceeds the greatest
    parseable current major; unparseable versions never count.
    """
    for name, info in dependencies.items():
        version = latest.get(name)
        if not version:
            continue
        info.latest_version = version
        info.has_breaking_changes = is_breaking(highest_version(info.current_versions), version)


class BulkProcessor:
    """Aggregates and updates dependencies across a workspace.

    Args:
        package_manager: Manager used for reports, lookups and updates.
        workspace: The discovered workspace.
        cache: Optional version cache for read-through / write-through.
        include_dev: Whether devDependencies are aggregated.
        fallback_batch_size: Concurrent per-package lookups.
    """

    def __init__(
        self,
        package_manager: PackageManager,
        workspace: WorkspaceInfo,
        *,
        cache: CacheStore | None = None,
        include_dev: bool = True,
        fallback_batch_size: int = FALLBACK_BATCH_SIZE,
        fallback_batch_delay: float = FALLBACK_BATCH_DELAY,
        update_batch_size: int = UPDATE_BATCH_SIZE,
        update_batch_delay: float = UPDATE_BATCH_DELAY,
    ) -> None:
        self.package_manager = package_manager
        self.workspace = workspace
        self.cache = cache
        self.include_dev = include_dev
        self.fallback_batch_size = fallback_batch_size
        self.fallback_batch_delay = fallback_batch_delay
        self.update_batch_size = update_batch_size
        self.update_batch_delay = update_batch_delay

    @property
    def root_path(self) -> Path:
        return Path(self.workspace.root_path)

    # -- aggregation -------------------------------------------------------

    def collect_unique_dependencies(self) -> dict[str, BulkDependencyInfo]:
        """Aggregate external dependencies across every workspace package.

        Workspace packages referring to each other are skipped. Catalog
        references are resolved through the catalog table; a reference with
        no catalog entry is skipped with a warning. Versions are recorded
        with range operators stripped.
        """
        internal = self.workspace.package_names()
        dependencies: dict[str, BulkDependencyInfo] = {}

        for pkg in self.workspace.packages:
            for name, specifier in pkg.all_dependencies(self.include_dev).items():
                if name in internal:
                    continue

                resolved = specifier
                if is_catalog_reference(specifier):
                    resolved = resolve_catalog_specifier(name, specifier, self.workspace)
                    if resolved is None:
                        logger.warning(
                            f"Catalog reference for {name} found but no catalog entry exists"
                        )
                        continue

                info = dependencies.get(name)
                if info is None:
                    info = dependencies[name] = BulkDependencyInfo(name=name)
                info.current_versions.add(clean_version(resolved))
                if pkg.name not in info.workspaces:
                    info.workspaces.append(pkg.name)

        return dependencies

    async def _run_outdated(self) -> str:
        if self.workspace.is_monorepo:
            logger.debug("Using workspace-aware outdated check")
            return await self.package_manager.check_workspace_outdated(self.root_path)
        logger.debug("Using standard outdated check")
        return await self.package_manager.check_outdated(self.root_path)

    async def process_bulk_dependencies(self) -> BulkResult:
        """Aggregate dependencies and fetch latest versions with one command.

        Returns:
            BulkSuccess with merged latest versions, or BulkFailure when the
            command failed outright or printed something unparseable.
        """
        start = time.monotonic()
        dependencies = self.collect_unique_dependencies()
        logger.info(
            f"Found {len(dependencies)} unique external dependencies "
            f"across {len(self.workspace.packages)} workspaces"
        )
        if not dependencies:
            return BulkSuccess(dependencies=dependencies)

        manager = self.package_manager.name
        cached: dict[str, str] = {}
        if self.cache is not None:
            cached = self.cache.get_cached_versions(dependencies, manager)
            if len(cached) == len(dependencies):
                logger.debug("All latest versions cached; skipping outdated check")
                merge_latest_versions(dependencies, cached)
                return BulkSuccess(dependencies=dependencies)

        try:
            stdout = await self._run_outdated()
        except PackageManagerError as exc:
            if not exc.stdout.strip():
                logger.warning(f"Bulk outdated check failed: {exc}")
                merge_latest_versions(dependencies, cached)
                return BulkFailure(reason=str(exc), dependencies=dependencies)
            # pnpm and npm exit 1 when anything is outdated.
            logger.debug("Using outdated report from failed command output")
            stdout = exc.stdout

        try:
            report = parse_outdated_output(stdout, manager)
        except ValueError as exc:
            logger.warning(f"Failed to parse outdated output: {exc}")
            merge_latest_versions(dependencies, cached)
            return BulkFailure(reason=f"Unparseable outdated output: {exc}", dependencies=dependencies)

        latest: dict[str, str] = {}
        for name, entry in report.items():
            if name not in dependencies:
                continue
            version = extract_latest_version(entry)
            if version:
                latest[name] = version

        if self.cache is not None:
            self.cache.set_cached_versions(latest, manager)

        merge_latest_versions(dependencies, {**cached, **latest})
        logger.debug(
            f"Bulk processing completed in {time.monotonic() - start:.1f}s "
            f"for {len(dependencies)} packages"
        )
        return BulkSuccess(dependencies=dependencies)

    async def process_fallback_batch(
        self, names: Iterable[str], batch_size: int | None = None
    ) -> dict[str, str]:
        """Look up latest versions one package at a time, in batches.

        Cached versions are used without a lookup; fetched versions are
        written back. Failed lookups are logged and left out of the result.

        Args:
            names: Dependency names to look up.
            batch_size: Lookups issued concurrently per batch.

        Returns:
            Map of name → latest version for every successful lookup.
        """
        size = batch_size or self.fallback_batch_size
        names = list(dict.fromkeys(names))
        manager = self.package_manager.name

        results: dict[str, str] = {}
        if self.cache is not None:
            results.update(self.cache.get_cached_versions(names, manager))
        remaining = [n for n in names if n not in results]
        if not remaining:
            return results

        total_batches = -(-len(remaining) // size)
        logger.info(
            f"Processing {len(remaining)} packages in {total_batches} batches (fallback mode)"
        )

        fetched: dict[str, str] = {}
        for index in range(0, len(remaining), size):
            batch = remaining[index : index + size]
            logger.debug(
                f"Processing batch {index // size + 1}/{total_batches} ({len(batch)} packages)"
            )
            outcomes = await asyncio.gather(
                *(self.package_manager.get_latest_version(n, self.root_path) for n in batch),
                return_exceptions=True,
            )
            for name, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Failed to get version for {name}: {outcome}")
                elif outcome:
                    fetched[name] = outcome
            if index + size < len(remaining):
                await asyncio.sleep(self.fallback_batch_delay)

        if self.cache is not None:
            self.cache.set_cached_versions(fetched, manager)
        results.update(fetched)
        return results

    # -- updates -----------------------------------------------------------

    async def perform_bulk_updates(
        self, updates: Sequence[DependencyUpdate]
    ) -> list[DependencyUpdate]:
        """Apply updates with the cheapest available primitive.

        A single-package project gets one bulk add. A monorepo uses the
        manager's workspace-wide update, or one bulk add per workspace when
        the manager has none. Whatever fails there is retried one package at
        a time.

        Returns:
            The updates that were applied.
        """
        if not updates:
            logger.info("No updates to apply")
            return []

        start = time.monotonic()
        logger.info(f"Starting bulk updates for {len(updates)} packages")

        if self.workspace.package_manager == "pnpm" and self.workspace.catalog:
            return await self._perform_catalog_aware_updates(updates)

        if self.workspace.is_monorepo and not self.package_manager.supports_workspace_bulk_update:
            failed = await self._update_workspaces_fallback(updates)
        else:
            package_updates = [_package_update(u) for u in updates]
            try:
                if self.workspace.is_monorepo:
                    await self.package_manager.bulk_update_workspace_dependencies(
                        self.root_path, package_updates
                    )
                else:
                    await self.package_manager.bulk_update_dependencies(
                        self.root_path, package_updates
                    )
                failed = []
            except UptodateError as exc:
                logger.error(f"Bulk update failed: {exc}")
                failed = list(updates)

        failed_names = {u.name for u in failed}
        applied = [u for u in updates if u.name not in failed_names]
        if failed:
            logger.info(f"Falling back to individual updates for {len(failed)} packages...")
            applied.extend(await self._perform_individual_updates(failed))

        logger.info(
            f"Bulk updates completed in {time.monotonic() - start:.1f}s: "
            f"{len(applied)}/{len(updates)} packages"
        )
        return applied

    async def _perform_catalog_aware_updates(
        self, updates: Sequence[DependencyUpdate]
    ) -> list[DependencyUpdate]:
        catalog_updates: dict[str, str] = {}
        direct_updates: list[DependencyUpdate] = []
        for update in updates:
            if should_update_catalog(update.name, self.workspace):
                catalog_updates[update.name] = update.new_version
            elif get_direct_update_workspaces(update.name, self.workspace):
                direct_updates.append(update)

        applied: list[DependencyUpdate] = []
        if catalog_updates:
            logger.info(f"Updating {len(catalog_updates)} catalog entries")
            updated = await self._update_pnpm_catalog(catalog_updates)
            applied.extend(u for u in updates if u.name in updated)

        if direct_updates:
            logger.info(f"Updating {len(direct_updates)} direct dependencies")
            try:
                await self.package_manager.bulk_update_workspace_dependencies(
                    self.root_path, [_package_update(u) for u in direct_updates]
                )
                applied.extend(direct_updates)
            except UptodateError as exc:
                logger.error(f"Failed to update direct dependencies: {exc}")

        return applied

    async def _update_pnpm_catalog(self, updates: dict[str, str]) -> list[str]:
        """Rewrite catalog entries, then install to apply them.

        Returns:
            Names whose catalog entry was rewritten, or [] on failure.
        """
        path = self.root_path / PNPM_WORKSPACE_FILE
        try:
            updated = await asyncio.to_thread(update_catalog_entries, path, updates)
            for name in updated:
                logger.info(f"Updated catalog entry: {name} -> {updates[name]}")
            if updated:
                logger.info("Installing updated catalog dependencies...")
                await self.package_manager.install(self.root_path)
        except (OSError, UptodateError) as exc:
            logger.error(f"Failed to update pnpm catalog: {exc}")
            return []
        return updated

    async def _update_workspaces_fallback(
        self, updates: Sequence[DependencyUpdate]
    ) -> list[DependencyUpdate]:
        """Run a bulk add in each workspace for the packages it declares.

        Returns:
            The updates that failed in at least one workspace.
        """
        failed: dict[str, DependencyUpdate] = {}
        for pkg in self.workspace.packages:
            declared = [u for u in updates if pkg.get_specifier(u.name)]
            if not declared:
                continue
            try:
                logger.debug(f"Updating workspace at {pkg.path}")
                await self.package_manager.bulk_update_dependencies(
                    pkg.path, [_package_update(u) for u in declared]
                )
            except UptodateError as exc:
                logger.warning(f"Failed to update workspace {pkg.path}: {exc}")
                failed.update((u.name, u) for u in declared)
        return [u for u in updates if u.name in failed]

    async def _apply_single(self, update: DependencyUpdate) -> bool:
        try:
            if self.workspace.is_monorepo:
                for pkg in get_workspaces_depending_on(update.name, self.workspace.packages):
                    await self.package_manager.update_dependency(
                        pkg.path, update.name, update.new_version
                    )
            else:
                await self.package_manager.update_dependency(
                    self.root_path, update.name, update.new_version
                )
        except UptodateError as exc:
            logger.error(f"Failed to update {update.name}: {exc}")
            return False
        logger.info(f"Updated {update.name} from {update.current_version} to {update.new_version}")
        return True

    async def _perform_individual_updates(
        self, updates: Sequence[DependencyUpdate]
    ) -> list[DependencyUpdate]:
        applied: list[DependencyUpdate] = []
        size = self.update_batch_size
        for index in range(0, len(updates), size):
            batch = updates[index : index + size]
            outcomes = await asyncio.gather(
                *(self._apply_single(u) for u in batch), return_exceptions=True
            )
            for update, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Failed to update {update.name}: {outcome}")
                elif outcome:
                    applied.append(update)
            if index + size < len(updates):
                await asyncio.sleep(self.update_batch_delay)

        logger.info(f"Individual updates completed: {len(applied)}/{len(updates)} successful")
        return applied


def _package_update(update: DependencyUpdate) -> PackageUpdate:
    return PackageUpdate(name=update.name, version=update.new_version)
