"""Data models for uptodate.

These Pydantic models represent the core data structures passed between
workspace discovery, aggregation, caching and the update checker.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PackageManagerName = Literal["npm", "yarn", "pnpm"]
VersionSource = Literal["catalog", "direct"]


class WorkspacePackage(BaseModel):
    """One package.json inside the project.

    Attributes:
        name: Package name from the manifest, or its relative directory.
        path: Absolute path to the package directory.
        manifest: The raw parsed package.json.
        dependencies: Runtime dependency name → version specifier.
        dev_dependencies: Dev dependency name → version specifier.
        is_root: True for the workspace root manifest.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    manifest: dict[str, Any] = Field(default_factory=dict)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)
    is_root: bool = False

    def get_specifier(self, name: str) -> str | None:
        """Return the declared specifier for a dependency, runtime first."""
        return self.dependencies.get(name) or self.dev_dependencies.get(name)

    def all_dependencies(self, include_dev: bool = True) -> dict[str, str]:
        """Merge runtime and dev dependencies, dev entries winning on clashes."""
        if not include_dev:
            return dict(self.dependencies)
        return {**self.dependencies, **self.dev_dependencies}


class WorkspaceInfo(BaseModel):
    """The discovered project topology."""

    is_monorepo: bool
    root_path: str
    packages: list[WorkspacePackage] = Field(default_factory=list)
    workspace_patterns: list[str] = Field(default_factory=list)
    package_manager: PackageManagerName = "npm"
    catalog: dict[str, str] | None = None

    def package_names(self) -> set[str]:
        return {pkg.name for pkg in self.packages}

    def get_package(self, name: str) -> WorkspacePackage | None:
        for pkg in self.packages:
            if pkg.name == name:
                return pkg
        return None


class VersionInfo(BaseModel):
    """One workspace's declaration of a dependency during catalog resolution."""

    specified: str
    resolved: str
    source: VersionSource
    workspace: str


class ResolvedDependency(BaseModel):
    """The authoritative specifier picked for a dependency."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    source: VersionSource
    original_specifier: str


class BulkDependencyInfo(BaseModel):
    """A unique external dependency aggregated across all workspaces.

    Attributes:
        name: Dependency name.
        current_versions: Distinct cleaned versions declared across workspaces.
        latest_version: Upstream latest version; None until a lookup succeeds.
        workspaces: Names of the workspaces declaring the dependency.
        has_breaking_changes: Whether latest_version is a major jump. Only
            meaningful once latest_version is set.
    """

    name: str
    current_versions: set[str] = Field(default_factory=set)
    latest_version: str | None = None
    workspaces: list[str] = Field(default_factory=list)
    has_breaking_changes: bool = False


class CacheEntry(BaseModel):
    """A cached latest-version lookup."""

    version: str
    timestamp: float
    package_manager: str


class WorkspaceCacheEntry(BaseModel):
    """A cached workspace topology.

    Attributes:
        packages: Package directories relative to root_path.
        patterns: Workspace glob patterns that produced them.
        timestamp: Capture time (epoch seconds).
        root_path: Absolute workspace root the entry belongs to.
    """

    packages: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    timestamp: float
    root_path: str


class CacheStats(BaseModel):
    version_entries: int = 0
    workspace_cached: bool = False
    total_size: int = 0


class PackageUpdate(BaseModel):
    """A single name@version handed to a package manager."""

    name: str
    version: str

    @property
    def spec(self) -> str:
        return f"{self.name}@{self.version}"


class DependencyUpdate(BaseModel):
    """An available upgrade reported to the caller."""

    name: str
    current_version: str
    installed_version: str | None = None
    new_version: str
    has_breaking_changes: bool = False
    migration_instructions: str | None = None
    workspaces: list[str] = Field(default_factory=list)


class UpdateCheckResult(BaseModel):
    """Outcome of a check run, partitioned by breaking-change status."""

    updatable: list[DependencyUpdate] = Field(default_factory=list)
    breaking_changes: list[DependencyUpdate] = Field(default_factory=list)
