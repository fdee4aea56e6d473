"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from uptodate.managers import NpmPackageManager, PackageManager
from uptodate.models import WorkspaceInfo, WorkspacePackage

MANAGER_COMMANDS = (
    "get_dependencies",
    "get_installed_version",
    "check_outdated",
    "check_workspace_outdated",
    "get_latest_version",
    "update_dependency",
    "bulk_update_dependencies",
    "bulk_update_workspace_dependencies",
    "install",
)


def write_manifest(directory: Path, manifest: dict[str, Any]) -> Path:
    """Write a package.json into directory, creating it if needed."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(manifest, indent=2))
    return path


class FakeClock:
    """Manually advanced clock for cache expiry tests."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def single_project(tmp_path: Path) -> Path:
    """A single-package npm project."""
    write_manifest(
        tmp_path,
        {
            "name": "my-app",
            "version": "1.0.0",
            "dependencies": {"react": "^17.0.2", "lodash": "~4.17.20"},
            "devDependencies": {"jest": "29.0.0"},
        },
    )
    (tmp_path / "package-lock.json").write_text("{}")
    return tmp_path


@pytest.fixture
def npm_monorepo(tmp_path: Path) -> Path:
    """An npm workspace with two packages depending on each other."""
    write_manifest(
        tmp_path,
        {
            "name": "monorepo",
            "private": True,
            "workspaces": ["packages/*"],
            "devDependencies": {"typescript": "^5.0.0"},
        },
    )
    write_manifest(
        tmp_path / "packages" / "a",
        {"name": "@acme/a", "dependencies": {"lodash": "^4.17.20"}},
    )
    write_manifest(
        tmp_path / "packages" / "b",
        {
            "name": "@acme/b",
            "dependencies": {"lodash": "~4.17.21", "@acme/a": "workspace:*"},
        },
    )
    (tmp_path / "package-lock.json").write_text("{}")
    return tmp_path


@pytest.fixture
def pnpm_monorepo(tmp_path: Path) -> Path:
    """A pnpm workspace using the default catalog."""
    write_manifest(tmp_path, {"name": "pnpm-root", "private": True})
    (tmp_path / "pnpm-lock.yaml").write_text("lockfileVersion: '9.0'\n")
    (tmp_path / "pnpm-workspace.yaml").write_text(
        "packages:\n"
        "  - 'apps/*'\n"
        '  - "packages/*"\n'
        "\n"
        "catalog:\n"
        "  react: ^18.2.0\n"
        "  'react-dom': '^18.2.0'\n"
        "  zod: 3.22.0\n"
    )
    write_manifest(
        tmp_path / "apps" / "web",
        {"name": "web", "dependencies": {"react": "catalog:", "react-dom": "catalog:", "ui": "workspace:*"}},
    )
    write_manifest(
        tmp_path / "packages" / "ui",
        {"name": "ui", "dependencies": {"react": "^18.0.0", "zod": "catalog:"}},
    )
    return tmp_path


def make_workspace(
    packages: list[WorkspacePackage],
    *,
    catalog: dict[str, str] | None = None,
    is_monorepo: bool = True,
    package_manager: str = "pnpm",
    root_path: str = "/repo",
) -> WorkspaceInfo:
    """Build a WorkspaceInfo in memory."""
    return WorkspaceInfo(
        is_monorepo=is_monorepo,
        root_path=root_path,
        packages=packages,
        workspace_patterns=["packages/*"] if is_monorepo else [],
        package_manager=package_manager,  # type: ignore[arg-type]
        catalog=catalog,
    )


def make_manager(cls: type[PackageManager] = NpmPackageManager) -> MagicMock:
    """A package manager double whose commands are all AsyncMocks."""
    manager = MagicMock(spec=cls)
    manager.name = cls.name
    manager.supports_workspace_bulk_update = cls.supports_workspace_bulk_update
    for command in MANAGER_COMMANDS:
        setattr(manager, command, AsyncMock())
    return manager


def make_package(
    name: str,
    dependencies: dict[str, str] | None = None,
    dev_dependencies: dict[str, str] | None = None,
    path: str | None = None,
) -> WorkspacePackage:
    return WorkspacePackage(
        name=name,
        path=path or f"/repo/packages/{name}",
        dependencies=dependencies or {},
        dev_dependencies=dev_dependencies or {},
    )
