"""Tests for uptodate.manifest."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import write_manifest
from uptodate.errors import ConfigurationError
from uptodate.manifest import (
    detect_package_manager,
    get_manifest_workspaces,
    get_workspace_patterns,
    load_root_manifest,
    package_from_manifest,
    parse_pnpm_catalog,
    parse_pnpm_packages,
    update_catalog_entries,
)

PNPM_WORKSPACE = """\
# workspace layout
packages:
  - 'apps/*'
  - "packages/*"
  - tools/cli # inline comment

catalog:
  react: ^18.2.0
  'react-dom': '^18.2.0'
  "@types/react": ~18.2.0
  zod: 3.22.0

onlyBuiltDependencies:
  - esbuild
"""


class TestLoadRootManifest:
    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="package.json not found"):
            load_root_manifest(tmp_path)

    def test_corrupt(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("{not json")
        with pytest.raises(ConfigurationError):
            load_root_manifest(tmp_path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("[]")
        with pytest.raises(ConfigurationError):
            load_root_manifest(tmp_path)

    def test_valid(self, tmp_path: Path) -> None:
        write_manifest(tmp_path, {"name": "x"})
        assert load_root_manifest(tmp_path) == {"name": "x"}


class TestPackageFromManifest:
    def test_name_fallback(self, tmp_path: Path) -> None:
        pkg = package_from_manifest({}, tmp_path, "packages/a", is_root=False)
        assert pkg.name == "packages/a"
        assert pkg.dependencies == {}

    def test_drops_non_string_specifiers(self, tmp_path: Path) -> None:
        pkg = package_from_manifest(
            {"name": "a", "dependencies": {"x": "1.0.0", "y": 3}}, tmp_path, "a", is_root=True
        )
        assert pkg.dependencies == {"x": "1.0.0"}
        assert pkg.is_root


class TestDetectPackageManager:
    def test_pnpm_wins_over_others(self, tmp_path: Path) -> None:
        for name in ("pnpm-lock.yaml", "yarn.lock", "package-lock.json"):
            (tmp_path / name).write_text("")
        assert detect_package_manager(tmp_path) == "pnpm"

    def test_yarn_over_npm(self, tmp_path: Path) -> None:
        (tmp_path / "yarn.lock").write_text("")
        (tmp_path / "package-lock.json").write_text("")
        assert detect_package_manager(tmp_path) == "yarn"

    def test_npm_lockfile(self, tmp_path: Path) -> None:
        (tmp_path / "package-lock.json").write_text("")
        assert detect_package_manager(tmp_path) == "npm"

    def test_corepack_field(self, tmp_path: Path) -> None:
        assert detect_package_manager(tmp_path, {"packageManager": "pnpm@9.1.0"}) == "pnpm"

    def test_unknown_corepack_field_defaults_to_npm(self, tmp_path: Path) -> None:
        assert detect_package_manager(tmp_path, {"packageManager": "bun@1.0.0"}) == "npm"

    def test_default(self, tmp_path: Path) -> None:
        assert detect_package_manager(tmp_path) == "npm"


class TestPnpmWorkspaceParsing:
    def test_packages(self) -> None:
        assert parse_pnpm_packages(PNPM_WORKSPACE) == ["apps/*", "packages/*", "tools/cli"]

    def test_catalog(self) -> None:
        assert parse_pnpm_catalog(PNPM_WORKSPACE) == {
            "react": "^18.2.0",
            "react-dom": "^18.2.0",
            "@types/react": "~18.2.0",
            "zod": "3.22.0",
        }

    def test_no_catalog(self) -> None:
        assert parse_pnpm_catalog("packages:\n  - 'a/*'\n") == {}


class TestWorkspacePatterns:
    def test_array_form(self) -> None:
        assert get_manifest_workspaces({"workspaces": ["packages/*", "", 3]}) == ["packages/*"]

    def test_object_form(self) -> None:
        assert get_manifest_workspaces({"workspaces": {"packages": ["libs/*"]}}) == ["libs/*"]

    def test_absent(self) -> None:
        assert get_manifest_workspaces({}) == []

    def test_pnpm_merges_and_dedupes(self, tmp_path: Path) -> None:
        (tmp_path / "pnpm-workspace.yaml").write_text(PNPM_WORKSPACE)
        patterns, catalog = get_workspace_patterns(
            {"workspaces": ["packages/*", "extra/*"]}, "pnpm", tmp_path
        )
        assert patterns == ["apps/*", "packages/*", "tools/cli", "extra/*"]
        assert catalog is not None
        assert catalog["zod"] == "3.22.0"

    def test_npm_ignores_pnpm_file(self, tmp_path: Path) -> None:
        (tmp_path / "pnpm-workspace.yaml").write_text(PNPM_WORKSPACE)
        patterns, catalog = get_workspace_patterns({"workspaces": ["packages/*"]}, "npm", tmp_path)
        assert patterns == ["packages/*"]
        assert catalog is None


class TestUpdateCatalogEntries:
    def test_rewrites_only_catalog_block(self, tmp_path: Path) -> None:
        path = tmp_path / "pnpm-workspace.yaml"
        path.write_text(PNPM_WORKSPACE)

        updated = update_catalog_entries(
            path, {"react": "18.3.1", "react-dom": "18.3.1", "zod": "3.23.8", "missing": "1.0.0"}
        )

        assert sorted(updated) == ["react", "react-dom", "zod"]
        content = path.read_text()
        assert "  react: ^18.3.1\n" in content
        assert "  'react-dom': '^18.3.1'\n" in content
        assert "  zod: 3.23.8\n" in content
        assert '  "@types/react": ~18.2.0\n' in content
        assert "  - 'apps/*'\n" in content
        assert content.endswith("onlyBuiltDependencies:\n  - esbuild\n")
