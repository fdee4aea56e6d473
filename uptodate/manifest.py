"""Manifest and workspace-definition file utilities.

Reads package.json files, detects the package manager from lockfiles, and
does simple line-oriented parsing of pnpm-workspace.yaml. The YAML support
is deliberately limited to the two blocks we care about: the `packages:`
list and the `catalog:` table.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .models import PackageManagerName, WorkspacePackage
from .versions import preserve_range_prefix

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
PNPM_WORKSPACE_FILE = "pnpm-workspace.yaml"

# Probed in order, first match wins.
LOCKFILES: list[tuple[str, PackageManagerName]] = [
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
]

# Files whose modification invalidates a cached workspace topology.
WORKSPACE_DEFINITION_FILES = [
    MANIFEST_NAME,
    PNPM_WORKSPACE_FILE,
    "yarn.lock",
    "pnpm-lock.yaml",
    "package-lock.json",
]

CATALOG_PREFIX = "catalog:"

_CATALOG_LINE = re.compile(
    r"""^(?P<indent>\s+)(?P<kq>['"]?)(?P<key>[^'"\s:][^'"]*?)(?P=kq)\s*:\s*(?P<value>.*?)\s*$"""
)


def load_manifest(path: Path) -> dict[str, Any]:
    """Load and parse a package.json file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is not a JSON object.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    return data


def load_root_manifest(root: Path) -> dict[str, Any]:
    """Load the root package.json, the one file a run cannot do without.

    Raises:
        ConfigurationError: If the manifest is missing or unreadable.
    """
    manifest_path = root / MANIFEST_NAME
    if not manifest_path.exists():
        raise ConfigurationError(f"package.json not found at {manifest_path}")
    try:
        return load_manifest(manifest_path)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Failed to read {manifest_path}: {exc}", exc) from exc


def package_from_manifest(
    manifest: Mapping[str, Any], path: Path, fallback_name: str, *, is_root: bool
) -> WorkspacePackage:
    """Build a WorkspacePackage from a parsed manifest."""
    return WorkspacePackage(
        name=manifest.get("name") or fallback_name,
        path=str(path),
        manifest=dict(manifest),
        dependencies=_string_map(manifest.get("dependencies")),
        dev_dependencies=_string_map(manifest.get("devDependencies")),
        is_root=is_root,
    )


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): v for k, v in value.items() if isinstance(v, str)}


def detect_package_manager(
    root: Path, manifest: Mapping[str, Any] | None = None
) -> PackageManagerName:
    """Detect the package manager used by a project.

    Lockfiles are probed in a fixed priority order (pnpm, yarn, npm). With no
    lockfile, the corepack "packageManager" field (e.g. "pnpm@9.1.0") is
    consulted before defaulting to npm.
    """
    for filename, manager in LOCKFILES:
        if (root / filename).exists():
            return manager

    declared = (manifest or {}).get("packageManager")
    if isinstance(declared, str):
        name = declared.split("@", 1)[0].strip()
        if name in ("npm", "yarn", "pnpm"):
            return name  # type: ignore[return-value]
    return "npm"


def _strip_scalar(value: str) -> str:
    """Drop a trailing comment and surrounding quotes from a YAML scalar."""
    value = value.strip()
    if value[:1] in ("'", '"'):
        quote = value[0]
        end = value.find(quote, 1)
        return value[1:end] if end > 0 else value[1:]
    return value.split(" #", 1)[0].strip()


def _section_lines(content: str, key: str) -> Iterator[str]:
    """Yield the raw lines belonging to a top-level YAML key."""
    inside = False
    for line in content.splitlines():
        stripped = line.strip()
        if not inside:
            if stripped == f"{key}:" and not line[:1].isspace():
                inside = True
            continue
        if not stripped or stripped.startswith("#"):
            continue
        if not line[:1].isspace() and not stripped.startswith("-"):
            return
        yield line


def parse_pnpm_packages(content: str) -> list[str]:
    """Extract the `packages:` glob list from pnpm-workspace.yaml content."""
    patterns: list[str] = []
    for line in _section_lines(content, "packages"):
        stripped = line.strip()
        if stripped.startswith("- "):
            pattern = _strip_scalar(stripped[2:])
            if pattern:
                patterns.append(pattern)
    return patterns


def parse_pnpm_catalog(content: str) -> dict[str, str]:
    """Extract the default `catalog:` table from pnpm-workspace.yaml content."""
    catalog: dict[str, str] = {}
    for line in _section_lines(content, "catalog"):
        match = _CATALOG_LINE.match(line)
        if match and match.group("value"):
            catalog[match.group("key")] = _strip_scalar(match.group("value"))
    return catalog


def read_pnpm_workspace(root: Path) -> tuple[list[str], dict[str, str]]:
    """Read packages and catalog from pnpm-workspace.yaml, if present.

    Read errors are logged and treated as an empty file.
    """
    path = root / PNPM_WORKSPACE_FILE
    if not path.exists():
        return [], {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning(f"Failed to read {PNPM_WORKSPACE_FILE}: {exc}")
        return [], {}
    return parse_pnpm_packages(content), parse_pnpm_catalog(content)


def get_manifest_workspaces(manifest: Mapping[str, Any]) -> list[str]:
    """Extract workspace patterns from a package.json "workspaces" field.

    Supports both the array form and the yarn `{ "packages": [...] }` form.
    """
    workspaces = manifest.get("workspaces")
    if isinstance(workspaces, list):
        return [p for p in workspaces if isinstance(p, str) and p]
    if isinstance(workspaces, dict):
        packages = workspaces.get("packages")
        if isinstance(packages, list):
            return [p for p in packages if isinstance(p, str) and p]
    return []


def get_workspace_patterns(
    manifest: Mapping[str, Any], package_manager: PackageManagerName, root: Path
) -> tuple[list[str], dict[str, str] | None]:
    """Collect workspace patterns and (for pnpm) the catalog table.

    Returns:
        Tuple of (deduplicated patterns in declaration order, catalog or None).
    """
    patterns: list[str] = []
    catalog: dict[str, str] | None = None

    if package_manager == "pnpm":
        pnpm_patterns, pnpm_catalog = read_pnpm_workspace(root)
        patterns.extend(pnpm_patterns)
        catalog = pnpm_catalog or None

    patterns.extend(get_manifest_workspaces(manifest))
    return list(dict.fromkeys(patterns)), catalog


def is_catalog_reference(specifier: str) -> bool:
    return specifier.startswith(CATALOG_PREFIX)


def update_catalog_entries(path: Path, updates: Mapping[str, str]) -> list[str]:
    """Rewrite catalog versions in pnpm-workspace.yaml in place.

    Only lines inside the top-level `catalog:` block are touched. Indentation,
    key quoting and a leading "^"/"~" on the old value are preserved.

    Args:
        path: Path to pnpm-workspace.yaml.
        updates: Map of dependency name → new version.

    Returns:
        Names whose catalog entry was rewritten.
    """
    lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
    updated: list[str] = []
    inside = False

    for i, line in enumerate(lines):
        stripped = line.strip()
        if not inside:
            inside = stripped == "catalog:" and not line[:1].isspace()
            continue
        if not stripped or stripped.startswith("#"):
            continue
        if not line[:1].isspace():
            break

        match = _CATALOG_LINE.match(line.rstrip("\r\n"))
        if not match or match.group("key") not in updates:
            continue
        name = match.group("key")
        old_value = match.group("value")
        new_value = preserve_range_prefix(_strip_scalar(old_value), updates[name])
        if old_value[:1] in ("'", '"'):
            new_value = f"{old_value[0]}{new_value}{old_value[0]}"
        ending = line[len(line.rstrip("\r\n")) :]
        kq = match.group("kq")
        lines[i] = f"{match.group('indent')}{kq}{name}{kq}: {new_value}{ending}"
        updated.append(name)

    path.write_text("".join(lines), encoding="utf-8")
    for name in updates:
        if name not in updated:
            logger.warning(f"Catalog entry not found for {name}")
    return updated
