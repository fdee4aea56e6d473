"""Catalog-aware version resolution.

A dependency may be declared by several workspaces with different
specifiers, some of them indirections into the shared pnpm catalog
("catalog:"). resolve() picks the one specifier that is authoritative for
the whole workspace, using this priority:

1. Direct declarations beat catalog references.
2. Pinned versions ("1.2.3") beat ranges ("^1.2.3", ">=1.0", "*").
3. Parseable versions beat unparseable ones; among parseable ones the
   greater semver of the cleaned strings wins.
4. Plain string comparison breaks any remaining tie.

A pinned version outranks a range even when the range's ceiling is higher.
"""

from __future__ import annotations

import logging
from functools import cmp_to_key

from .manifest import CATALOG_PREFIX, is_catalog_reference
from .models import ResolvedDependency, VersionInfo, WorkspaceInfo
from .versions import clean_version, is_specific_version, parse_version

logger = logging.getLogger(__name__)


def resolve_catalog_specifier(
    name: str, specifier: str, workspace: WorkspaceInfo
) -> str | None:
    """Look up a "catalog:" reference in the workspace catalog table."""
    if not workspace.catalog:
        return None
    # Named catalogs ("catalog:react18") are not read, only the default one.
    if specifier != CATALOG_PREFIX and specifier != f"{CATALOG_PREFIX}default":
        return None
    return workspace.catalog.get(name)


def collect_version_infos(name: str, workspace: WorkspaceInfo) -> list[VersionInfo]:
    """Gather every workspace's declaration of a dependency.

    Runtime dependencies are consulted before devDependencies. Catalog
    references with no matching catalog entry are logged and skipped.
    """
    infos: list[VersionInfo] = []
    for pkg in workspace.packages:
        specifier = pkg.get_specifier(name)
        if not specifier:
            continue

        if is_catalog_reference(specifier):
            resolved = resolve_catalog_specifier(name, specifier, workspace)
            if resolved is None:
                logger.warning(
                    f"Catalog reference for {name} in {pkg.name} has no catalog entry"
                )
                continue
            infos.append(
                VersionInfo(
                    specified=specifier, resolved=resolved, source="catalog", workspace=pkg.name
                )
            )
        else:
            infos.append(
                VersionInfo(
                    specified=specifier, resolved=specifier, source="direct", workspace=pkg.name
                )
            )
    return infos


def _compare(a: VersionInfo, b: VersionInfo) -> int:
    """Order two declarations; negative means a is preferred."""
    if a.source != b.source:
        return -1 if a.source == "direct" else 1

    a_pinned = is_specific_version(a.resolved)
    b_pinned = is_specific_version(b.resolved)
    if a_pinned != b_pinned:
        return -1 if a_pinned else 1

    a_ver = parse_version(clean_version(a.resolved))
    b_ver = parse_version(clean_version(b.resolved))
    if (a_ver is None) != (b_ver is None):
        return -1 if a_ver is not None else 1
    if a_ver is not None and b_ver is not None and a_ver != b_ver:
        return -1 if a_ver > b_ver else 1

    if a.resolved != b.resolved:
        return -1 if a.resolved > b.resolved else 1
    return 0


def resolve(name: str, workspace: WorkspaceInfo) -> ResolvedDependency | None:
    """Pick the authoritative specifier for a dependency.

    Args:
        name: Dependency name.
        workspace: The discovered workspace, including its catalog.

    Returns:
        The winning declaration, or None if nothing (resolvable) declares it.

    Example:
        Declarations {catalog → "18.2.0", "^18.0.0", "18.3.0"} resolve to
        "18.3.0": direct beats catalog, then pinned beats range.
    """
    infos = collect_version_infos(name, workspace)
    if not infos:
        return None

    best = sorted(infos, key=cmp_to_key(_compare))[0]
    return ResolvedDependency(
        name=name,
        version=best.resolved,
        source=best.source,
        original_specifier=best.specified,
    )


def should_update_catalog(name: str, workspace: WorkspaceInfo) -> bool:
    """True if the dependency has a catalog entry that some workspace uses."""
    if not workspace.catalog or name not in workspace.catalog:
        return False
    return any(
        is_catalog_reference(pkg.get_specifier(name) or "") for pkg in workspace.packages
    )


def get_direct_update_workspaces(name: str, workspace: WorkspaceInfo) -> list[str]:
    """Return paths of workspaces declaring the dependency without the catalog."""
    paths: list[str] = []
    for pkg in workspace.packages:
        specifier = pkg.get_specifier(name)
        if specifier and not is_catalog_reference(specifier):
            paths.append(pkg.path)
    return paths


def get_catalog_dependencies(workspace: WorkspaceInfo) -> dict[str, str]:
    """Return catalog entries referenced by at least one workspace."""
    if not workspace.catalog:
        return {}
    return {
        name: version
        for name, version in workspace.catalog.items()
        if should_update_catalog(name, workspace)
    }
