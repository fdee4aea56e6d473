"""Normalization of package-manager "outdated" reports.

Each package manager reports the upstream latest version in its own shape:

- npm / pnpm: {"name": {"current": ..., "latest": ...}}
- npm --workspaces: {"name": [{...}, {...}]} when several workspaces
  declare the same dependency
- some pnpm versions: {"name": {"latestVersion": ...}}
- yarn classic: NDJSON, with a {"type": "table"} line holding rows

Raw entries are classified into a closed set of variants, in priority order
latest → bare string → latestVersion → version, and read back through a
single normalizer, extract_latest_version().
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Union

from pydantic import BaseModel

from .models import PackageManagerName
from .versions import highest_version

logger = logging.getLogger(__name__)


class LatestField(BaseModel):
    kind: Literal["latest"] = "latest"
    latest: str
    current: str | None = None


class BareVersion(BaseModel):
    kind: Literal["bare"] = "bare"
    version: str


class LatestVersionField(BaseModel):
    kind: Literal["latest_version"] = "latest_version"
    latest_version: str


class VersionField(BaseModel):
    kind: Literal["version"] = "version"
    version: str


class MultiReport(BaseModel):
    """Several reports for one dependency (npm --workspaces)."""

    kind: Literal["multi"] = "multi"
    entries: list["OutdatedEntry"]


class Unrecognized(BaseModel):
    kind: Literal["unrecognized"] = "unrecognized"
    raw: Any = None


OutdatedEntry = Union[
    LatestField, BareVersion, LatestVersionField, VersionField, MultiReport, Unrecognized
]

MultiReport.model_rebuild()


def _non_empty_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def classify_entry(raw: Any) -> OutdatedEntry:
    """Classify one raw report entry into its variant."""
    if isinstance(raw, list):
        return MultiReport(entries=[classify_entry(item) for item in raw])
    if isinstance(raw, str):
        return BareVersion(version=raw) if raw else Unrecognized(raw=raw)
    if not isinstance(raw, dict):
        return Unrecognized(raw=raw)

    latest = _non_empty_str(raw.get("latest"))
    if latest:
        return LatestField(latest=latest, current=_non_empty_str(raw.get("current")))
    latest_version = _non_empty_str(raw.get("latestVersion"))
    if latest_version:
        return LatestVersionField(latest_version=latest_version)
    version = _non_empty_str(raw.get("version"))
    if version:
        return VersionField(version=version)
    return Unrecognized(raw=raw)


def extract_latest_version(entry: OutdatedEntry) -> str | None:
    """Return the upstream latest version carried by a report entry.

    A MultiReport yields the highest latest version among its entries.
    """
    if isinstance(entry, LatestField):
        return entry.latest
    if isinstance(entry, BareVersion):
        return entry.version
    if isinstance(entry, LatestVersionField):
        return entry.latest_version
    if isinstance(entry, VersionField):
        return entry.version
    if isinstance(entry, MultiReport):
        candidates = [v for v in map(extract_latest_version, entry.entries) if v]
        return highest_version(candidates)

    logger.debug(f"Could not extract latest version from: {entry.raw!r}")
    return None


def _parse_yarn_ndjson(stdout: str) -> dict[str, OutdatedEntry]:
    """Parse yarn classic's line-delimited "outdated --json" output.

    Raises:
        ValueError: If no line is valid JSON.
    """
    entries: dict[str, OutdatedEntry] = {}
    parsed_any = False
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except ValueError:
            continue
        parsed_any = True
        if not isinstance(message, dict) or message.get("type") != "table":
            continue

        data = message.get("data") or {}
        head = [str(h).lower() for h in data.get("head", [])]
        if "package" not in head or "latest" not in head:
            continue
        name_idx = head.index("package")
        latest_idx = head.index("latest")
        current_idx = head.index("current") if "current" in head else None
        for row in data.get("body", []):
            if not isinstance(row, list) or len(row) <= max(name_idx, latest_idx):
                continue
            latest = _non_empty_str(row[latest_idx])
            if not latest:
                continue
            current = row[current_idx] if current_idx is not None else None
            entries[str(row[name_idx])] = LatestField(
                latest=latest, current=_non_empty_str(current)
            )

    if not parsed_any:
        raise ValueError("yarn outdated output contains no JSON")
    return entries


def parse_outdated_output(
    stdout: str, package_manager: PackageManagerName
) -> dict[str, OutdatedEntry]:
    """Parse the stdout of an "outdated" command into classified entries.

    Args:
        stdout: Raw command output.
        package_manager: Which manager produced it.

    Returns:
        Map of dependency name → entry. Empty output means nothing is outdated.

    Raises:
        ValueError: If the output is not in a recognizable format.
    """
    if not stdout.strip():
        return {}

    try:
        data = json.loads(stdout)
    except ValueError:
        if package_manager == "yarn":
            return _parse_yarn_ndjson(stdout)
        raise

    if isinstance(data, dict) and data.get("type") in ("table", "info", "warning"):
        return _parse_yarn_ndjson(stdout)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return {str(name): classify_entry(raw) for name, raw in data.items()}
