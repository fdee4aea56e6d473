"""Version parsing and comparison utilities.

Handles conversion between npm-style version specifiers and semver objects.
Specifiers are "cleaned" by stripping range operators ("^1.2.3" → "1.2.3")
before comparison; anything that still isn't a valid semver string is
treated as unparseable and never triggers an update or a breaking change.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Literal

import semver

UpdateStrategy = Literal["none", "patch", "minor", "major"]

_RANGE_CHARS = re.compile(r"[\^~>=<]")
_NON_SPECIFIC = re.compile(r"[\^~>=<*]")


def clean_version(version_str: str) -> str:
    """Strip range operators from a version specifier.

    Examples:
        "^1.2.3" → "1.2.3"
        "~0.4.0" → "0.4.0"
        ">=2.0.0" → "2.0.0"
    """
    return _RANGE_CHARS.sub("", version_str).strip()


def parse_version(version_str: str | None) -> semver.Version | None:
    """Parse a version string into a semver.Version object.

    A leading "v" is tolerated ("v1.2.3" → "1.2.3"). Incomplete versions
    like "1.2" and ranges like "1.x" are not valid and return None.
    """
    if not version_str:
        return None
    candidate = version_str.strip()
    if candidate[:1] in ("v", "V"):
        candidate = candidate[1:]
    try:
        return semver.Version.parse(candidate)
    except (ValueError, TypeError):
        return None


def is_valid(version_str: str | None) -> bool:
    return parse_version(version_str) is not None


def is_specific_version(version_str: str) -> bool:
    """True for a fully pinned version, False for any range specifier."""
    return _NON_SPECIFIC.search(version_str) is None


def can_update(current: str | None, latest: str | None) -> bool:
    """True if both versions parse and current is strictly older than latest."""
    cur = parse_version(current)
    new = parse_version(latest)
    return cur is not None and new is not None and cur < new


def is_breaking(current: str | None, latest: str | None) -> bool:
    """True if latest's major component exceeds current's.

    Unparseable versions are never breaking.
    """
    cur = parse_version(current)
    new = parse_version(latest)
    if cur is None or new is None:
        return False
    return new.major > cur.major


def highest_version(versions: Iterable[str]) -> str | None:
    """Return the greatest valid version, or the first value if none parse.

    Values are sorted before the fallback so the result does not depend on
    set iteration order.
    """
    ordered = sorted(versions)
    valid = [v for v in ordered if is_valid(v)]
    if valid:
        return max(valid, key=lambda v: parse_version(v))
    return ordered[0] if ordered else None


def is_update_allowed(strategy: UpdateStrategy, current: str, latest: str) -> bool:
    """Check whether moving from current to latest fits an update strategy.

    - none: never
    - patch: same major and minor
    - minor: same major
    - major: anything
    """
    if strategy == "none":
        return False
    if strategy == "major":
        return True

    cur = parse_version(current)
    new = parse_version(latest)
    if cur is None or new is None:
        return False
    if strategy == "minor":
        return cur.major == new.major
    return cur.major == new.major and cur.minor == new.minor


def preserve_range_prefix(old_specifier: str, new_version: str) -> str:
    """Carry a leading "^" or "~" from an old specifier over to a new version.

    Examples:
        preserve_range_prefix("^18.2.0", "18.3.1") → "^18.3.1"
        preserve_range_prefix("18.2.0", "18.3.1") → "18.3.1"
    """
    stripped = old_specifier.strip().strip("'\"")
    if stripped[:1] in ("^", "~"):
        return stripped[0] + new_version
    return new_version
