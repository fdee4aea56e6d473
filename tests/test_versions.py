"""Tests for uptodate.versions."""

from __future__ import annotations

import pytest

from uptodate.versions import (
    can_update,
    clean_version,
    highest_version,
    is_breaking,
    is_specific_version,
    is_update_allowed,
    parse_version,
    preserve_range_prefix,
)


class TestCleanVersion:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("^1.2.3", "1.2.3"),
            ("~0.4.0", "0.4.0"),
            (">=2.0.0", "2.0.0"),
            ("<3.0.0", "3.0.0"),
            ("1.2.3", "1.2.3"),
        ],
    )
    def test_strips_range_operators(self, raw: str, expected: str) -> None:
        assert clean_version(raw) == expected

    def test_keeps_wildcards(self) -> None:
        assert clean_version("1.x") == "1.x"


class TestParseVersion:
    def test_full_semver(self) -> None:
        v = parse_version("1.2.3")
        assert v is not None
        assert (v.major, v.minor, v.patch) == (1, 2, 3)

    def test_leading_v(self) -> None:
        v = parse_version("v2.0.1")
        assert v is not None
        assert v.major == 2

    def test_prerelease(self) -> None:
        v = parse_version("3.0.0-beta.1")
        assert v is not None
        assert v.prerelease == "beta.1"

    @pytest.mark.parametrize("raw", ["", None, "1.2", "latest", "1.x", "workspace:*"])
    def test_invalid_returns_none(self, raw: str | None) -> None:
        assert parse_version(raw) is None


class TestIsSpecificVersion:
    def test_pinned(self) -> None:
        assert is_specific_version("18.3.0")

    @pytest.mark.parametrize("raw", ["^18.0.0", "~1.0.0", ">=1", "<2", "*"])
    def test_ranges(self, raw: str) -> None:
        assert not is_specific_version(raw)


class TestCanUpdate:
    def test_older_current(self) -> None:
        assert can_update("1.0.0", "1.0.1")

    def test_equal(self) -> None:
        assert not can_update("1.0.0", "1.0.0")

    def test_newer_current(self) -> None:
        assert not can_update("2.0.0", "1.9.9")

    def test_unparseable_never_updates(self) -> None:
        assert not can_update("latest", "1.0.0")
        assert not can_update("1.0.0", None)


class TestIsBreaking:
    def test_major_jump(self) -> None:
        assert is_breaking("17.0.2", "18.0.0")

    def test_minor_jump(self) -> None:
        assert not is_breaking("17.0.2", "17.1.0")

    def test_unparseable_is_never_breaking(self) -> None:
        assert not is_breaking("next", "18.0.0")


class TestHighestVersion:
    def test_picks_greatest_valid(self) -> None:
        assert highest_version({"4.17.20", "4.17.21", "4.9.0"}) == "4.17.21"

    def test_ignores_invalid(self) -> None:
        assert highest_version({"latest", "1.0.0"}) == "1.0.0"

    def test_falls_back_to_first_sorted(self) -> None:
        assert highest_version({"next", "latest"}) == "latest"

    def test_empty(self) -> None:
        assert highest_version([]) is None


class TestIsUpdateAllowed:
    def test_none_rejects_everything(self) -> None:
        assert not is_update_allowed("none", "1.0.0", "1.0.1")

    def test_patch(self) -> None:
        assert is_update_allowed("patch", "1.2.0", "1.2.9")
        assert not is_update_allowed("patch", "1.2.0", "1.3.0")

    def test_minor(self) -> None:
        assert is_update_allowed("minor", "1.2.0", "1.9.0")
        assert not is_update_allowed("minor", "1.2.0", "2.0.0")

    def test_major_accepts_anything(self) -> None:
        assert is_update_allowed("major", "1.0.0", "5.0.0")
        assert is_update_allowed("major", "garbage", "5.0.0")

    def test_unparseable_rejected_by_bounded_strategies(self) -> None:
        assert not is_update_allowed("minor", "garbage", "1.0.0")


class TestPreserveRangePrefix:
    def test_caret(self) -> None:
        assert preserve_range_prefix("^18.2.0", "18.3.1") == "^18.3.1"

    def test_tilde(self) -> None:
        assert preserve_range_prefix("~1.0.0", "1.0.5") == "~1.0.5"

    def test_pinned(self) -> None:
        assert preserve_range_prefix("18.2.0", "18.3.1") == "18.3.1"

    def test_quoted(self) -> None:
        assert preserve_range_prefix("'^1.0.0'", "2.0.0") == "^2.0.0"
