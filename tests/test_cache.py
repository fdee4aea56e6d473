"""Tests for uptodate.cache."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from conftest import FakeClock, write_manifest
from uptodate.cache import (
    STABLE_PACKAGE_TTL,
    VERSION_CACHE_TTL,
    WORKSPACE_CACHE_TTL,
    CacheStore,
    is_stable_package,
)

HOUR = 60 * 60


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> CacheStore:
    return CacheStore(tmp_path, clock=clock)


class TestIsStablePackage:
    @pytest.mark.parametrize(
        "name",
        ["react", "react-dom", "typescript", "babel/core", "@babel/core", "@types/react-dom", "@types/node"],
    )
    def test_stable(self, name: str) -> None:
        assert is_stable_package(name)

    @pytest.mark.parametrize("name", ["left-pad", "reactive", "preact", "@acme/react"])
    def test_not_stable(self, name: str) -> None:
        assert not is_stable_package(name)


class TestVersionCache:
    def test_directory_created_lazily(self, store: CacheStore) -> None:
        assert store.get_cached_version("react") is None
        assert not store.cache_dir.exists()
        store.set_cached_version("react", "18.3.1")
        assert store.version_cache_file.exists()

    def test_hit(self, store: CacheStore) -> None:
        store.set_cached_version("left-pad", "1.3.0")
        assert store.get_cached_version("left-pad") == "1.3.0"

    def test_package_manager_must_match(self, store: CacheStore) -> None:
        store.set_cached_version("left-pad", "1.3.0", "npm")
        assert store.get_cached_version("left-pad", "pnpm") is None

    def test_stable_package_ttl(self, store: CacheStore, clock: FakeClock) -> None:
        store.set_cached_version("react", "18.3.1")
        store.set_cached_version("other", "1.0.0")

        clock.advance(10 * HOUR)

        assert store.get_cached_version("react") == "18.3.1"
        assert store.get_cached_version("other") is None

    def test_regular_ttl_boundary(self, store: CacheStore, clock: FakeClock) -> None:
        store.set_cached_version("other", "1.0.0")
        clock.advance(VERSION_CACHE_TTL - 1)
        assert store.get_cached_version("other") == "1.0.0"
        clock.advance(1)
        assert store.get_cached_version("other") is None

    def test_stable_expires_after_a_day(self, store: CacheStore, clock: FakeClock) -> None:
        store.set_cached_version("react", "18.3.1")
        clock.advance(STABLE_PACKAGE_TTL)
        assert store.get_cached_version("react") is None

    def test_set_merges_entries(self, store: CacheStore) -> None:
        store.set_cached_versions({"a": "1.0.0", "b": "2.0.0"})
        store.set_cached_version("c", "3.0.0")
        assert store.get_cached_versions(["a", "b", "c", "d"]) == {
            "a": "1.0.0",
            "b": "2.0.0",
            "c": "3.0.0",
        }

    def test_corrupt_file_degrades(self, store: CacheStore) -> None:
        store.cache_dir.mkdir()
        store.version_cache_file.write_text("{broken")
        assert store.get_cached_version("a") is None

        store.set_cached_version("a", "1.0.0")
        assert store.get_cached_version("a") == "1.0.0"

    def test_malformed_entry_is_a_miss(self, store: CacheStore) -> None:
        store.cache_dir.mkdir()
        store.version_cache_file.write_text(json.dumps({"a": {"version": "1.0.0"}}))
        assert store.get_cached_version("a") is None
        assert store.get_cached_versions(["a"]) == {}


class TestWorkspaceCache:
    def test_round_trip(self, store: CacheStore, tmp_path: Path) -> None:
        store.set_cached_workspace(["packages/a"], ["packages/*"], str(tmp_path))
        entry = store.get_cached_workspace(str(tmp_path))
        assert entry is not None
        assert entry.packages == ["packages/a"]
        assert entry.patterns == ["packages/*"]

    def test_other_root_is_a_miss(self, store: CacheStore, tmp_path: Path) -> None:
        store.set_cached_workspace([], [], str(tmp_path))
        assert store.get_cached_workspace("/somewhere/else") is None

    def test_expires(self, store: CacheStore, clock: FakeClock, tmp_path: Path) -> None:
        store.set_cached_workspace([], [], str(tmp_path))
        clock.advance(WORKSPACE_CACHE_TTL)
        assert store.get_cached_workspace(str(tmp_path)) is None

    def test_valid_when_files_untouched(
        self, store: CacheStore, clock: FakeClock, tmp_path: Path
    ) -> None:
        manifest = write_manifest(tmp_path, {"name": "root"})
        os.utime(manifest, (clock.now - 100, clock.now - 100))
        store.set_cached_workspace([], ["packages/*"], str(tmp_path))

        assert store.is_workspace_cache_valid(str(tmp_path))

    def test_invalid_when_tracked_file_modified(
        self, store: CacheStore, clock: FakeClock, tmp_path: Path
    ) -> None:
        manifest = write_manifest(tmp_path, {"name": "root"})
        os.utime(manifest, (clock.now - 100, clock.now - 100))
        store.set_cached_workspace([], ["packages/*"], str(tmp_path))

        lockfile = tmp_path / "pnpm-lock.yaml"
        lockfile.write_text("")
        os.utime(lockfile, (clock.now + 10, clock.now + 10))

        assert not store.is_workspace_cache_valid(str(tmp_path))

    def test_invalid_without_cache(self, store: CacheStore, tmp_path: Path) -> None:
        assert not store.is_workspace_cache_valid(str(tmp_path))


class TestMaintenance:
    def test_clean_expired_entries(self, store: CacheStore, clock: FakeClock, tmp_path: Path) -> None:
        store.set_cached_versions({"react": "18.3.1", "other": "1.0.0"})
        store.set_cached_workspace([], [], str(tmp_path))
        clock.advance(3 * HOUR)

        removed = store.clean_expired_entries()

        assert removed == 1
        assert store.get_cached_versions(["react", "other"]) == {"react": "18.3.1"}
        assert store.workspace_cache_file.exists()

        clock.advance(WORKSPACE_CACHE_TTL)
        store.clean_expired_entries()
        assert not store.workspace_cache_file.exists()

    def test_clear_cache(self, store: CacheStore, tmp_path: Path) -> None:
        store.set_cached_version("a", "1.0.0")
        store.set_cached_workspace([], [], str(tmp_path))

        store.clear_cache()

        assert not store.version_cache_file.exists()
        assert not store.workspace_cache_file.exists()

    def test_stats(self, store: CacheStore, tmp_path: Path) -> None:
        assert store.get_cache_stats().version_entries == 0

        store.set_cached_versions({"a": "1.0.0", "b": "2.0.0"})
        store.set_cached_workspace([], [], str(tmp_path))
        stats = store.get_cache_stats()

        assert stats.version_entries == 2
        assert stats.workspace_cached
        assert stats.total_size > 0
