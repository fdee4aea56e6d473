"""Tests for uptodate.errors."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, call, patch

import pytest

from uptodate.errors import ConfigurationError, PackageManagerError, UptodateError, with_retry


class TestWithRetry:
    @patch("uptodate.errors.asyncio.sleep", new_callable=AsyncMock)
    def test_linear_backoff(self, mock_sleep: AsyncMock) -> None:
        fn = AsyncMock(side_effect=[OSError("reset"), OSError("reset"), "ok"])

        assert asyncio.run(with_retry(fn, retries=3, delay=0.5)) == "ok"
        assert fn.await_count == 3
        assert mock_sleep.await_args_list == [call(0.5), call(1.0)]

    @patch("uptodate.errors.asyncio.sleep", new_callable=AsyncMock)
    def test_reraises_last_error(self, mock_sleep: AsyncMock) -> None:
        fn = AsyncMock(side_effect=[OSError("first"), OSError("second")])

        with pytest.raises(OSError, match="second"):
            asyncio.run(with_retry(fn, retries=2, delay=1.0))
        mock_sleep.assert_awaited_once_with(1.0)

    def test_at_least_one_attempt(self) -> None:
        fn = AsyncMock(return_value=42)
        assert asyncio.run(with_retry(fn, retries=0)) == 42
        fn.assert_awaited_once()


def test_error_hierarchy() -> None:
    original = ValueError("bad toml")
    error = ConfigurationError("Failed to load configuration", original)

    assert isinstance(error, UptodateError)
    assert error.original is original
    assert error.code == "CONFIGURATION_ERROR"


def test_package_manager_error_keeps_output() -> None:
    error = PackageManagerError("outdated failed", "pnpm", stdout="{}", returncode=1)

    assert error.package_manager == "pnpm"
    assert error.stdout == "{}"
    assert error.stderr == ""
    assert str(error) == "outdated failed"
