"""Exception hierarchy and retry helper.

Only configuration problems (e.g. a missing root package.json) are meant to
reach the caller. Everything else is raised at a narrow scope and converted
into a partial result by whoever catches it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UptodateError(Exception):
    """Base class for all uptodate errors."""

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str, original: BaseException | None = None) -> None:
        super().__init__(message)
        self.original = original


class ConfigurationError(UptodateError):
    code = "CONFIGURATION_ERROR"


class NetworkError(UptodateError):
    code = "NETWORK_ERROR"


class DependencyError(UptodateError):
    code = "DEPENDENCY_ERROR"

    def __init__(
        self, message: str, package_name: str, original: BaseException | None = None
    ) -> None:
        super().__init__(message, original)
        self.package_name = package_name


class PackageManagerError(UptodateError):
    """A package manager command failed.

    The captured output is kept: some managers exit non-zero while still
    printing a usable JSON report on stdout.
    """

    code = "PACKAGE_MANAGER_ERROR"

    def __init__(
        self,
        message: str,
        package_manager: str,
        *,
        stdout: str = "",
        stderr: str = "",
        returncode: int | None = None,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message, original)
        self.package_manager = package_manager
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 1.0,
) -> T:
    """Await fn(), retrying with linearly increasing backoff.

    Waits delay, 2*delay, ... between attempts and re-raises the last error
    once all attempts are used up.

    Args:
        fn: Zero-argument coroutine factory.
        retries: Total number of attempts (at least one is always made).
        delay: Base backoff in seconds.
    """
    attempts = max(retries, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            if attempt == attempts:
                raise
            logger.debug(f"Attempt {attempt}/{attempts} failed: {exc}; retrying")
            await asyncio.sleep(delay * attempt)
    raise AssertionError("unreachable")
