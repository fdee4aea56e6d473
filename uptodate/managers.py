"""Package manager command abstraction.

One subclass per supported manager supplies the argument lists; the base
class runs them through shell.run() and turns failures into
PackageManagerError. "outdated" commands are special: npm and pnpm exit 1
whenever something is outdated, so the error keeps stdout for the caller
to salvage.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path

from .errors import ConfigurationError, PackageManagerError, UptodateError, with_retry
from .manifest import MANIFEST_NAME, detect_package_manager, load_manifest
from .models import PackageManagerName, PackageUpdate
from .shell import DEFAULT_COMMAND_TIMEOUT, CommandResult, run

logger = logging.getLogger(__name__)

LOOKUP_TIMEOUT = 30.0


class PackageManager:
    """Base class for npm / yarn / pnpm.

    Args:
        retries: Attempts for latest-version lookups and single updates.
        retry_delay: Base backoff between attempts, in seconds.
    """

    name: PackageManagerName = "npm"
    executable = "npm"
    supports_workspace_bulk_update = False

    def __init__(self, *, retries: int = 3, retry_delay: float = 1.0) -> None:
        self.retries = retries
        self.retry_delay = retry_delay

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # -- argument lists ----------------------------------------------------

    def outdated_args(self) -> list[str]:
        return ["outdated", "--json"]

    def workspace_outdated_args(self) -> list[str]:
        return self.outdated_args()

    def add_args(self, specs: Sequence[str]) -> list[str]:
        return ["install", *specs, "--save-exact"]

    def workspace_add_args(self, specs: Sequence[str]) -> list[str]:
        raise PackageManagerError(f"{self.name} has no workspace-wide bulk update", self.name)

    def view_args(self, package_name: str) -> list[str]:
        return ["view", package_name, "version"]

    def parse_view_output(self, stdout: str) -> str | None:
        return stdout.strip().splitlines()[-1].strip() if stdout.strip() else None

    # -- command execution -------------------------------------------------

    async def _run(
        self, args: Sequence[str], cwd: str | Path, timeout: float = DEFAULT_COMMAND_TIMEOUT
    ) -> CommandResult:
        try:
            return await run(self.executable, *args, cwd=cwd, timeout=timeout)
        except FileNotFoundError as exc:
            raise PackageManagerError(
                f"{self.executable} is not installed", self.name, original=exc
            ) from exc

    def _raise_for(self, result: CommandResult, message: str) -> None:
        if result.ok:
            return
        raise PackageManagerError(
            f"{message}: {result.stderr.strip() or f'exit code {result.returncode}'}",
            self.name,
            stdout=result.stdout,
            stderr=result.stderr,
            returncode=result.returncode,
        )

    # -- queries -----------------------------------------------------------

    async def get_dependencies(
        self, project_path: str | Path, include_dev: bool = True
    ) -> dict[str, str]:
        """Read the declared dependencies of a single package.json.

        Raises:
            PackageManagerError: If the manifest is missing or invalid.
        """
        manifest_path = Path(project_path) / MANIFEST_NAME
        try:
            manifest = await asyncio.to_thread(load_manifest, manifest_path)
        except (OSError, ValueError) as exc:
            raise PackageManagerError(
                f"Failed to read {manifest_path}", self.name, original=exc
            ) from exc

        deps = {k: v for k, v in (manifest.get("dependencies") or {}).items() if isinstance(v, str)}
        if include_dev:
            deps.update(
                {k: v for k, v in (manifest.get("devDependencies") or {}).items() if isinstance(v, str)}
            )
        return deps

    async def get_installed_version(
        self, project_path: str | Path, package_name: str
    ) -> str | None:
        """Return the version installed in node_modules, or None."""
        manifest_path = Path(project_path) / "node_modules" / package_name / MANIFEST_NAME
        if not manifest_path.exists():
            return None
        try:
            manifest = await asyncio.to_thread(load_manifest, manifest_path)
        except (OSError, ValueError):
            return None
        version = manifest.get("version")
        return version if isinstance(version, str) else None

    async def check_outdated(self, project_path: str | Path) -> str:
        """Run the "outdated" command for a single package.

        Returns:
            The raw JSON stdout.

        Raises:
            PackageManagerError: On a non-zero exit. stdout is attached, since
                a non-zero exit usually just means something is outdated.
        """
        result = await self._run(self.outdated_args(), project_path)
        self._raise_for(result, "Failed to check for outdated packages")
        return result.stdout

    async def check_workspace_outdated(self, root_path: str | Path) -> str:
        """Run the workspace-wide "outdated" command from the root."""
        result = await self._run(self.workspace_outdated_args(), root_path)
        self._raise_for(result, "Failed to check for outdated workspace packages")
        return result.stdout

    async def _fetch_latest_version(self, package_name: str, cwd: str | Path) -> str | None:
        result = await self._run(self.view_args(package_name), cwd, timeout=LOOKUP_TIMEOUT)
        self._raise_for(result, f"Failed to look up {package_name}")
        return self.parse_view_output(result.stdout)

    async def get_latest_version(
        self, package_name: str, cwd: str | Path = "."
    ) -> str | None:
        """Look up the upstream latest version, retrying on failure.

        Returns:
            The latest version, or None once all attempts have failed.
        """
        try:
            return await with_retry(
                lambda: self._fetch_latest_version(package_name, cwd),
                retries=self.retries,
                delay=self.retry_delay,
            )
        except (UptodateError, OSError, ValueError) as exc:
            logger.debug(f"Latest version lookup for {package_name} failed: {exc}")
            return None

    # -- mutations ---------------------------------------------------------

    async def update_dependency(
        self, project_path: str | Path, package_name: str, version: str
    ) -> None:
        """Pin a single dependency to an exact version."""
        spec = f"{package_name}@{version}"

        async def attempt() -> None:
            result = await self._run(self.add_args([spec]), project_path)
            self._raise_for(result, f"Failed to update {package_name} to {version}")

        await with_retry(attempt, retries=min(self.retries, 2), delay=self.retry_delay)

    async def bulk_update_dependencies(
        self, project_path: str | Path, updates: Sequence[PackageUpdate]
    ) -> None:
        """Apply several updates to one package with a single command."""
        if not updates:
            return
        result = await self._run(self.add_args([u.spec for u in updates]), project_path)
        self._raise_for(result, f"Failed to update {len(updates)} packages")

    async def bulk_update_workspace_dependencies(
        self, root_path: str | Path, updates: Sequence[PackageUpdate]
    ) -> None:
        """Apply updates to every workspace that declares them.

        Raises:
            PackageManagerError: If the command fails, or the manager has no
                such primitive (see supports_workspace_bulk_update).
        """
        if not updates:
            return
        result = await self._run(self.workspace_add_args([u.spec for u in updates]), root_path)
        self._raise_for(result, f"Failed to update {len(updates)} workspace packages")

    async def install(self, project_path: str | Path) -> None:
        result = await self._run(["install"], project_path)
        self._raise_for(result, "Failed to install dependencies")


class NpmPackageManager(PackageManager):
    name: PackageManagerName = "npm"
    executable = "npm"

    def workspace_outdated_args(self) -> list[str]:
        return ["outdated", "--json", "--workspaces", "--include-workspace-root"]


class YarnPackageManager(PackageManager):
    name: PackageManagerName = "yarn"
    executable = "yarn"

    def add_args(self, specs: Sequence[str]) -> list[str]:
        return ["add", *specs, "--exact"]

    def view_args(self, package_name: str) -> list[str]:
        return ["info", package_name, "version", "--json"]

    def parse_view_output(self, stdout: str) -> str | None:
        # {"type":"inspect","data":"1.2.3"}
        for line in stdout.splitlines():
            try:
                message = json.loads(line)
            except ValueError:
                continue
            if isinstance(message, dict) and isinstance(message.get("data"), str):
                return message["data"]
        return None


class PnpmPackageManager(PackageManager):
    name: PackageManagerName = "pnpm"
    executable = "pnpm"
    supports_workspace_bulk_update = True

    def outdated_args(self) -> list[str]:
        return ["outdated", "--format", "json"]

    def workspace_outdated_args(self) -> list[str]:
        return ["outdated", "--format", "json", "--recursive"]

    def add_args(self, specs: Sequence[str]) -> list[str]:
        return ["add", *specs, "--save-exact"]

    def workspace_add_args(self, specs: Sequence[str]) -> list[str]:
        # "update" only touches workspaces that already declare the package.
        return ["update", "--recursive", *specs]


MANAGERS: dict[str, type[PackageManager]] = {
    "npm": NpmPackageManager,
    "yarn": YarnPackageManager,
    "pnpm": PnpmPackageManager,
}


def create_package_manager(name: str, **kwargs: float | int) -> PackageManager:
    """Instantiate a package manager by name.

    Raises:
        ConfigurationError: If the name is not a supported manager.
    """
    try:
        cls = MANAGERS[name.lower()]
    except KeyError:
        raise ConfigurationError(f"Unsupported package manager: {name}") from None
    return cls(**kwargs)  # type: ignore[arg-type]


def detect(project_path: str | Path, **kwargs: float | int) -> PackageManager:
    """Detect and instantiate the package manager used by a project."""
    root = Path(project_path)
    manifest = None
    try:
        manifest = load_manifest(root / MANIFEST_NAME)
    except (OSError, ValueError) as exc:
        logger.debug(f"Could not read manifest for detection: {exc}")
    name = detect_package_manager(root, manifest)
    logger.info(f"Detected {name} package manager")
    return create_package_manager(name, **kwargs)
