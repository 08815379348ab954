"""Read-only inspection of installed instances.

:func:`check_installation` only looks at file presence and the install
manifest, so launchers can call it on every start.
:func:`get_patch_health` additionally hashes the client executable.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import structlog
from pydantic import ValidationError

from hytale_tools.core.paths import PathResolver
from hytale_tools.core.types import InstallManifest
from hytale_tools.core.utils import atomic_write_text, dir_has_content, hashes_match, sha256_file

logger = structlog.get_logger()


def read_install_manifest(path: Path) -> InstallManifest | None:
    """Load an install manifest.

    Returns:
        The manifest, or None if it is absent or unreadable
    """
    if not path.exists():
        return None

    try:
        return InstallManifest.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning("install_manifest_invalid", path=str(path), error=str(e))
        return None


def write_install_manifest(path: Path, manifest: InstallManifest) -> None:
    """Persist an install manifest atomically."""
    atomic_write_text(path, manifest.model_dump_json(indent=2))
    logger.debug("install_manifest_saved", path=str(path), build_index=manifest.build_index)


@dataclass
class CheckResult:
    """Presence check of one instance."""

    client_installed: bool
    server_installed: bool
    runtime_installed: bool
    is_complete: bool
    build_index: int
    manifest: InstallManifest | None = None
    needs_update: bool = False


class PatchHealthStatus(StrEnum):
    """Overall health classification."""
    NOT_INSTALLED = "not_installed"
    HEALTHY = "healthy"
    OUTDATED = "outdated"
    NEEDS_REPAIR = "needs_repair"


@dataclass
class PatchHealth:
    """Hash-based health of one instance."""

    patched: bool
    outdated: bool
    needs_repair: bool
    current_build_index: int | None
    expected_build_index: int
    installed: bool = True

    @property
    def status(self) -> PatchHealthStatus:
        if not self.installed:
            return PatchHealthStatus.NOT_INSTALLED
        if self.outdated:
            return PatchHealthStatus.OUTDATED
        if self.needs_repair:
            return PatchHealthStatus.NEEDS_REPAIR
        return PatchHealthStatus.HEALTHY


def check_installation(
    resolver: PathResolver,
    instance_id: str,
    expected_build_index: int | None = None,
) -> CheckResult:
    """Check which parts of an instance are installed.

    Args:
        resolver: Path resolver
        instance_id: Instance identifier
        expected_build_index: Build the caller wants; sets ``needs_update``

    Returns:
        Check result. An absent manifest reads as build 0 with
        ``needs_update`` False: nothing installed is not an outdated install.
    """
    manifest = read_install_manifest(resolver.install_manifest_path(instance_id))
    client_installed = resolver.client_executable(instance_id).is_file()
    server_installed = dir_has_content(resolver.server_folder(instance_id))
    runtime_installed = resolver.java_executable.is_file()
    build_index = manifest.build_index if manifest else 0

    needs_update = (
        expected_build_index is not None
        and manifest is not None
        and manifest.build_index != expected_build_index
    )

    result = CheckResult(
        client_installed=client_installed,
        server_installed=server_installed,
        runtime_installed=runtime_installed,
        is_complete=client_installed and runtime_installed,
        build_index=build_index,
        manifest=manifest,
        needs_update=needs_update,
    )
    logger.debug(
        "installation_checked",
        instance=instance_id,
        build_index=build_index,
        complete=result.is_complete,
        needs_update=needs_update,
    )
    return result


def get_patch_health(
    resolver: PathResolver,
    instance_id: str,
    expected_build_index: int,
    expected_client_hash: str | None = None,
) -> PatchHealth:
    """Classify an instance as healthy, outdated or in need of repair.

    A different recorded build means the instance is outdated. The same
    build with a client executable whose SHA256 differs from
    ``expected_client_hash`` means the files are corrupt and need repair.
    """
    manifest = read_install_manifest(resolver.install_manifest_path(instance_id))
    client_path = resolver.client_executable(instance_id)

    if manifest is None or not client_path.is_file():
        return PatchHealth(
            patched=False,
            outdated=False,
            needs_repair=False,
            current_build_index=manifest.build_index if manifest else None,
            expected_build_index=expected_build_index,
            installed=False,
        )

    outdated = manifest.build_index != expected_build_index
    patched = False
    needs_repair = False

    if expected_client_hash:
        actual = sha256_file(client_path)
        patched = hashes_match(actual, expected_client_hash)
        needs_repair = not outdated and not patched
        if needs_repair:
            logger.warning(
                "client_hash_mismatch",
                instance=instance_id,
                expected=expected_client_hash,
                actual=actual,
            )

    return PatchHealth(
        patched=patched,
        outdated=outdated,
        needs_repair=needs_repair,
        current_build_index=manifest.build_index,
        expected_build_index=expected_build_index,
    )


def clean_installation(resolver: PathResolver, instance_id: str) -> list[Path]:
    """Delete game files, staging area, manifest and online patch backups.

    The shared runtime and patch tool as well as ``UserData`` are kept.

    Returns:
        Paths that were removed
    """
    removed: list[Path] = []
    for folder in (
        resolver.game_folder(instance_id),
        resolver.staging_folder(instance_id),
        resolver.patch_state_folder(instance_id),
    ):
        if folder.exists():
            shutil.rmtree(folder)
            removed.append(folder)

    manifest_path = resolver.install_manifest_path(instance_id)
    if manifest_path.exists():
        manifest_path.unlink()
        removed.append(manifest_path)

    instance = resolver.instance_folder(instance_id)
    if instance.is_dir():
        for leftover in instance.glob("temp_*"):
            leftover.unlink()
            removed.append(leftover)

    logger.info("installation_cleaned", instance=instance_id, removed=len(removed))
    return removed
