"""Online patch management.

An online patch replaces a game executable with a build distributed
outside the official patch chain. For every patched executable the patch
state folder holds::

    original_<name>      backup of the official executable
    patched_<name>       cached patched executable
    state_<name>.json    OnlinePatchState

The state folder is a sibling of the game tree, so patch tool signature
checks never see these files.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import structlog
from pydantic import ValidationError

from hytale_tools.core.download import Downloader
from hytale_tools.core.errors import FetchError, MissingFileError
from hytale_tools.core.paths import PathResolver
from hytale_tools.core.progress import ProgressReporter, Stage
from hytale_tools.core.types import OnlinePatchState, PatchConfig, PatchTarget, utc_now
from hytale_tools.core.utils import atomic_write_text, file_matches, make_executable, sha256_file

logger = structlog.get_logger()


class EnableResult(StrEnum):
    """Outcome of enabling an online patch."""
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    SKIPPED = "skipped"


class DisableResult(StrEnum):
    """Outcome of disabling an online patch."""
    REVERTED = "reverted"
    ALREADY_REVERTED = "already_reverted"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PatchPaths:
    """Files kept for one executable."""

    original: Path
    patched: Path
    state: Path


@dataclass
class PatchOutcome:
    """Result of :meth:`OnlinePatchManager.enable`."""

    result: EnableResult
    url: str | None = None
    hash: str | None = None

    @property
    def in_effect(self) -> bool:
        """Whether the patch is now live."""
        return self.result in (EnableResult.APPLIED, EnableResult.ALREADY_APPLIED)


@dataclass
class PatchStatus:
    """Patch state of one executable as reported to launchers."""

    available: bool
    enabled: bool
    downloaded: bool


def _replace_file(source: Path, dest: Path) -> None:
    """Copy ``source`` over ``dest`` via a temporary sibling file."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest.with_name(dest.name + ".tmp")
    shutil.copy2(source, tmp_path)
    os.replace(tmp_path, dest)
    make_executable(dest)


class OnlinePatchManager:
    """Apply and revert online patches for one instance.

    Args:
        resolver: Path resolver
        instance_id: Instance identifier
        downloader: HTTP downloader
        reporter: Progress reporter
    """

    def __init__(
        self,
        resolver: PathResolver,
        instance_id: str,
        downloader: Downloader | None = None,
        reporter: ProgressReporter | None = None,
    ):
        self.resolver = resolver
        self.instance_id = instance_id
        self.downloader = downloader or Downloader()
        self.reporter = reporter or ProgressReporter()

    @property
    def state_folder(self) -> Path:
        return self.resolver.patch_state_folder(self.instance_id)

    def executable_for(self, target: PatchTarget) -> Path:
        """Live executable path of a patch target."""
        if target is PatchTarget.SERVER:
            return self.resolver.server_executable(self.instance_id)
        return self.resolver.client_executable(self.instance_id)

    def paths(self, executable: Path) -> PatchPaths:
        """Backup, cache and state file of an executable."""
        name = executable.name
        return PatchPaths(
            original=self.state_folder / f"original_{name}",
            patched=self.state_folder / f"patched_{name}",
            state=self.state_folder / f"state_{name}.json",
        )

    def read_state(self, executable: Path) -> OnlinePatchState | None:
        """Load the patch state of an executable, None if absent or invalid."""
        state_path = self.paths(executable).state
        if not state_path.exists():
            return None
        try:
            return OnlinePatchState.model_validate_json(state_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("patch_state_invalid", path=str(state_path), error=str(e))
            return None

    def write_state(self, executable: Path, state: OnlinePatchState) -> None:
        atomic_write_text(self.paths(executable).state, state.model_dump_json(indent=2))

    def _holds_cached_patch(self, executable: Path, cached: Path) -> bool:
        """Whether the live executable is byte-identical to the cached patch."""
        if not executable.is_file() or not cached.is_file():
            return False
        return sha256_file(executable) == sha256_file(cached)

    def enable(
        self,
        executable: Path,
        patch_url: str | None,
        expected_hash: str | None = None,
        *,
        target: PatchTarget = PatchTarget.CLIENT,
        build_index: int | None = None,
    ) -> PatchOutcome:
        """Install an online patch over ``executable``.

        Client patches must carry a hash; server patches are published
        without one, in which case the cached download is trusted by
        presence alone.

        When the patch is already live but the state file does not say so
        (the process died between the copy and the state write), the state
        is brought back in line instead of copying again.

        Raises:
            HashError: If the downloaded patch does not match ``expected_hash``
            FetchError: If the patch cannot be downloaded
        """
        if not patch_url:
            return PatchOutcome(EnableResult.SKIPPED)

        if target is PatchTarget.CLIENT and not expected_hash:
            logger.warning("client_patch_without_hash", url=patch_url)
            self.reporter.debug("Client patch has no hash configured, skipping", url=patch_url)
            return PatchOutcome(EnableResult.SKIPPED, url=patch_url)

        paths = self.paths(executable)
        state = self.read_state(executable)

        if expected_hash:
            live_patched = file_matches(executable, expected_hash)
            cache_valid = file_matches(paths.patched, expected_hash)
        else:
            cache_valid = paths.patched.is_file() and (state is None or state.patch_url == patch_url)
            live_patched = cache_valid and self._holds_cached_patch(executable, paths.patched)

        if live_patched:
            if state is None or not state.enabled or state.patch_url != patch_url:
                logger.info("online_patch_state_repaired", target=str(target), url=patch_url)
                self._mark_enabled(executable, patch_url, expected_hash, build_index)
            self.reporter.debug(f"{target} already patched")
            return PatchOutcome(EnableResult.ALREADY_APPLIED, url=patch_url, hash=expected_hash)

        self.state_folder.mkdir(parents=True, exist_ok=True)

        if not cache_valid:
            logger.info("online_patch_download", target=str(target), url=patch_url)
            self.downloader.download_file(
                patch_url,
                paths.patched,
                expected_hash=expected_hash,
                reporter=self.reporter.bind(target=str(target)),
                stage=Stage.ONLINE_PATCH_DOWNLOAD,
            )

        # While no patch is live the executable is official: refresh the backup.
        official_live = state is None or not state.enabled
        if executable.is_file() and (official_live or not paths.original.exists()):
            shutil.copy2(executable, paths.original)
            self.reporter.debug(f"Backed up original {target}", path=str(paths.original))

        self.reporter.start(Stage.ONLINE_PATCH_APPLY, target=str(target), url=patch_url)
        _replace_file(paths.patched, executable)
        self._mark_enabled(executable, patch_url, expected_hash, build_index)
        self.reporter.end(Stage.ONLINE_PATCH_APPLY, target=str(target), path=str(executable))
        logger.info("online_patch_applied", target=str(target), url=patch_url, build_index=build_index)
        return PatchOutcome(EnableResult.APPLIED, url=patch_url, hash=expected_hash)

    def _mark_enabled(
        self, executable: Path, patch_url: str, patch_hash: str | None, build_index: int | None
    ) -> None:
        self.write_state(
            executable,
            OnlinePatchState(
                enabled=True,
                patch_url=patch_url,
                patch_hash=patch_hash,
                build_index=build_index,
                updated_at=utc_now(),
            ),
        )

    def disable(self, executable: Path, *, build_index: int | None = None) -> DisableResult:
        """Put the original executable back.

        Raises:
            MissingFileError: If the state says the patch is enabled but no
                backup of the original exists
        """
        state = self.read_state(executable)
        if state is None:
            return DisableResult.SKIPPED
        if not state.enabled:
            return DisableResult.ALREADY_REVERTED

        paths = self.paths(executable)
        if not paths.original.is_file():
            raise MissingFileError(
                f"Original backup missing for {executable.name}",
                path=str(paths.original),
            )

        self.reporter.start(Stage.ONLINE_PATCH_REVERT, path=str(executable))
        _replace_file(paths.original, executable)
        self.write_state(
            executable,
            state.model_copy(
                update={
                    "enabled": False,
                    "build_index": build_index if build_index is not None else state.build_index,
                    "updated_at": utc_now(),
                }
            ),
        )
        self.reporter.end(Stage.ONLINE_PATCH_REVERT, path=str(executable))
        logger.info("online_patch_reverted", path=str(executable))
        return DisableResult.REVERTED

    def restore_original(
        self,
        executable: Path,
        original_url: str | None = None,
        original_hash: str | None = None,
    ) -> bool:
        """Put an unpatched executable in place before official patching.

        A fresh download of ``original_url`` is preferred over the local
        backup, since the backup may predate the currently installed build.
        If the download fails the backup is used. With neither available
        nothing happens; that is the normal case for a never-patched
        install.

        Without ``original_url`` the backup is only used while the live
        executable still holds the cached patch. The state file is not
        consulted for this: it can lag behind the live file after a crash.

        Returns:
            True if an original executable was put in place

        Raises:
            HashError: If the downloaded original does not match ``original_hash``
        """
        paths = self.paths(executable)
        state = self.read_state(executable)
        if not original_url and not self._holds_cached_patch(executable, paths.patched):
            # Live file is not the patch; a backup may be older than it.
            self.reporter.debug(f"{executable.name} is not patched, nothing to restore")
            return False

        restored = False
        if original_url:
            self.reporter.debug("Downloading original executable", url=original_url)
            try:
                self.downloader.download_file(
                    original_url,
                    paths.original,
                    expected_hash=original_hash,
                    reporter=self.reporter,
                    stage=Stage.ONLINE_PATCH_DOWNLOAD,
                )
            except FetchError as e:
                logger.warning("original_download_failed", url=original_url, error=str(e))
                self.reporter.debug(f"Failed to download original: {e}, trying local backup")
            else:
                _replace_file(paths.original, executable)
                restored = True

        if not restored:
            if not paths.original.is_file():
                self.reporter.debug(f"No original backup for {executable.name}, skipping restore")
                return False
            self.reporter.debug(f"Restoring original {executable.name} from local backup")
            _replace_file(paths.original, executable)

        if state is not None:
            self.write_state(executable, state.model_copy(update={"enabled": False, "updated_at": utc_now()}))

        self.reporter.ready(Stage.ONLINE_PATCH_REVERT, path=str(executable))
        return True

    def discard_backup(self, executable: Path) -> None:
        """Forget the original backup after the game tree has been wiped.

        The patched cache is kept so the next enable does not download again.
        """
        paths = self.paths(executable)
        paths.original.unlink(missing_ok=True)
        state = self.read_state(executable)
        if state is not None and state.enabled:
            self.write_state(executable, state.model_copy(update={"enabled": False, "updated_at": utc_now()}))
        logger.debug("original_backup_discarded", path=str(paths.original))

    def status(self, executable: Path, config: PatchConfig | None) -> PatchStatus:
        """Report whether a patch is configured, enabled and cached."""
        if config is None or not config.configured:
            return PatchStatus(available=False, enabled=False, downloaded=False)

        paths = self.paths(executable)
        state = self.read_state(executable)
        if config.patch_hash:
            downloaded = file_matches(paths.patched, config.patch_hash)
        else:
            downloaded = paths.patched.is_file()
        return PatchStatus(
            available=True,
            enabled=bool(state and state.enabled),
            downloaded=downloaded,
        )
