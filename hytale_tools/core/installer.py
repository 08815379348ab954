"""Install, update, downgrade and repair game instances.

The install manifest is the only state the flows rely on. It is written
after every completed patch step, so an interrupted upgrade resumes from
the last build the patch tool finished. Online patches are reverted before
the first official patch and applied once after the last one.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import NamedTuple

import structlog

from hytale_tools.core.butler import PatchTool
from hytale_tools.core.checker import read_install_manifest, write_install_manifest
from hytale_tools.core.config import AppConfig
from hytale_tools.core.download import Downloader
from hytale_tools.core.errors import HytaleToolsError
from hytale_tools.core.files import AuxiliaryFiles
from hytale_tools.core.patcher import DisableResult, EnableResult, OnlinePatchManager, PatchOutcome
from hytale_tools.core.paths import PathResolver
from hytale_tools.core.progress import ProgressReporter, Stage
from hytale_tools.core.runtime import RUNTIME_MANIFEST_URL, RuntimeInstaller
from hytale_tools.core.types import (
    InstallManifest,
    InstanceSource,
    LoaderConfig,
    PatchConfig,
    PatchRecord,
    PatchTarget,
    VersionChannel,
)
from hytale_tools.core.utils import dir_has_content

logger = structlog.get_logger()


class InstallFlow(StrEnum):
    """What an install call has to do."""
    FRESH_INSTALL = "fresh_install"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    UP_TO_DATE = "up_to_date"
    REPAIR = "repair"


class PatchStep(NamedTuple):
    """One official patch, ``from_build`` 0 meaning a full install."""

    from_build: int
    to_build: int


@dataclass
class UpdatePlan:
    """Flow and patch steps needed to reach a target build."""

    flow: InstallFlow
    current: int
    target: int
    steps: list[PatchStep] = field(default_factory=lambda: list[PatchStep]())

    @property
    def wipes_game(self) -> bool:
        """Whether the game tree is deleted before patching."""
        return self.flow in (InstallFlow.FRESH_INSTALL, InstallFlow.DOWNGRADE, InstallFlow.REPAIR)


def plan_steps(current: int, target: int) -> list[PatchStep]:
    """Patch steps from ``current`` to ``target``.

    Upgrades are strictly linear; there is no patch between non-adjacent
    builds. Everything else starts from an empty tree.

    Example:
        >>> plan_steps(2, 5)
        [PatchStep(from_build=2, to_build=3), PatchStep(from_build=3, to_build=4), PatchStep(from_build=4, to_build=5)]
        >>> plan_steps(5, 2)
        [PatchStep(from_build=0, to_build=2)]
    """
    if current == target:
        return []
    if current <= 0 or target < current:
        return [PatchStep(0, target)]
    return [PatchStep(build, build + 1) for build in range(current, target)]


def plan_update(manifest: InstallManifest | None, target: int, files_present: bool) -> UpdatePlan:
    """Decide how to bring an instance to ``target``.

    Args:
        manifest: Current install manifest, None if never installed
        target: Requested build
        files_present: Whether the client executable exists
    """
    current = manifest.build_index if manifest else 0

    if current <= 0:
        flow = InstallFlow.FRESH_INSTALL
    elif not files_present:
        flow = InstallFlow.REPAIR
    elif target == current:
        flow = InstallFlow.UP_TO_DATE
    elif target > current:
        flow = InstallFlow.UPGRADE
    else:
        flow = InstallFlow.DOWNGRADE

    if flow is InstallFlow.UP_TO_DATE:
        steps: list[PatchStep] = []
    elif flow is InstallFlow.UPGRADE:
        steps = plan_steps(current, target)
    else:
        steps = [PatchStep(0, target)]
    return UpdatePlan(flow=flow, current=current, target=target, steps=steps)


def _record(outcome: PatchOutcome | None) -> PatchRecord | None:
    if outcome is None or not outcome.in_effect or not outcome.url:
        return None
    return PatchRecord(url=outcome.url, hash=outcome.hash)


class GameInstaller:
    """Install and update one game instance.

    Args:
        resolver: Path resolver
        instance_id: Instance identifier
        downloader: HTTP downloader shared by all components
        patch_tool: Patch tool adapter
        patcher: Online patch manager
        runtime: Runtime installer
        files: Auxiliary file downloader
        reporter: Progress reporter
        runtime_manifest_url: Runtime manifest URL
    """

    def __init__(
        self,
        resolver: PathResolver,
        instance_id: str,
        *,
        downloader: Downloader | None = None,
        patch_tool: PatchTool | None = None,
        patcher: OnlinePatchManager | None = None,
        runtime: RuntimeInstaller | None = None,
        files: AuxiliaryFiles | None = None,
        reporter: ProgressReporter | None = None,
        runtime_manifest_url: str = RUNTIME_MANIFEST_URL,
    ):
        self.resolver = resolver
        self.instance_id = instance_id
        self.reporter = reporter or ProgressReporter()
        self.downloader = downloader or Downloader()
        self.patch_tool = patch_tool or PatchTool(resolver, self.downloader, self.reporter)
        self.patcher = patcher or OnlinePatchManager(resolver, instance_id, self.downloader, self.reporter)
        self.runtime = runtime or RuntimeInstaller(
            resolver, self.downloader, self.reporter, manifest_url=runtime_manifest_url
        )
        self.files = files or AuxiliaryFiles(self.downloader, self.reporter)
        self.log = logger.bind(instance=instance_id)

    @classmethod
    def from_config(
        cls, config: AppConfig, instance_id: str, reporter: ProgressReporter | None = None
    ) -> GameInstaller:
        """Build an installer from application configuration."""
        return cls(
            config.resolver(),
            instance_id,
            downloader=Downloader(config.network),
            reporter=reporter,
            runtime_manifest_url=config.runtime_manifest_url,
        )

    @property
    def game_folder(self) -> Path:
        return self.resolver.game_folder(self.instance_id)

    @property
    def manifest_path(self) -> Path:
        return self.resolver.install_manifest_path(self.instance_id)

    def read_manifest(self) -> InstallManifest | None:
        return read_install_manifest(self.manifest_path)

    def plan(self, loader: LoaderConfig) -> UpdatePlan:
        """Plan what :meth:`install` would do, without side effects."""
        files_present = self.resolver.client_executable(self.instance_id).is_file()
        return plan_update(self.read_manifest(), loader.build_index, files_present)

    def install(self, loader: LoaderConfig) -> InstallManifest:
        """Bring the instance to the loader's build.

        Returns:
            Final install manifest

        Raises:
            HytaleToolsError: If any download, hash check or patch step fails
        """
        self.resolver.instance_folder(self.instance_id).mkdir(parents=True, exist_ok=True)
        self.game_folder.mkdir(parents=True, exist_ok=True)

        existing = self.read_manifest()
        plan = self.plan(loader)
        self.log.info(
            "install_planned",
            flow=str(plan.flow),
            current=plan.current,
            target=plan.target,
            steps=len(plan.steps),
        )

        if plan.flow is InstallFlow.UP_TO_DATE:
            assert existing is not None
            self.reporter.debug(f"Already installed at build {plan.target}")
            return self._reconcile(loader, existing)

        if plan.flow is InstallFlow.REPAIR:
            self.reporter.debug(f"Manifest says build {plan.current} but files missing, reinstalling")

        self.patch_tool.ensure_installed()

        if plan.flow is InstallFlow.UPGRADE:
            self.reporter.debug(f"Upgrading: {plan.current} -> {plan.target}")
            self._revert_online_patches(loader)
        else:
            self.reporter.debug(f"{plan.flow}: build {plan.target}")
            self._reset_game_folder()

        runtime_version = existing.runtime_version if existing else None
        for step in plan.steps:
            self._apply_step(step, loader.version_channel, runtime_version)

        client = self._enable(PatchTarget.CLIENT, loader.client_patch(self.resolver.os_name), plan.target)
        server = self._enable(PatchTarget.SERVER, loader.server, plan.target)

        manifest = InstallManifest(
            build_index=plan.target,
            version_channel=loader.version_channel,
            runtime_version=self.install_runtime(),
            server_installed=dir_has_content(self.resolver.server_folder(self.instance_id)),
            client_patch=_record(client),
            server_patch=_record(server),
        )
        write_install_manifest(self.manifest_path, manifest)
        self.log.info("install_complete", build_index=manifest.build_index, flow=str(plan.flow))
        return manifest

    def update(self, loader: LoaderConfig) -> InstallManifest:
        """Same as :meth:`install`."""
        return self.install(loader)

    def _reset_game_folder(self) -> None:
        """Wipe the game tree; backups of its executables become meaningless."""
        if self.game_folder.exists():
            shutil.rmtree(self.game_folder)
        self.game_folder.mkdir(parents=True)
        for target in PatchTarget:
            self.patcher.discard_backup(self.patcher.executable_for(target))
        self.reporter.debug("Deleted existing game files", path=str(self.game_folder))

    def _revert_online_patches(self, loader: LoaderConfig) -> None:
        """Put official executables back so the patch tool sees an unmodified tree."""
        self.reporter.debug("Reverting online patches before update")
        configs = {
            PatchTarget.CLIENT: loader.client_patch(self.resolver.os_name),
            PatchTarget.SERVER: loader.server,
        }
        for target, config in configs.items():
            self.patcher.restore_original(
                self.patcher.executable_for(target),
                config.original_url if config else None,
                config.original_hash if config else None,
            )

    def _download_patch(self, step: PatchStep, channel: VersionChannel) -> tuple[Path, Path]:
        if step.from_build == 0:
            urls = self.resolver.fresh_patch_urls(step.to_build, channel)
        else:
            urls = self.resolver.incremental_patch_urls(step.from_build, step.to_build, channel)

        patch_path, signature_path = self.resolver.temp_patch_paths(
            self.instance_id, step.from_build, step.to_build, channel
        )
        reporter = self.reporter.bind(from_build=step.from_build, to_build=step.to_build)
        self.downloader.download_file(urls.patch, patch_path, reporter=reporter, stage=Stage.PATCH_DOWNLOAD)
        self.downloader.download_file(urls.signature, signature_path)
        return patch_path, signature_path

    def _apply_step(self, step: PatchStep, channel: VersionChannel, runtime_version: str | None) -> None:
        """Download and apply one patch, then checkpoint the manifest."""
        self.reporter.debug(f"Applying patch: {step.from_build} -> {step.to_build}")
        patch_path, signature_path = self._download_patch(step, channel)
        try:
            self.patch_tool.apply(
                patch_path,
                signature_path,
                self.game_folder,
                self.resolver.staging_folder(self.instance_id),
            )
        finally:
            patch_path.unlink(missing_ok=True)
            signature_path.unlink(missing_ok=True)

        write_install_manifest(
            self.manifest_path,
            InstallManifest(
                build_index=step.to_build,
                version_channel=channel,
                runtime_version=runtime_version,
                server_installed=dir_has_content(self.resolver.server_folder(self.instance_id)),
            ),
        )
        self.log.info("patch_step_complete", from_build=step.from_build, to_build=step.to_build)

    def _enable(self, target: PatchTarget, config: PatchConfig | None, build_index: int) -> PatchOutcome | None:
        if config is None or not config.configured:
            return None
        return self.patcher.enable(
            self.patcher.executable_for(target),
            config.patch_url,
            config.patch_hash,
            target=target,
            build_index=build_index,
        )

    def _reconcile_target(
        self,
        target: PatchTarget,
        config: PatchConfig | None,
        record: PatchRecord | None,
        build_index: int,
    ) -> tuple[PatchRecord | None, bool]:
        """Align one executable with its patch configuration.

        Returns:
            New patch record and whether it changed
        """
        if config is None or not config.configured:
            if record is None:
                return None, False
            self.reporter.debug(f"{target} patch no longer configured, reverting")
            self.patcher.disable(self.patcher.executable_for(target), build_index=build_index)
            return None, True

        recorded = record is not None and record.url == config.patch_url
        if recorded and target is PatchTarget.CLIENT:
            recorded = record is not None and record.hash == config.patch_hash
        if recorded:
            self.reporter.debug(f"{target} patch already recorded in manifest, skipping")
            return record, False

        new_record = _record(self._enable(target, config, build_index))
        return new_record, new_record != record

    def _reconcile(self, loader: LoaderConfig, manifest: InstallManifest) -> InstallManifest:
        """Check runtime and online patches of an up-to-date instance."""
        runtime_version = self.install_runtime()
        client, client_changed = self._reconcile_target(
            PatchTarget.CLIENT,
            loader.client_patch(self.resolver.os_name),
            manifest.client_patch,
            manifest.build_index,
        )
        server, server_changed = self._reconcile_target(
            PatchTarget.SERVER, loader.server, manifest.server_patch, manifest.build_index
        )

        if not (client_changed or server_changed or runtime_version != manifest.runtime_version):
            return manifest

        manifest = manifest.model_copy(
            update={"runtime_version": runtime_version, "client_patch": client, "server_patch": server}
        )
        write_install_manifest(self.manifest_path, manifest)
        return manifest

    def enable_online_patch(self, loader: LoaderConfig, target: PatchTarget) -> PatchOutcome:
        """Apply the configured online patch and record it in the manifest."""
        config = loader.client_patch(self.resolver.os_name) if target is PatchTarget.CLIENT else loader.server
        outcome = self._enable(target, config, loader.build_index)
        if outcome is None:
            return PatchOutcome(EnableResult.SKIPPED)
        if outcome.in_effect:
            self._update_record(target, _record(outcome))
        return outcome

    def disable_online_patch(self, target: PatchTarget) -> DisableResult:
        """Revert the online patch and clear it from the manifest."""
        manifest = self.read_manifest()
        result = self.patcher.disable(
            self.patcher.executable_for(target),
            build_index=manifest.build_index if manifest else None,
        )
        if result is DisableResult.REVERTED:
            self._update_record(target, None)
        return result

    def _update_record(self, target: PatchTarget, record: PatchRecord | None) -> None:
        manifest = self.read_manifest()
        if manifest is None:
            return
        key = "client_patch" if target is PatchTarget.CLIENT else "server_patch"
        if getattr(manifest, key) == record:
            return
        write_install_manifest(self.manifest_path, manifest.model_copy(update={key: record}))

    def install_runtime(self) -> str:
        """Ensure the shared runtime is installed and return its version."""
        return self.runtime.install()

    def verify(self, signature_file: Path) -> bool:
        """Verify the game tree against a patch signature."""
        return self.patch_tool.verify(signature_file, self.game_folder)

    def download_files(self, source: InstanceSource) -> int:
        """Download auxiliary files into the instance's mods folder.

        Failures are logged and swallowed; auxiliary content must never
        block a launch.

        Returns:
            Number of files downloaded
        """
        try:
            files = self.files.fetch_file_list(source)
            return self.files.download(files, self.resolver.mods_folder(self.instance_id), source)
        except (HytaleToolsError, OSError, ValueError) as e:
            self.log.warning("files_download_failed", source=source.id, error=str(e))
            self.reporter.error(Stage.FILES_DOWNLOAD, str(e), source=source.id)
            return 0
