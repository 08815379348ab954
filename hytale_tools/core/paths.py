"""Deterministic URL and filesystem layout for game instances.

All functions here are pure: given a server id, an optional custom root and
a target platform they always produce the same URLs and paths. Nothing is
read from or written to disk.

Layout::

    {data_root}/.{root}/.{server_id}/          (or without .{root})
        runtime/hytale-jre/                      shared language runtime
        runtime/butler/                          shared patch tool
        instances/{instance_id}/
            install.json                         install manifest
            game/Client/ game/Server/            patch target tree
            staging/                             patch tool scratch space
            .online-patch/                       online patch backups/state
            UserData/Mods/                       auxiliary files

The online patch folder is a sibling of ``game/`` so that the patch tool's
signature verification of the game tree never sees bookkeeping files.
"""

from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass
from pathlib import Path

from hytale_tools.core.errors import UnsupportedPlatformError
from hytale_tools.core.types import GameArch, GameOS, VersionChannel

PATCHES_BASE_URL = "https://game-patches.hytale.com/patches"
PATCH_TOOL_BASE_URL = "https://broth.itch.zone/butler"

PATCH_EXTENSION = "pwr"
SIGNATURE_SUFFIX = ".sig"
PATCH_STATE_DIRNAME = ".online-patch"
INSTALL_MANIFEST_FILENAME = "install.json"


def detect_os() -> GameOS:
    """Map the host platform to a server OS name."""
    if sys.platform == "win32":
        return GameOS.WINDOWS
    if sys.platform == "darwin":
        return GameOS.DARWIN
    if sys.platform.startswith("linux"):
        return GameOS.LINUX
    raise UnsupportedPlatformError(f"Unsupported operating system: {sys.platform}")


def detect_arch() -> GameArch:
    """Map the host machine to a server architecture name."""
    machine = platform.machine().lower()
    if machine in ("arm64", "aarch64"):
        return GameArch.ARM64
    return GameArch.AMD64


def patch_tool_arch() -> str:
    """Architecture name of patch tool builds.

    Only x86 builds are published; 64-bit ARM hosts run the amd64 build.
    """
    return "amd64" if sys.maxsize > 2**32 else "386"


def default_data_root(os_name: GameOS) -> Path:
    """Platform application data folder."""
    home = Path.home()
    if os_name is GameOS.WINDOWS:
        return Path(os.environ.get("APPDATA", home / "AppData" / "Roaming"))
    if os_name is GameOS.DARWIN:
        return home / "Library" / "Application Support"
    return home


@dataclass(frozen=True)
class PatchUrls:
    """URLs of a patch file and its signature."""

    patch: str
    signature: str


class PathResolver:
    """Resolve remote URLs and local paths for one launcher.

    Args:
        server_id: Launcher identifier, names the data folder
        root: Optional launcher folder all data is nested under
        data_root: Override for the application data folder
        os_name: Target OS, detected from the host when omitted
        arch: Target architecture, detected from the host when omitted
        patches_base_url: Base URL of official patches
        patch_tool_base_url: Base URL of patch tool archives
    """

    def __init__(
        self,
        server_id: str,
        *,
        root: str | None = None,
        data_root: Path | None = None,
        os_name: GameOS | None = None,
        arch: GameArch | None = None,
        patches_base_url: str = PATCHES_BASE_URL,
        patch_tool_base_url: str = PATCH_TOOL_BASE_URL,
    ):
        self.server_id = server_id
        self.root = root
        self.os_name = os_name or detect_os()
        self.arch = arch or detect_arch()
        self.data_root = data_root or default_data_root(self.os_name)
        self.patches_base_url = patches_base_url.rstrip("/")
        self.patch_tool_base_url = patch_tool_base_url.rstrip("/")

    @property
    def base_folder(self) -> Path:
        """Folder holding all data of this launcher."""
        if self.root:
            return self.data_root / f".{self.root}" / f".{self.server_id}"
        return self.data_root / f".{self.server_id}"

    # URLs

    def _patch_urls(self, from_build: int, to_build: int, channel: VersionChannel) -> PatchUrls:
        base = (
            f"{self.patches_base_url}/{self.os_name.value}/{self.arch.value}/"
            f"{VersionChannel(channel).value}/{from_build}/{to_build}.{PATCH_EXTENSION}"
        )
        return PatchUrls(patch=base, signature=f"{base}{SIGNATURE_SUFFIX}")

    def fresh_patch_urls(
        self, to_build: int, channel: VersionChannel = VersionChannel.RELEASE
    ) -> PatchUrls:
        """URLs of the full patch that installs ``to_build`` into an empty tree."""
        return self._patch_urls(0, to_build, channel)

    def incremental_patch_urls(
        self,
        from_build: int,
        to_build: int,
        channel: VersionChannel = VersionChannel.RELEASE,
    ) -> PatchUrls:
        """URLs of the delta patch from ``from_build`` to ``to_build``.

        Callers must only request adjacent builds (``to_build == from_build + 1``);
        this is not checked here.
        """
        return self._patch_urls(from_build, to_build, channel)

    def patch_tool_url(self) -> str:
        """URL of the latest patch tool archive for this OS."""
        return f"{self.patch_tool_base_url}/{self.os_name.value}-{patch_tool_arch()}/LATEST/archive/default"

    # Shared folders

    @property
    def runtime_folder(self) -> Path:
        """Shared language runtime folder."""
        return self.base_folder / "runtime" / "hytale-jre"

    @property
    def java_executable(self) -> Path:
        """Java executable inside the shared runtime."""
        if self.os_name is GameOS.WINDOWS:
            return self.runtime_folder / "bin" / "java.exe"
        if self.os_name is GameOS.DARWIN:
            return self.runtime_folder / "Contents" / "Home" / "bin" / "java"
        return self.runtime_folder / "bin" / "java"

    @property
    def patch_tool_folder(self) -> Path:
        """Shared patch tool folder."""
        return self.base_folder / "runtime" / "butler"

    @property
    def patch_tool_executable(self) -> Path:
        """Patch tool executable."""
        suffix = ".exe" if self.os_name is GameOS.WINDOWS else ""
        return self.patch_tool_folder / f"butler{suffix}"

    # Instance folders

    @property
    def instances_folder(self) -> Path:
        """Folder holding every instance."""
        return self.base_folder / "instances"

    def instance_folder(self, instance_id: str) -> Path:
        """Root folder of one instance."""
        if not instance_id or instance_id in (".", "..") or any(
            sep in instance_id for sep in ("/", "\\")
        ):
            raise ValueError(f"Invalid instance id: {instance_id!r}")
        return self.instances_folder / instance_id

    def game_folder(self, instance_id: str) -> Path:
        """Patch target tree (contains ``Client/`` and ``Server/``)."""
        return self.instance_folder(instance_id) / "game"

    def staging_folder(self, instance_id: str) -> Path:
        """Patch tool scratch folder."""
        return self.instance_folder(instance_id) / "staging"

    def client_folder(self, instance_id: str) -> Path:
        """Client folder inside the game tree."""
        return self.game_folder(instance_id) / "Client"

    def server_folder(self, instance_id: str) -> Path:
        """Server folder inside the game tree."""
        return self.game_folder(instance_id) / "Server"

    def client_executable(self, instance_id: str) -> Path:
        """Client executable."""
        name = "HytaleClient.exe" if self.os_name is GameOS.WINDOWS else "HytaleClient"
        return self.client_folder(instance_id) / name

    def server_executable(self, instance_id: str) -> Path:
        """Server JAR (platform independent)."""
        return self.server_folder(instance_id) / "HytaleServer.jar"

    def user_data_folder(self, instance_id: str) -> Path:
        """Per-instance user data folder."""
        return self.instance_folder(instance_id) / "UserData"

    def mods_folder(self, instance_id: str) -> Path:
        """Destination of auxiliary files."""
        return self.user_data_folder(instance_id) / "Mods"

    def install_manifest_path(self, instance_id: str) -> Path:
        """Install manifest file."""
        return self.instance_folder(instance_id) / INSTALL_MANIFEST_FILENAME

    def patch_state_folder(self, instance_id: str) -> Path:
        """Online patch backups and state, sibling of the game folder."""
        return self.instance_folder(instance_id) / PATCH_STATE_DIRNAME

    def temp_patch_paths(
        self,
        instance_id: str,
        from_build: int,
        to_build: int,
        channel: VersionChannel = VersionChannel.RELEASE,
    ) -> tuple[Path, Path]:
        """Download locations of a patch file and its signature."""
        name = f"temp_{VersionChannel(channel).value}_{from_build}_to_{to_build}.{PATCH_EXTENSION}"
        patch_path = self.instance_folder(instance_id) / name
        return patch_path, patch_path.with_name(name + SIGNATURE_SUFFIX)
