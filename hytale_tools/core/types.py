"""Core type definitions for hytale_tools."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class VersionChannel(StrEnum):
    """Official release channels."""
    RELEASE = "release"
    PRE_RELEASE = "pre-release"


class GameOS(StrEnum):
    """Operating system names used by the patch and runtime servers."""
    WINDOWS = "windows"
    DARWIN = "darwin"
    LINUX = "linux"


class GameArch(StrEnum):
    """Architecture names used by the patch and runtime servers."""
    AMD64 = "amd64"
    ARM64 = "arm64"


class PatchTarget(StrEnum):
    """Executables that can carry an online patch."""
    CLIENT = "client"
    SERVER = "server"


class PatchConfig(BaseModel):
    """Online patch configuration for one executable.

    A missing ``patch_url`` means no online patch is configured.
    """
    patch_url: str | None = Field(None, description="URL of the patched executable")
    patch_hash: str | None = Field(None, description="SHA256 of the patched executable")
    original_url: str | None = Field(None, description="URL of the unpatched executable")
    original_hash: str | None = Field(None, description="SHA256 of the unpatched executable")

    model_config = ConfigDict(extra="allow")

    @property
    def configured(self) -> bool:
        """Whether a patch URL is present."""
        return bool(self.patch_url)


class LoaderConfig(BaseModel):
    """Loader configuration supplied by the control plane."""
    build_index: int = Field(..., ge=1, description="Pinned official build")
    version_channel: VersionChannel = Field(
        VersionChannel.RELEASE,
        alias="version_type",
        description="Release channel",
    )
    windows: PatchConfig | None = Field(None, description="Windows client patch")
    linux: PatchConfig | None = Field(None, description="Linux client patch")
    darwin: PatchConfig | None = Field(None, description="macOS client patch")
    server: PatchConfig | None = Field(None, description="Server patch")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def client_patch(self, os_name: GameOS) -> PatchConfig | None:
        """Client patch configuration for an OS, if any."""
        config: PatchConfig | None = getattr(self, os_name.value)
        return config


class PatchRecord(BaseModel):
    """Last online patch applied to an executable."""
    url: str
    hash: str | None = None
    applied_at: datetime = Field(default_factory=utc_now)


class InstallManifest(BaseModel):
    """Persisted installation state of one instance.

    ``build_index`` always names the last fully applied official build.
    """
    build_index: int = Field(..., ge=0)
    version_channel: VersionChannel = VersionChannel.RELEASE
    installed_at: datetime = Field(default_factory=utc_now)
    runtime_version: str | None = None
    server_installed: bool = False
    client_patch: PatchRecord | None = None
    server_patch: PatchRecord | None = None

    model_config = ConfigDict(extra="ignore")


class OnlinePatchState(BaseModel):
    """Persisted state of the online patch for one executable."""
    enabled: bool
    patch_url: str | None = None
    patch_hash: str | None = None
    build_index: int | None = None
    updated_at: datetime = Field(default_factory=utc_now)


class RuntimeDownload(BaseModel):
    """Runtime archive for one platform."""
    url: str
    sha256: str


class RuntimeManifest(BaseModel):
    """Runtime manifest published by the runtime server."""
    version: str
    download_url: dict[str, dict[str, RuntimeDownload]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    def download_for(self, os_name: GameOS, arch: GameArch) -> RuntimeDownload | None:
        """Archive for a platform, or None when not published."""
        return self.download_url.get(os_name.value, {}).get(arch.value)


class RemoteFile(BaseModel):
    """Auxiliary file served by the instance control plane."""
    name: str
    path: str = ""
    size: int | None = None
    sha1: str | None = None
    url: str
    type: str = "MOD"

    model_config = ConfigDict(extra="allow")


class InstanceSource(BaseModel):
    """Control plane instance serving auxiliary files."""
    id: str
    name: str = ""
    url: str | None = None
    password: str | None = None
    token: str | None = None

    def auth_headers(self) -> dict[str, str]:
        """Authentication headers for private instances."""
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        if self.password:
            return {"X-Instance-Password": self.password}
        return {}
