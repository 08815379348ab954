"""Core functionality for hytale_tools.

This module provides the installation engine:
- Path and URL resolution
- Patch tool adapter
- Installation checks
- Online patch management
- Install/update orchestration
"""

from hytale_tools.core.checker import (
    CheckResult,
    PatchHealth,
    PatchHealthStatus,
    check_installation,
    clean_installation,
    get_patch_health,
)
from hytale_tools.core.errors import (
    ErrorType,
    FetchError,
    HashError,
    HytaleToolsError,
    InstallError,
    MissingFileError,
    UnsupportedPlatformError,
    VerifyError,
)
from hytale_tools.core.installer import GameInstaller, InstallFlow, UpdatePlan, plan_steps, plan_update
from hytale_tools.core.paths import PathResolver
from hytale_tools.core.progress import ProgressEvent, ProgressReporter, Stage
from hytale_tools.core.types import (
    GameArch,
    GameOS,
    InstallManifest,
    LoaderConfig,
    PatchConfig,
    VersionChannel,
)

__all__ = [
    # Types
    "GameArch",
    "GameOS",
    "InstallManifest",
    "LoaderConfig",
    "PatchConfig",
    "VersionChannel",
    # Errors
    "ErrorType",
    "HytaleToolsError",
    "InstallError",
    "VerifyError",
    "MissingFileError",
    "HashError",
    "FetchError",
    "UnsupportedPlatformError",
    # Engine
    "PathResolver",
    "ProgressEvent",
    "ProgressReporter",
    "Stage",
    "CheckResult",
    "PatchHealth",
    "PatchHealthStatus",
    "check_installation",
    "get_patch_health",
    "clean_installation",
    "GameInstaller",
    "InstallFlow",
    "UpdatePlan",
    "plan_steps",
    "plan_update",
]
