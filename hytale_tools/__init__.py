"""Hytale Tools - install and update engine for delta-patched game instances.

This package installs official game builds with the butler patch tool,
manages online executable patches layered on top of them and keeps the
shared Java runtime in place.

Key modules:
- core: Paths, patch tool adapter, checker, online patches, installer
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "Hytale Tools Team"

# Re-export commonly used types and functions
from hytale_tools.core.types import (
    InstallManifest,
    LoaderConfig,
    PatchConfig,
    VersionChannel,
)

__all__ = [
    "__version__",
    "__author__",
    "InstallManifest",
    "LoaderConfig",
    "PatchConfig",
    "VersionChannel",
]
