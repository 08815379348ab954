"""CLI command implementations for hytale_tools.

This module contains all command-line interface implementations:
- install: Install or update an instance
- plan: Show the update flow for an instance
- check: Presence check of an instance
- health: Hash-based health check
- clean: Delete instance game files
- verify: Verify game files against a signature
- patch: Online patch management
"""

from hytale_tools.commands.instance import check, clean, health, install, plan, verify
from hytale_tools.commands.patch import patch_group

__all__ = ["check", "clean", "health", "install", "patch_group", "plan", "verify"]
