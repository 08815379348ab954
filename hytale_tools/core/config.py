"""Configuration management for hytale-tools."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

from hytale_tools.core.paths import PathResolver

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = Path.home() / ".config" / "hytale-tools" / "config.json"


class NetworkConfig(BaseModel):
    """HTTP client configuration."""

    timeout: float = Field(default=60.0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    user_agent: str = Field(
        default="hytale-tools/0.1.0",
        description="User-Agent header sent with every request"
    )
    chunk_size: int = Field(
        default=64 * 1024,
        description="Streaming chunk size in bytes"
    )

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Validate chunk size value."""
        if v <= 0:
            raise ValueError("Chunk size must be positive")
        return v


class AppConfig(BaseModel):
    """Application configuration."""

    # Path settings
    server_id: str = Field(
        default="hytale-tools",
        description="Launcher identifier; names the data folder"
    )
    root: str | None = Field(
        default=None,
        description="Optional launcher folder that all instance data is nested under"
    )
    data_root: Path | None = Field(
        default=None,
        description="Override for the platform application data folder"
    )
    config_dir: Path = Field(
        default=DEFAULT_CONFIG_FILE.parent,
        description="Configuration directory"
    )

    # Remote endpoints
    patches_base_url: str = Field(
        default="https://game-patches.hytale.com/patches",
        description="Base URL of official PWR patches"
    )
    runtime_manifest_url: str = Field(
        default="https://launcher.hytale.com/version/release/jre.json",
        description="Runtime manifest URL"
    )
    patch_tool_base_url: str = Field(
        default="https://broth.itch.zone/butler",
        description="Base URL of patch tool archives"
    )

    network: NetworkConfig = Field(default_factory=NetworkConfig)

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    def resolver(self) -> PathResolver:
        """Build the path resolver for this configuration."""
        return PathResolver(
            self.server_id,
            root=self.root,
            data_root=self.data_root,
            patches_base_url=self.patches_base_url,
            patch_tool_base_url=self.patch_tool_base_url,
        )

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("server_id")
    @classmethod
    def validate_server_id(cls, v: str) -> str:
        """Validate server id."""
        if not v or any(sep in v for sep in ("/", "\\")):
            raise ValueError(f"Invalid server id: {v!r}")
        return v

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v
