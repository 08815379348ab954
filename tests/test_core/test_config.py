"""Tests for config.py module."""

import json
from pathlib import Path

import pytest

from hytale_tools.core.config import AppConfig, NetworkConfig
from hytale_tools.core.types import GameOS


class TestNetworkConfig:
    """Test NetworkConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        config = NetworkConfig()

        assert config.timeout == 60.0
        assert config.verify_ssl is True
        assert config.user_agent.startswith("hytale-tools/")
        assert config.chunk_size == 64 * 1024

    def test_timeout_validation(self):
        NetworkConfig(timeout=0.5)
        with pytest.raises(ValueError):
            NetworkConfig(timeout=0)

    def test_chunk_size_validation(self):
        with pytest.raises(ValueError):
            NetworkConfig(chunk_size=-1)


class TestAppConfig:
    """Test AppConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        config = AppConfig()

        assert config.server_id == "hytale-tools"
        assert config.root is None
        assert config.output_format == "rich"
        assert config.log_level == "INFO"
        assert isinstance(config.network, NetworkConfig)

    @pytest.mark.parametrize("server_id", ["", "a/b", "a\\b"])
    def test_server_id_validation(self, server_id: str):
        with pytest.raises(ValueError):
            AppConfig(server_id=server_id)

    def test_output_format_validation(self):
        AppConfig(output_format="json")
        with pytest.raises(ValueError):
            AppConfig(output_format="xml")

    def test_log_level_validation(self):
        AppConfig(log_level="DEBUG")
        with pytest.raises(ValueError):
            AppConfig(log_level="VERBOSE")

    def test_resolver(self, tmp_path: Path):
        """Test the resolver is built from path and URL settings."""
        config = AppConfig(
            server_id="my-launcher",
            root="servers",
            data_root=tmp_path,
            patches_base_url="https://mirror.example.com/patches",
        )
        resolver = config.resolver()

        assert resolver.server_id == "my-launcher"
        assert resolver.base_folder == tmp_path / ".servers" / ".my-launcher"
        urls = resolver.fresh_patch_urls(2)
        assert urls.patch.startswith("https://mirror.example.com/patches/")

    def test_load_missing_file(self, tmp_path: Path):
        """Test loading from a missing file returns defaults."""
        config = AppConfig.load(tmp_path / "missing.json")
        assert config.server_id == "hytale-tools"

    def test_save_and_load(self, tmp_path: Path):
        config_file = tmp_path / "nested" / "config.json"
        original = AppConfig(server_id="saved", data_root=tmp_path, output_format="json")

        original.save(config_file)
        loaded = AppConfig.load(config_file)

        assert json.loads(config_file.read_text())["server_id"] == "saved"
        assert loaded.server_id == "saved"
        assert loaded.data_root == tmp_path
        assert loaded.output_format == "json"

    def test_load_invalid_values(self, tmp_path: Path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"output_format": "xml"}))
        with pytest.raises(ValueError):
            AppConfig.load(config_file)


def test_resolver_uses_host_platform(tmp_path: Path):
    resolver = AppConfig(data_root=tmp_path).resolver()
    assert resolver.os_name in set(GameOS)
