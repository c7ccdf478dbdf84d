"""Tests for configuration parsing, validation and migration."""

import configparser

import pytest
from pydantic import ValidationError

from cloudshelf.exceptions import ConfigurationError
from cloudshelf.models.config import DEFAULT_MAX_CACHE_SIZE, CacheConfig
from cloudshelf.storage.config_manager import ConfigManager
from cloudshelf.utils.formatting import format_size, parse_size


class TestParseSize:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("1048576", 1048576),
            ("8G", 8 * 1024**3),
            ("500MB", 500 * 1024**2),
            ("1.5 GiB", int(1.5 * 1024**3)),
            ("2k", 2048),
            (42, 42),
        ],
    )
    def test_valid_sizes(self, value, expected):
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ["", "lots", "-5", "10 XB", -1])
    def test_invalid_sizes(self, value):
        with pytest.raises(ValueError):
            parse_size(value)

    def test_format_size(self):
        assert format_size(0) == "0 B"
        assert format_size(1536) == "1.5 KB"
        assert format_size(8 * 1024**3) == "8.0 GB"


class TestCacheConfig:
    def test_defaults(self, tmp_path):
        config = CacheConfig(config_path=str(tmp_path))

        assert config.max_cache_size == DEFAULT_MAX_CACHE_SIZE
        assert config.eviction_interval == 300
        assert config.download_timeout == 60
        assert config.eviction_batch_size == 50
        assert config.evict_helper == "fp-evict"
        assert config.library_path == tmp_path / "library.sqlite"

    def test_size_strings_accepted(self, tmp_path):
        config = CacheConfig(config_path=str(tmp_path), max_cache_size="2G")
        assert config.max_cache_size == 2 * 1024**3

    def test_explicit_database_path(self, tmp_path):
        config = CacheConfig(
            config_path=str(tmp_path), database_path=str(tmp_path / "other.db")
        )
        assert config.library_path == tmp_path / "other.db"

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("eviction_interval", 0),
            ("download_timeout", -1),
            ("helper_timeout", 0.5),
            ("eviction_batch_size", 0),
            ("eviction_batch_size", 501),
            ("provider_prefix", ""),
            ("provider_prefix", "Proton/Drive"),
            ("server_port", 70000),
            ("max_cache_size", "huge"),
        ],
    )
    def test_invalid_values(self, tmp_path, field, value):
        with pytest.raises(ValidationError):
            CacheConfig(config_path=str(tmp_path), **{field: value})

    def test_assignment_is_validated(self, tmp_path):
        config = CacheConfig(config_path=str(tmp_path))
        with pytest.raises(ValidationError):
            config.eviction_batch_size = 0


class TestConfigManager:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(tmp_path / "config.ini").load_config()

    def test_save_and_load_roundtrip(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.ini")
        manager.save_new_config({"max_cache_size": 1024, "cloud_storage_dir": "/cloud"})

        config = ConfigManager(tmp_path / "config.ini").load_config()

        assert config.max_cache_size == 1024
        assert config.cloud_storage_dir == "/cloud"
        assert config.eviction_interval == 300
        assert config.config_path == str(tmp_path)

    def test_cli_overrides(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.ini")
        manager.save_new_config()

        config = manager.load_config({"server_port": 8765})

        assert config.server_port == 8765

    def test_migrates_missing_keys(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\nmax_cache_size = 4G\n")

        config = ConfigManager(path).load_config()

        assert config.max_cache_size == 4 * 1024**3
        parser = configparser.ConfigParser(interpolation=None)
        parser.read(path)
        assert set(parser["DEFAULT"]) == CacheConfig.get_ini_keys()
        assert parser["DEFAULT"]["max_cache_size"] == "4G"

    def test_invalid_number(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\neviction_batch_size = many\n")

        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_failed_validation(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\neviction_batch_size = 0\n")

        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_update_setting(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.ini")
        manager.save_new_config()

        manager.update_setting("max_cache_size", 2048)

        assert ConfigManager(tmp_path / "config.ini").load_config().max_cache_size == 2048

    def test_update_unknown_setting(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.ini")
        manager.save_new_config()

        with pytest.raises(ConfigurationError):
            manager.update_setting("colour", "blue")
