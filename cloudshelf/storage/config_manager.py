"""
Reads, migrates, and writes the cloudshelf INI settings file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from cloudshelf.exceptions import ConfigurationError
from cloudshelf.models.config import CacheConfig

log = logging.getLogger(__name__)

SECTION = "DEFAULT"

_INT_KEYS = {"eviction_batch_size", "server_port"}
_FLOAT_KEYS = {"eviction_interval", "download_timeout", "read_timeout", "helper_timeout"}


class ConfigManager:
    """Owns the settings file that backs a CacheConfig."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> CacheConfig:
        """
        Builds a validated CacheConfig from the settings file.

        Keys missing from the file are filled in with defaults and written back.
        Values in `cli_options` take precedence over the file.

        Raises:
            ConfigurationError: The file is absent, unparsable, holds a non-numeric
            value for a numeric key, or fails model validation.
        """
        self._read()

        if self._fill_missing_keys():
            log.info("[yellow]Added new default settings to the config file.[/yellow]")

        try:
            values = self._section_values()
        except ValueError as e:
            raise ConfigurationError(f"Bad value in {self.config_file_path}: {e}") from e
        values.update(cli_options or {})

        try:
            return CacheConfig(**values, config_path=str(self.config_file_path.parent))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid cloudshelf settings:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any] | None = None) -> None:
        """Writes a fresh settings file, using defaults for anything not given."""
        defaults = self._defaults()
        settings = settings or {}
        parser = configparser.ConfigParser(interpolation=None)
        parser[SECTION] = {
            key: str(settings.get(key, getattr(defaults, key)))
            for key in sorted(CacheConfig.get_ini_keys())
        }
        self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
        self._write(parser)

    def update_setting(self, key: str, value: Any) -> None:
        """Changes one key in place, e.g. the cache limit set by `set-limit`."""
        if key not in CacheConfig.get_ini_keys():
            raise ConfigurationError(f"Unknown configuration key '{key}'.")
        self._read()
        self._parser[SECTION][key] = str(value)
        self._write(self._parser)

    def _read(self) -> None:
        if not self.config_file_path.is_file():
            raise ConfigurationError(
                f"No config file at '{self.config_file_path}'. "
                "Run 'cloudshelf init' to create one."
            )
        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Cannot parse {self.config_file_path}: {e}") from e

    def _write(self, parser: configparser.ConfigParser) -> None:
        try:
            with self.config_file_path.open("w", encoding="utf-8") as handle:
                parser.write(handle)
        except OSError as e:
            raise ConfigurationError(f"Cannot write {self.config_file_path}: {e}") from e

    def _section_values(self) -> dict[str, Any]:
        section = self._parser[SECTION]
        values: dict[str, Any] = {}
        for key in CacheConfig.get_ini_keys() & set(section):
            if key in _INT_KEYS:
                values[key] = section.getint(key)
            elif key in _FLOAT_KEYS:
                values[key] = section.getfloat(key)
            else:
                values[key] = section.get(key)
        return values

    @staticmethod
    def _defaults() -> CacheConfig:
        return CacheConfig.model_construct()

    def _fill_missing_keys(self) -> bool:
        """Adds defaults for keys introduced since the file was written."""
        section = self._parser[SECTION]
        missing = sorted(CacheConfig.get_ini_keys() - set(section))
        if not missing:
            return False

        defaults = self._defaults()
        for key in missing:
            section[key] = str(getattr(defaults, key))
            log.debug(f"Config migration: {key} = {section[key]}")

        try:
            self._write(self._parser)
        except ConfigurationError as e:
            log.error(f"Could not save the migrated config file: {e}")
            return False
        return True
