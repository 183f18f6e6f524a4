"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from zembil.exceptions import ConfigurationError
from zembil.models.config import CacheConfig

log = logging.getLogger(__name__)


def _to_ini_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    @property
    def cache_dir(self) -> Path:
        return self.config_file_path.parent

    def load_config(self, cli_options: dict[str, Any] | None = None) -> CacheConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        A missing file is not an error: the defaults are used as-is.

        Args:
            cli_options: A dictionary of options provided via the command line.
                `None` values are ignored so unset flags don't mask the file.

        Returns:
            A validated CacheConfig object.

        Raises:
            ConfigurationError: If the config file is unreadable or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e

            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            config_from_file = self._get_config_as_dict()
        else:
            log.debug(f"No configuration file at '{self.config_file_path}', using defaults.")

        # Override with CLI options
        if cli_options:
            config_from_file.update(
                {key: value for key, value in cli_options.items() if value is not None}
            )

        try:
            return CacheConfig(cache_dir=self.cache_dir, **config_from_file)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_config(self, settings: dict[str, Any] | None = None) -> CacheConfig:
        """
        Writes a complete configuration file, validating the settings first.

        Args:
            settings: Values to store; every other key gets its default.

        Returns:
            The validated configuration that was written.
        """
        try:
            config = CacheConfig(cache_dir=self.cache_dir, **(settings or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        parser = configparser.ConfigParser(interpolation=None)
        parser["DEFAULT"] = {
            key: _to_ini_value(getattr(config, key))
            for key in sorted(CacheConfig.get_ini_keys())
        }

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                parser.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e
        return config

    def set_value(self, key: str, value: str) -> CacheConfig:
        """Updates a single key in the file and returns the re-validated config."""
        if key not in CacheConfig.get_ini_keys():
            known = ", ".join(sorted(CacheConfig.get_ini_keys()))
            raise ConfigurationError(f"Unknown configuration key '{key}'. Known keys: {known}")
        current = self.load_config()
        settings = {k: getattr(current, k) for k in CacheConfig.get_ini_keys()}
        settings[key] = value
        return self.save_config(settings)

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        try:
            return {
                "max_size": section.getint("max_size"),
                "enable_documentation": section.getboolean("enable_documentation"),
                "enable_examples": section.getboolean("enable_examples"),
                "sync_interval": section.getint("sync_interval"),
                "offline_mode": section.getboolean("offline_mode"),
                "resume_interrupted": section.getboolean("resume_interrupted"),
                "npm_registry": section.get("npm_registry"),
                "pypi_index": section.get("pypi_index"),
                "maven_repository": section.get("maven_repository"),
                "request_timeout": section.getint("request_timeout"),
                "max_attempts": section.getint("max_attempts"),
                "json_logs": section.getboolean("json_logs"),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = CacheConfig.model_construct()
        config_section = self._parser["DEFAULT"]
        needs_saving = False

        for key in sorted(CacheConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _to_ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
