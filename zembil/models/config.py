"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_MAX_SIZE = 10 * 1024 * 1024 * 1024  # 10 GiB
DEFAULT_NPM_REGISTRY = "https://registry.npmjs.org"
DEFAULT_PYPI_INDEX = "https://pypi.org/pypi"
DEFAULT_MAVEN_REPOSITORY = "https://repo1.maven.org/maven2"


def get_default_cache_dir() -> Path:
    """Returns the cache directory, honouring the ZEMBIL_HOME override."""
    if override := os.getenv("ZEMBIL_HOME"):
        return Path(override).expanduser()
    return Path("~/.zembil").expanduser()


class CacheConfig(BaseModel):
    """A validated configuration model for the cache, queue and sources."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Storage
    cache_dir: Path = Field(default_factory=get_default_cache_dir)
    max_size: int = DEFAULT_MAX_SIZE

    # Sync behaviour
    enable_documentation: bool = True
    enable_examples: bool = True
    sync_interval: int = 60  # minutes
    offline_mode: bool = False
    resume_interrupted: bool = True

    # Sources
    npm_registry: str = DEFAULT_NPM_REGISTRY
    pypi_index: str = DEFAULT_PYPI_INDEX
    maven_repository: str = DEFAULT_MAVEN_REPOSITORY
    request_timeout: int = 60  # seconds
    max_attempts: int = 3

    # Logging
    json_logs: bool = False

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int) -> int:
        """Ensures the size limit is a positive number of bytes."""
        if v <= 0:
            raise ValueError("max_size must be a positive number of bytes.")
        return v

    @field_validator("sync_interval", "request_timeout", "max_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1.")
        return v

    @field_validator("npm_registry", "pypi_index", "maven_repository")
    @classmethod
    def validate_registry_url(cls, v: str) -> str:
        """Registry URLs must be absolute http(s) URLs without a trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Registry URL must start with http:// or https://: {v}")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_option_conflicts(self) -> "CacheConfig":
        """Checks that the cache directory is not a file."""
        if self.cache_dir.exists() and not self.cache_dir.is_dir():
            raise ValueError(f"cache_dir '{self.cache_dir}' exists and is not a directory.")
        return self

    @property
    def temp_dir(self) -> Path:
        return self.cache_dir / "temp"

    @property
    def log_dir(self) -> Path:
        return self.cache_dir / "logs"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"cache_dir"}
        return {key for key in cls.model_fields if key not in internal_fields}
