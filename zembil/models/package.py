"""
Pydantic models describing packages and the records kept for cached artifacts.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PackageManager(str, Enum):
    """Ecosystem tag selecting which package source handles a package."""

    NPM = "npm"
    PIP = "pip"
    MAVEN = "maven"
    COMPOSER = "composer"
    CARGO = "cargo"
    GO = "go"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def package_id(name: str, version: str, manager: PackageManager | str) -> str:
    """
    Computes the content-independent storage id for a package identity.

    The id depends only on (name, version, manager), so removing and re-adding
    the same package always yields the same id.
    """
    manager_value = manager.value if isinstance(manager, PackageManager) else manager
    key = f"{manager_value}:{name}@{version}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class PackageInfo(BaseModel):
    """Registry metadata for one package version."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    manager: PackageManager
    description: str | None = None
    homepage: str | None = None
    repository: str | None = None
    license: str | None = None
    dependencies: dict[str, str] | None = None
    dev_dependencies: dict[str, str] | None = None
    peer_dependencies: dict[str, str] | None = None

    @property
    def spec(self) -> str:
        return f"{self.name}@{self.version}"


class PackageRecord(PackageInfo):
    """A cached artifact together with where its files live on disk."""

    id: str
    cached_at: datetime = Field(default_factory=utc_now)
    size: int = Field(..., ge=0)
    checksum: str
    artifact_path: str
    docs_path: str | None = None
    examples_path: str | None = None
