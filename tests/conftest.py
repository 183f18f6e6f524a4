"""Shared fixtures: an in-memory package source and cache configurations."""

import shutil
import uuid
from pathlib import Path

import pytest

from zembil.exceptions import NotFoundError
from zembil.models.config import CacheConfig
from zembil.models.package import PackageInfo, PackageManager
from zembil.sources.base import PackageSource
from zembil.sources.registry import SourceRegistry


class StubSource(PackageSource):
    """A package source that serves packages from a dict instead of a registry."""

    def __init__(self, download_dir: Path, manager: PackageManager = PackageManager.NPM):
        self.manager = manager
        self.download_dir = download_dir
        self.packages: dict[tuple[str, str], dict] = {}
        self.downloaded: list[Path] = []
        self.closed = False

    def publish(
        self,
        name: str,
        version: str,
        content: bytes = b"artifact",
        docs: str = "",
        examples: list[str] | None = None,
        description: str | None = None,
    ) -> None:
        self.packages[(name, version)] = {
            "content": content,
            "docs": docs,
            "examples": examples or [],
            "description": description,
        }

    def _lookup(self, name: str, version: str) -> dict:
        try:
            return self.packages[(name, version)]
        except KeyError:
            raise NotFoundError(f"Package not found: {name}@{version}") from None

    async def get_package_info(self, name: str, version: str) -> PackageInfo:
        package = self._lookup(name, version)
        return PackageInfo(
            name=name,
            version=version,
            manager=self.manager,
            description=package["description"],
            dependencies={"dep": "^1.0.0"},
        )

    async def download_package(self, name: str, version: str) -> Path:
        package = self._lookup(name, version)
        self.download_dir.mkdir(parents=True, exist_ok=True)
        path = self.download_dir / f"{name}-{version}-{uuid.uuid4().hex[:8]}.tgz"
        path.write_bytes(package["content"])
        self.downloaded.append(path)
        return path

    async def get_documentation(self, name: str, version: str) -> str:
        return self._lookup(name, version)["docs"]

    async def get_examples(self, name: str, version: str) -> list[str]:
        return self._lookup(name, version)["examples"]

    async def list_versions(self, name: str) -> list[str]:
        return sorted(version for (n, version) in self.packages if n == name)

    async def install(
        self, name: str, version: str, target_dir: Path, artifact_path: Path
    ) -> Path:
        destination = target_dir / f"{name}-{version}.tgz"
        shutil.copyfile(artifact_path, destination)
        return destination

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config(tmp_path: Path) -> CacheConfig:
    return CacheConfig(cache_dir=tmp_path / "cache")


@pytest.fixture
def stub_source(config: CacheConfig) -> StubSource:
    return StubSource(config.temp_dir)


@pytest.fixture
def registry(stub_source: StubSource) -> SourceRegistry:
    return SourceRegistry([stub_source])
