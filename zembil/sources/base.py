"""
The package-source boundary: what the sync engine needs from a registry.
"""

import logging
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

from pathvalidate import sanitize_filename

from zembil.models.package import PackageInfo, PackageManager

from .http import HttpClient

log = logging.getLogger(__name__)


class PackageSource(ABC):
    """
    A registry for one package manager.

    `get_package_info` and `download_package` raise `NotFoundError` or
    `UpstreamError` on failure. The documentation and examples calls return
    empty values when nothing is published.
    """

    manager: PackageManager

    @abstractmethod
    async def get_package_info(self, name: str, version: str) -> PackageInfo: ...

    @abstractmethod
    async def download_package(self, name: str, version: str) -> Path:
        """Downloads the artifact and returns the path of the local file."""

    @abstractmethod
    async def get_documentation(self, name: str, version: str) -> str: ...

    @abstractmethod
    async def get_examples(self, name: str, version: str) -> list[str]: ...

    @abstractmethod
    async def list_versions(self, name: str) -> list[str]:
        """All published versions, ascending."""

    @abstractmethod
    async def install(
        self, name: str, version: str, target_dir: Path, artifact_path: Path
    ) -> Path:
        """Installs a cached artifact into `target_dir` without network access."""

    async def close(self) -> None:
        """Releases network resources. Sources without any have nothing to do."""


class RegistrySource(PackageSource):
    """Shared plumbing for sources that talk to a registry over HTTP."""

    def __init__(self, base_url: str, temp_dir: Path, http: HttpClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.temp_dir = temp_dir
        self.http = http or HttpClient()

    def _download_path(self, name: str, version: str, suffix: str) -> Path:
        """A unique, filesystem-safe path in the temp dir for a downloaded artifact."""
        stem = sanitize_filename(f"{name.replace('/', '-')}-{version}", replacement_text="_")
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        return self.temp_dir / f"{stem}-{uuid.uuid4().hex[:8]}{suffix}"

    async def _download(self, url: str, name: str, version: str, suffix: str) -> Path:
        destination = self._download_path(name, version, suffix)
        log.debug(f"Downloading {name}@{version} from {url}")
        await self.http.download_file(url, destination)
        return destination

    @staticmethod
    def _copy_into(artifact_path: Path, directory: Path, filename: str) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        destination = directory / filename
        shutil.copy2(artifact_path, destination)
        return destination

    async def close(self) -> None:
        await self.http.close()
