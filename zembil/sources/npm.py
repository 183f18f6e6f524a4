"""
Package source for the npm registry.
"""

import asyncio
import logging
import tarfile
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import quote

from zembil.exceptions import NotFoundError, StorageError, UpstreamError
from zembil.models.package import PackageInfo, PackageManager
from zembil.utils.versions import sort_versions

from .base import RegistrySource

log = logging.getLogger(__name__)


def _strip_leading_component(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
    """Drops the `package/` prefix npm puts on every entry, then applies the data filter."""
    parts = PurePosixPath(member.name).parts[1:]
    if not parts:
        return None
    changes: dict[str, Any] = {"name": "/".join(parts)}
    if member.islnk():
        link_parts = PurePosixPath(member.linkname).parts[1:]
        changes["linkname"] = "/".join(link_parts)
    return tarfile.data_filter(member.replace(**changes, deep=False), dest_path)


def _extract_tarball(artifact_path: Path, target_dir: Path) -> None:
    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(artifact_path, "r:*") as tar:
            tar.extractall(target_dir, filter=_strip_leading_component)
    except tarfile.TarError as e:
        raise StorageError(f"Cannot extract '{artifact_path.name}': {e}") from e


def _repository_url(repository: Any) -> str | None:
    if isinstance(repository, dict):
        return repository.get("url")
    if isinstance(repository, str):
        return repository
    return None


def _license_name(license_field: Any) -> str | None:
    if isinstance(license_field, dict):
        return license_field.get("type")
    if isinstance(license_field, str):
        return license_field
    return None


class NpmSource(RegistrySource):
    """Fetches tarballs and metadata from an npm-compatible registry."""

    manager = PackageManager.NPM

    def _url(self, name: str, version: str | None = None) -> str:
        path = quote(name, safe="@/")
        if version is not None:
            path = f"{path}/{quote(version, safe='')}"
        return f"{self.base_url}/{path}"

    async def _get_manifest(self, name: str, version: str) -> dict[str, Any]:
        try:
            data = await self.http.get_json(self._url(name, version))
        except NotFoundError:
            raise NotFoundError(f"Package not found: {name}@{version}") from None
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected registry response for {name}@{version}")
        return data

    async def get_package_info(self, name: str, version: str) -> PackageInfo:
        data = await self._get_manifest(name, version)
        return PackageInfo(
            name=data.get("name") or name,
            version=data.get("version") or version,
            manager=self.manager,
            description=data.get("description"),
            homepage=data.get("homepage"),
            repository=_repository_url(data.get("repository")),
            license=_license_name(data.get("license")),
            dependencies=data.get("dependencies") or None,
            dev_dependencies=data.get("devDependencies") or None,
            peer_dependencies=data.get("peerDependencies") or None,
        )

    async def download_package(self, name: str, version: str) -> Path:
        data = await self._get_manifest(name, version)
        tarball_url = (data.get("dist") or {}).get("tarball")
        if not tarball_url:
            raise UpstreamError(f"Registry lists no tarball for {name}@{version}")
        return await self._download(tarball_url, name, version, ".tgz")

    async def get_documentation(self, name: str, version: str) -> str:
        data = await self._get_manifest(name, version)
        readme = data.get("readme")
        if not readme:
            # Version manifests often omit the README; the packument carries the latest one.
            packument = await self.http.get_json(self._url(name))
            readme = packument.get("readme") if isinstance(packument, dict) else None
        return readme or ""

    async def get_examples(self, name: str, version: str) -> list[str]:
        return []

    async def list_versions(self, name: str) -> list[str]:
        try:
            data = await self.http.get_json(self._url(name))
        except NotFoundError:
            raise NotFoundError(f"Package not found: {name}") from None
        return sort_versions((data.get("versions") or {}).keys(), PackageManager.NPM)

    async def install(
        self, name: str, version: str, target_dir: Path, artifact_path: Path
    ) -> Path:
        """Extracts the cached tarball into `target_dir`, without the `package/` prefix."""
        await asyncio.to_thread(_extract_tarball, artifact_path, target_dir)
        log.debug(f"Extracted {name}@{version} into '{target_dir}'.")
        return target_dir
