"""
Package source for the Python Package Index JSON API.
"""

import asyncio
import logging
import re
import zipfile
from pathlib import Path
from typing import Any
from urllib.parse import quote

from zembil.exceptions import NotFoundError, StorageError, UpstreamError
from zembil.models.package import PackageInfo, PackageManager
from zembil.storage.cache import artifact_suffix
from zembil.utils.versions import sort_versions

from .base import RegistrySource

log = logging.getLogger(__name__)

_REQUIREMENT_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*(.*)$")


def parse_requires_dist(requires_dist: list[str] | None) -> dict[str, str] | None:
    """
    Maps `Requires-Dist` entries to name -> specifier.

    Environment markers are kept with the specifier; a bare name maps to "*".
    """
    if not requires_dist:
        return None
    dependencies: dict[str, str] = {}
    for requirement in requires_dist:
        match = _REQUIREMENT_RE.match(requirement)
        if match:
            name, specifier = match.groups()
            dependencies[name] = specifier.strip() or "*"
    return dependencies or None


def _pick_distribution(urls: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Prefers a universal wheel, then any wheel, then an sdist."""
    wheels = [u for u in urls if u.get("packagetype") == "bdist_wheel"]
    for wheel in wheels:
        if wheel.get("filename", "").endswith("-py3-none-any.whl") or wheel.get(
            "filename", ""
        ).endswith("-py2.py3-none-any.whl"):
            return wheel
    if wheels:
        return wheels[0]
    for url in urls:
        if url.get("packagetype") == "sdist":
            return url
    return None


def _unpack_wheel(artifact_path: Path, site_packages: Path) -> None:
    site_packages.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(artifact_path) as wheel:
            wheel.extractall(site_packages)
    except zipfile.BadZipFile as e:
        raise StorageError(f"Cannot unpack wheel '{artifact_path.name}': {e}") from e


class PypiSource(RegistrySource):
    """Fetches wheels or sdists and metadata from PyPI."""

    manager = PackageManager.PIP

    def _url(self, name: str, version: str | None = None) -> str:
        if version is None:
            return f"{self.base_url}/{quote(name, safe='')}/json"
        return f"{self.base_url}/{quote(name, safe='')}/{quote(version, safe='')}/json"

    async def _get_release(self, name: str, version: str) -> dict[str, Any]:
        try:
            data = await self.http.get_json(self._url(name, version))
        except NotFoundError:
            raise NotFoundError(f"Package not found: {name}@{version}") from None
        if not isinstance(data, dict) or not isinstance(data.get("info"), dict):
            raise UpstreamError(f"Unexpected index response for {name}@{version}")
        return data

    async def get_package_info(self, name: str, version: str) -> PackageInfo:
        info = (await self._get_release(name, version))["info"]
        project_urls = info.get("project_urls") or {}
        return PackageInfo(
            name=info.get("name") or name,
            version=info.get("version") or version,
            manager=self.manager,
            description=info.get("summary"),
            homepage=info.get("home_page") or project_urls.get("Homepage"),
            repository=project_urls.get("Source") or project_urls.get("Repository"),
            license=info.get("license") or None,
            dependencies=parse_requires_dist(info.get("requires_dist")),
        )

    async def download_package(self, name: str, version: str) -> Path:
        data = await self._get_release(name, version)
        distribution = _pick_distribution(data.get("urls") or [])
        if distribution is None:
            raise NotFoundError(f"No suitable distribution found for {name}@{version}")
        suffix = artifact_suffix(Path(distribution.get("filename") or "dist.whl"))
        return await self._download(distribution["url"], name, version, suffix)

    async def get_documentation(self, name: str, version: str) -> str:
        info = (await self._get_release(name, version))["info"]
        return info.get("description") or info.get("summary") or ""

    async def get_examples(self, name: str, version: str) -> list[str]:
        return []

    async def list_versions(self, name: str) -> list[str]:
        try:
            data = await self.http.get_json(self._url(name))
        except NotFoundError:
            raise NotFoundError(f"Package not found: {name}") from None
        return sort_versions((data.get("releases") or {}).keys(), PackageManager.PIP)

    async def install(
        self, name: str, version: str, target_dir: Path, artifact_path: Path
    ) -> Path:
        """Unpacks a cached wheel into `<target>/site-packages`; sdists are copied as-is."""
        if artifact_path.suffix == ".whl":
            site_packages = target_dir / "site-packages"
            await asyncio.to_thread(_unpack_wheel, artifact_path, site_packages)
            log.debug(f"Unpacked {name}@{version} into '{site_packages}'.")
            return site_packages

        filename = f"{name}-{version}{artifact_suffix(artifact_path)}"
        destination = await asyncio.to_thread(
            self._copy_into, artifact_path, target_dir, filename
        )
        log.info(
            f"[yellow]{name}@{version} is cached as a source distribution; "
            f"copied it to '{destination}' without building.[/yellow]"
        )
        return destination
