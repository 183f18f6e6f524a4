"""
Package source for Maven Central. Package names are `groupId:artifactId`.
"""

import asyncio
import logging
from pathlib import Path

from bs4 import BeautifulSoup, Tag

from zembil.exceptions import NotFoundError
from zembil.models.package import PackageInfo, PackageManager
from zembil.utils.versions import sort_versions

from .base import RegistrySource

log = logging.getLogger(__name__)


def split_coordinates(name: str) -> tuple[str, str]:
    """Splits `groupId:artifactId`, rejecting anything else."""
    group_id, _, artifact_id = name.partition(":")
    if not group_id or not artifact_id or ":" in artifact_id:
        raise NotFoundError(
            f"Invalid Maven coordinates '{name}'. Expected format: groupId:artifactId"
        )
    return group_id, artifact_id


def _child_text(parent: Tag | None, name: str) -> str | None:
    # html.parser lowercases tag names, so camelCase POM tags are matched in lower case.
    if parent is None:
        return None
    child = parent.find(name.lower(), recursive=False)
    if child is None:
        return None
    text = child.get_text(strip=True)
    return text or None


def parse_pom(pom: str) -> dict:
    """Extracts description, url, license, scm url and direct dependencies from a POM."""
    soup = BeautifulSoup(pom, "html.parser")
    project = soup.find("project")
    if project is None:
        return {}

    licenses = project.find("licenses", recursive=False)
    first_license = licenses.find("license") if licenses else None
    scm = project.find("scm", recursive=False)

    dependencies: dict[str, str] = {}
    dependencies_tag = project.find("dependencies", recursive=False)
    if dependencies_tag is not None:
        for dependency in dependencies_tag.find_all("dependency", recursive=False):
            group_id = _child_text(dependency, "groupId")
            artifact_id = _child_text(dependency, "artifactId")
            if group_id and artifact_id:
                dependencies[f"{group_id}:{artifact_id}"] = (
                    _child_text(dependency, "version") or "*"
                )

    return {
        "description": _child_text(project, "description"),
        "homepage": _child_text(project, "url"),
        "license": _child_text(first_license, "name"),
        "repository": _child_text(scm, "url"),
        "dependencies": dependencies or None,
    }


def parse_metadata_versions(metadata: str) -> list[str]:
    """Reads `versioning/versions/version` from a maven-metadata.xml document."""
    soup = BeautifulSoup(metadata, "html.parser")
    versions = soup.select("metadata > versioning > versions > version")
    return [v.get_text(strip=True) for v in versions if v.get_text(strip=True)]


class MavenSource(RegistrySource):
    """Fetches JARs and POM metadata from a Maven repository."""

    manager = PackageManager.MAVEN

    def _artifact_dir(self, name: str) -> str:
        group_id, artifact_id = split_coordinates(name)
        return f"{self.base_url}/{group_id.replace('.', '/')}/{artifact_id}"

    def _file_url(self, name: str, version: str, classifier: str = "", ext: str = "jar") -> str:
        _, artifact_id = split_coordinates(name)
        suffix = f"-{classifier}" if classifier else ""
        return f"{self._artifact_dir(name)}/{version}/{artifact_id}-{version}{suffix}.{ext}"

    async def get_package_info(self, name: str, version: str) -> PackageInfo:
        try:
            pom = await self.http.get_text(self._file_url(name, version, ext="pom"))
        except NotFoundError:
            raise NotFoundError(f"Package not found: {name}@{version}") from None
        return PackageInfo(name=name, version=version, manager=self.manager, **parse_pom(pom))

    async def download_package(self, name: str, version: str) -> Path:
        try:
            return await self._download(self._file_url(name, version), name, version, ".jar")
        except NotFoundError:
            raise NotFoundError(f"No JAR published for {name}@{version}") from None

    async def get_documentation(self, name: str, version: str) -> str:
        """A short summary page pointing at the published Javadoc, if any."""
        info = await self.get_package_info(name, version)
        javadoc_url = self._file_url(name, version, classifier="javadoc")

        lines = [f"# {name} {version}", ""]
        if info.description:
            lines += [info.description, ""]
        if info.homepage:
            lines.append(f"- Homepage: {info.homepage}")
        if info.license:
            lines.append(f"- License: {info.license}")
        if await self.http.exists(javadoc_url):
            lines.append(f"- Javadoc: {javadoc_url}")
        elif not info.description:
            return ""
        return "\n".join(lines).strip() + "\n"

    async def get_examples(self, name: str, version: str) -> list[str]:
        return []

    async def list_versions(self, name: str) -> list[str]:
        try:
            metadata = await self.http.get_text(f"{self._artifact_dir(name)}/maven-metadata.xml")
        except NotFoundError:
            raise NotFoundError(f"Package not found: {name}") from None
        return sort_versions(parse_metadata_versions(metadata), PackageManager.MAVEN)

    async def install(
        self, name: str, version: str, target_dir: Path, artifact_path: Path
    ) -> Path:
        """Places the cached JAR into a Maven repository layout under `<target>/maven`."""
        group_id, artifact_id = split_coordinates(name)
        directory = target_dir / "maven" / Path(*group_id.split(".")) / artifact_id / version
        destination = await asyncio.to_thread(
            self._copy_into, artifact_path, directory, f"{artifact_id}-{version}.jar"
        )
        log.debug(f"Installed {name}@{version} to '{destination}'.")
        return destination
