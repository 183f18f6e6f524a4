"""
An explicit table of package sources, one per package manager.
"""

import logging

from zembil.exceptions import UnsupportedManagerError
from zembil.models.config import CacheConfig
from zembil.models.package import PackageManager

from .base import PackageSource
from .http import HttpClient
from .maven import MavenSource
from .npm import NpmSource
from .pypi import PypiSource

log = logging.getLogger(__name__)


class SourceRegistry:
    """Maps each supported package manager to the source that serves it."""

    def __init__(self, sources: list[PackageSource] | None = None):
        self._sources: dict[PackageManager, PackageSource] = {}
        for source in sources or []:
            self.register(source)

    def register(self, source: PackageSource, manager: PackageManager | None = None) -> None:
        """Binds a source to its manager, replacing any previous binding."""
        manager = PackageManager(manager or source.manager)
        if manager in self._sources:
            log.debug(f"Replacing the source registered for {manager.value}.")
        self._sources[manager] = source

    def get(self, manager: PackageManager | str) -> PackageSource:
        """
        Returns the source for a manager.

        Raises:
            UnsupportedManagerError: If no source is registered for it.
        """
        try:
            return self._sources[PackageManager(manager)]
        except (KeyError, ValueError):
            value = getattr(manager, "value", manager)
            raise UnsupportedManagerError(
                f"Unsupported package manager: {value}. "
                f"Supported: {', '.join(self.managers) or 'none'}"
            ) from None

    def __contains__(self, manager: object) -> bool:
        try:
            return PackageManager(manager) in self._sources
        except ValueError:
            return False

    @property
    def managers(self) -> list[str]:
        return [manager.value for manager in self._sources]

    async def close(self) -> None:
        """Closes every registered source."""
        for source in self._sources.values():
            await source.close()


def build_default_registry(config: CacheConfig) -> SourceRegistry:
    """Creates the npm, PyPI and Maven sources, each with its own HTTP session."""

    def http() -> HttpClient:
        return HttpClient(timeout=config.request_timeout, max_attempts=config.max_attempts)

    return SourceRegistry(
        [
            NpmSource(config.npm_registry, config.temp_dir, http()),
            PypiSource(config.pypi_index, config.temp_dir, http()),
            MavenSource(config.maven_repository, config.temp_dir, http()),
        ]
    )
