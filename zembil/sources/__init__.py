"""
Package Sources Layer.

This package handles all communication with the upstream registries. Each
source implements the `PackageSource` interface for one package manager; the
`SourceRegistry` maps managers to sources.
"""

from .base import PackageSource, RegistrySource
from .http import HttpClient
from .maven import MavenSource
from .npm import NpmSource
from .pypi import PypiSource
from .registry import SourceRegistry, build_default_registry

__all__ = [
    "HttpClient",
    "MavenSource",
    "NpmSource",
    "PackageSource",
    "PypiSource",
    "RegistrySource",
    "SourceRegistry",
    "build_default_registry",
]
