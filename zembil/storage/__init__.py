"""
Storage Layer.

This package handles all data persistence: the configuration file, the
package metadata index, the content-addressed file store and the durable
download queue.
"""

from .cache import CacheStore
from .config_manager import ConfigManager
from .metadata import MetadataStore
from .queue import DownloadQueue

__all__ = ["CacheStore", "ConfigManager", "DownloadQueue", "MetadataStore"]
