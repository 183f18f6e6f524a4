"""
zembil: an offline package and documentation cache.

Queue packages while online, sync them into a local content-addressed cache,
and install or read them later without network access.
"""

__version__ = "1.0.0"
