"""
Core application engine for syncing and serving the offline cache.

The `Zembil` facade wires the storage layer and the package sources together;
the `SyncOrchestrator` turns each queued download into a cached package.
"""
