from __future__ import annotations


class SyncError(Exception):
    """Base for everything the progress synchronizer can trip over."""


class StorageError(SyncError):
    pass


class LocalStorageError(StorageError):
    """Local key-value storage is unavailable (disabled, quota, I/O)."""


class RemoteStoreError(StorageError):
    """Progress service unreachable or answered with a server error."""


class RemoteAuthError(RemoteStoreError):
    """Token missing, expired or rejected (HTTP 401)."""


class MalformedRecordError(SyncError, ValueError):
    """A stored or served progress record couldn't be parsed."""
