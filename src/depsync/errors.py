"""Errors raised by the sync pipeline. Every one of them aborts the run."""

from typing import Optional


class SyncError(Exception):
    """Base class for fatal sync errors."""


class ConfigError(SyncError):
    """A required setting is missing or invalid."""


class FetchError(SyncError):
    """The manifest could not be retrieved."""


class ParseError(SyncError):
    """The manifest does not match the expected document shape."""


class KeyResolutionError(SyncError):
    """A dependency URI cannot be turned into a storage key."""


class MetadataQueryError(SyncError):
    """The metadata probe failed for a reason other than a missing object."""

    def __init__(self, key: str, cause: Exception) -> None:
        super().__init__(f"failed to get object meta for {key!r}: {cause}")
        self.key = key


class TransferError(SyncError):
    """Downloading or uploading a single artifact failed."""

    def __init__(self, uri: str, cause: Optional[Exception] = None) -> None:
        msg = f"failed to transfer {uri!r}"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)
        self.uri = uri
