"""Error taxonomy shared by the gateway, the registry and the image pipeline."""
from __future__ import annotations

from typing import List, Optional


class RegistryError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(RegistryError):
    """Record fields broke one or more rules; never reaches the remote store."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid record")


class SubscriptionError(RegistryError):
    """The change subscription could not be opened. Terminal for a registry."""


class WriteError(RegistryError):
    """A create/update/delete call against the remote store failed."""

    def __init__(self, operation: str, record_id: Optional[str], message: str):
        self.operation = operation
        self.record_id = record_id
        super().__init__(f"{operation} failed for {record_id or '<new>'}: {message}")


class ImageValidationError(RegistryError):
    """Image too large or of a disallowed media type."""


class ImageDecodeError(RegistryError):
    """The codec could not decode or re-encode the image."""


class ImageTransferError(RegistryError):
    """Blob storage put/delete failed. ``stage`` names the pipeline step."""

    def __init__(self, message: str, stage: Optional[str] = None):
        self.stage = stage
        super().__init__(message)


class InvalidStorageURL(RegistryError):
    """A URL handed to ``delete_image`` does not name a storage object."""
