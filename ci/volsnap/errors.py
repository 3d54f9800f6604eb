"""
Error types for volsnap.

Every fatal failure of a phase is raised as a subclass of
VolumeSnapshotError, carrying the resource and the operation that failed
so the entry point can report it once.

Invariants:
    - All errors inherit from VolumeSnapshotError
    - Cloud SDK exceptions never escape the cloud client unwrapped
    - Non-fatal failures are logged where they happen and never raised

How to change safely:
    - Add new error types as subclasses, don't rename existing ones
    - Keep resource_id/operation populated, they end up in the CI log
"""

from __future__ import annotations


class VolumeSnapshotError(Exception):
    """Base exception for all volsnap errors.

    Attributes:
        message: Error message
        resource_id: Volume, snapshot, device or path the error is about
        operation: Operation that failed (e.g. "create-volume")
    """

    def __init__(
        self,
        message: str,
        resource_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id
        self.operation = operation

    def __str__(self) -> str:
        context = [part for part in (self.operation, self.resource_id) if part]
        if not context:
            return self.message
        return f"{self.message} [{' '.join(context)}]"


class ConfigError(VolumeSnapshotError):
    """Configuration is missing or invalid."""
    pass


class CloudError(VolumeSnapshotError):
    """A cloud API call failed.

    Attributes:
        code: Provider error code, if any (e.g. "InvalidVolume.NotFound")
    """

    def __init__(
        self,
        message: str,
        resource_id: str | None = None,
        operation: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, resource_id=resource_id, operation=operation)
        self.code = code


class WaitTimeoutError(VolumeSnapshotError):
    """A bounded wait exceeded its deadline."""
    pass


class ProvisioningError(VolumeSnapshotError):
    """Volume creation or wait-for-available failed."""
    pass


class AttachmentError(VolumeSnapshotError):
    """Attachment could not be confirmed or the device path resolved."""
    pass


class FilesystemError(VolumeSnapshotError):
    """Formatting, mounting, unmounting or the engine health probe failed."""
    pass


class StateStoreError(VolumeSnapshotError):
    """The bridging record is missing, unreadable or malformed."""
    pass


class SnapshotCreationError(VolumeSnapshotError):
    """Detach, snapshot initiation or snapshot completion failed."""
    pass

