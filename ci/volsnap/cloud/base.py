"""
Base protocol and types for the cloud block-storage API.

This module defines the CloudClient protocol consumed by the locator,
provisioner, attachment manager and snapshot creator, together with the
read-only descriptors it returns.

Invariants:
    - Descriptors are immutable snapshots of API state
    - Implementations wrap provider errors into CloudError
    - Wait helpers are built on waiter.poll_until, never on provider waiters

How to change safely:
    - Protocol changes require updating both implementations
    - Keep descriptor fields provider-neutral
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from ..errors import CloudError
from ..waiter import (
    DEFAULT_POLL_INTERVAL,
    SNAPSHOT_COMPLETED_TIMEOUT,
    VOLUME_ATTACHED_TIMEOUT,
    VOLUME_AVAILABLE_TIMEOUT,
    poll_until,
)

VOLUME_STATE_AVAILABLE = "available"
VOLUME_STATE_IN_USE = "in-use"
VOLUME_FAILED_STATES = frozenset({"deleting", "deleted", "error"})
ATTACHMENT_STATE_ATTACHED = "attached"
SNAPSHOT_STATE_COMPLETED = "completed"
SNAPSHOT_STATE_PENDING = "pending"
SNAPSHOT_FAILED_STATES = frozenset({"error", "recoverable"})


@dataclass(frozen=True)
class SnapshotDescriptor:
    """A snapshot as reported by the cloud API.

    Attributes:
        snapshot_id: Snapshot identifier
        start_time: Creation timestamp
        volume_size: Recorded size of the source volume (GiB)
        state: Completion status (pending, completed, error)
        tags: Tag key -> value
    """

    snapshot_id: str
    start_time: datetime
    volume_size: int | None
    state: str
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AttachmentDescriptor:
    """One attachment of a volume to an instance."""

    instance_id: str
    device: str
    state: str


@dataclass(frozen=True)
class VolumeDescriptor:
    """A volume as reported by the cloud API.

    Attributes:
        volume_id: Volume identifier
        state: creating, available, in-use, deleting, deleted, error
        size: Size in GiB
        attachments: Current attachments
        tags: Tag key -> value
    """

    volume_id: str
    state: str
    size: int | None = None
    attachments: tuple[AttachmentDescriptor, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def is_attached(self) -> bool:
        return any(a.state == ATTACHMENT_STATE_ATTACHED for a in self.attachments)


@dataclass(frozen=True)
class CreateVolumeRequest:
    """Parameters of a create-volume call.

    Attributes:
        availability_zone: AZ to create the volume in
        volume_type: EBS volume type
        iops: Provisioned IOPS
        throughput: Provisioned throughput
        tags: EC2 tag list applied at creation
        size: Size in GiB (blank volumes)
        snapshot_id: Source snapshot (restored volumes)
        initialization_rate: Initialization rate, only sent when set
    """

    availability_zone: str
    volume_type: str
    iops: int
    throughput: int
    tags: list[dict[str, str]]
    size: int | None = None
    snapshot_id: str | None = None
    initialization_rate: int | None = None


@runtime_checkable
class CloudClient(Protocol):
    """Protocol for the block-storage operations volsnap consumes.

    Every method raises CloudError on API failure.
    """

    @abstractmethod
    async def describe_snapshots(
        self,
        filters: list[dict[str, Any]] | None = None,
        snapshot_ids: list[str] | None = None,
        owner_ids: list[str] | None = None,
    ) -> list[SnapshotDescriptor]:
        ...

    @abstractmethod
    async def create_volume(self, request: CreateVolumeRequest) -> str:
        """Create a volume and return its id."""
        ...

    @abstractmethod
    async def describe_volume(self, volume_id: str) -> VolumeDescriptor:
        ...

    @abstractmethod
    async def attach_volume(self, volume_id: str, instance_id: str, device: str) -> str:
        """Request attachment and return the device the API reported."""
        ...

    @abstractmethod
    async def detach_volume(self, volume_id: str, instance_id: str) -> None:
        ...

    @abstractmethod
    async def create_tags(self, resource_ids: list[str], tags: list[dict[str, str]]) -> None:
        ...

    @abstractmethod
    async def create_snapshot(
        self, volume_id: str, tags: list[dict[str, str]], description: str
    ) -> str:
        """Initiate a snapshot and return its id."""
        ...

    @abstractmethod
    async def delete_volume(self, volume_id: str) -> None:
        ...

    @abstractmethod
    async def wait_volume_available(
        self, volume_id: str, timeout: float | None = None
    ) -> VolumeDescriptor:
        """Poll until the volume is available (created, or detached).

        Raises:
            WaitTimeoutError: If the deadline elapses
            CloudError: On API failure or a terminal volume state
        """
        ...

    @abstractmethod
    async def wait_volume_attached(
        self, volume_id: str, timeout: float | None = None
    ) -> VolumeDescriptor:
        ...

    @abstractmethod
    async def wait_snapshot_completed(
        self, snapshot_id: str, timeout: float | None = None
    ) -> SnapshotDescriptor:
        ...


class WaitersMixin:
    """Bounded waits shared by CloudClient implementations.

    Attributes:
        poll_interval: Seconds between polls
        volume_available_timeout: Deadline for volume available
        volume_attached_timeout: Deadline for volume attached
        snapshot_completed_timeout: Deadline for snapshot completed
    """

    poll_interval: float = DEFAULT_POLL_INTERVAL
    volume_available_timeout: float = VOLUME_AVAILABLE_TIMEOUT
    volume_attached_timeout: float = VOLUME_ATTACHED_TIMEOUT
    snapshot_completed_timeout: float = SNAPSHOT_COMPLETED_TIMEOUT

    async def wait_volume_available(
        self, volume_id: str, timeout: float | None = None
    ) -> VolumeDescriptor:
        async def fetch() -> VolumeDescriptor:
            volume = await self.describe_volume(volume_id)
            if volume.state in VOLUME_FAILED_STATES:
                raise CloudError(
                    f"Volume entered state '{volume.state}' while waiting for it to become available",
                    resource_id=volume_id,
                    operation="wait-volume-available",
                )
            return volume

        return await poll_until(
            fetch,
            lambda v: v.state == VOLUME_STATE_AVAILABLE,
            interval=self.poll_interval,
            timeout=self.volume_available_timeout if timeout is None else timeout,
            description="volume available",
            resource_id=volume_id,
        )

    async def wait_volume_attached(
        self, volume_id: str, timeout: float | None = None
    ) -> VolumeDescriptor:
        async def fetch() -> VolumeDescriptor:
            volume = await self.describe_volume(volume_id)
            if volume.state in VOLUME_FAILED_STATES:
                raise CloudError(
                    f"Volume entered state '{volume.state}' while waiting for attachment",
                    resource_id=volume_id,
                    operation="wait-volume-attached",
                )
            return volume

        return await poll_until(
            fetch,
            lambda v: v.is_attached,
            interval=self.poll_interval,
            timeout=self.volume_attached_timeout if timeout is None else timeout,
            description="volume attached",
            resource_id=volume_id,
        )

    async def wait_snapshot_completed(
        self, snapshot_id: str, timeout: float | None = None
    ) -> SnapshotDescriptor:
        async def fetch() -> SnapshotDescriptor:
            snapshots = await self.describe_snapshots(snapshot_ids=[snapshot_id])
            if not snapshots:
                raise CloudError(
                    "Snapshot not found",
                    resource_id=snapshot_id,
                    operation="wait-snapshot-completed",
                )
            snapshot = snapshots[0]
            if snapshot.state in SNAPSHOT_FAILED_STATES:
                raise CloudError(
                    f"Snapshot entered state '{snapshot.state}'",
                    resource_id=snapshot_id,
                    operation="wait-snapshot-completed",
                )
            return snapshot

        return await poll_until(
            fetch,
            lambda s: s.state == SNAPSHOT_STATE_COMPLETED,
            interval=self.poll_interval,
            timeout=self.snapshot_completed_timeout if timeout is None else timeout,
            description="snapshot completed",
            resource_id=snapshot_id,
        )
