"""
Volume provisioning.

Creates the job volume, either from the located snapshot or blank, and
waits until it is available. Provisioning is exposed as a scope: if
anything inside the scope fails or the task is cancelled, the volume is
deleted again.

Invariants:
    - A snapshot is reused only if its recorded size >= the target size
    - Every volume carries the identity tags, a Name and a TTL 20 minutes out
    - A volume created by a failed restore is deleted (best effort)
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from .cloud.base import CloudClient, CreateVolumeRequest, SnapshotDescriptor
from .config import VolumeConfig
from .errors import CloudError, ProvisioningError, WaitTimeoutError
from .tags import TagSet

logger = logging.getLogger(__name__)

VOLUME_TTL_SECONDS = 20 * 60


def should_restore_from(snapshot: SnapshotDescriptor | None, target_size: int) -> bool:
    """Whether a volume should be created from `snapshot` rather than blank."""
    return (
        snapshot is not None
        and snapshot.volume_size is not None
        and snapshot.volume_size >= target_size
    )


@dataclass(frozen=True)
class ProvisionedVolume:
    """A volume created for this job.

    Attributes:
        volume_id: Volume identifier
        new_volume: Created blank; needs a filesystem before use
        snapshot_id: Snapshot the volume was created from, if any
    """

    volume_id: str
    new_volume: bool
    snapshot_id: str | None = None


class VolumeProvisioner:
    """Creates job volumes.

    Attributes:
        cloud: Cloud client
        volume: Desired volume shape
        availability_zone: AZ of the runner
        clock: Wall clock in epoch seconds
    """

    def __init__(
        self,
        cloud: CloudClient,
        volume: VolumeConfig,
        availability_zone: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cloud = cloud
        self.volume = volume
        self.availability_zone = availability_zone
        self.clock = clock

    def build_request(
        self, tags: TagSet, name: str, snapshot: SnapshotDescriptor | None
    ) -> CreateVolumeRequest:
        ttl = int(self.clock()) + VOLUME_TTL_SECONDS
        common = dict(
            availability_zone=self.availability_zone,
            volume_type=self.volume.volume_type,
            iops=self.volume.iops,
            throughput=self.volume.throughput,
            tags=tags.to_aws(name=name, ttl=ttl),
        )
        if should_restore_from(snapshot, self.volume.size_gib):
            return CreateVolumeRequest(
                snapshot_id=snapshot.snapshot_id,
                initialization_rate=self.volume.initialization_rate or None,
                **common,
            )
        return CreateVolumeRequest(size=self.volume.size_gib, **common)

    async def create(
        self, tags: TagSet, name: str, snapshot: SnapshotDescriptor | None
    ) -> ProvisionedVolume:
        """Issue create-volume. Does not wait.

        Raises:
            ProvisioningError: If the API call fails
        """
        if snapshot is not None and not should_restore_from(snapshot, self.volume.size_gib):
            logger.info(
                f"Snapshot {snapshot.snapshot_id} is {snapshot.volume_size} GiB, smaller than "
                f"the requested {self.volume.size_gib} GiB, creating a blank volume instead"
            )

        request = self.build_request(tags, name, snapshot)
        try:
            volume_id = await self.cloud.create_volume(request)
        except CloudError as e:
            source = f"from snapshot {request.snapshot_id}" if request.snapshot_id else "blank"
            raise ProvisioningError(
                f"Failed to create volume ({source}): {e}",
                resource_id=request.snapshot_id,
                operation="create-volume",
            ) from e

        provisioned = ProvisionedVolume(
            volume_id=volume_id,
            new_volume=request.snapshot_id is None,
            snapshot_id=request.snapshot_id,
        )
        logger.info(
            "Created volume",
            extra={
                "volume_id": volume_id,
                "snapshot_id": request.snapshot_id,
                "new_volume": provisioned.new_volume,
                "size": request.size,
            },
        )
        return provisioned

    async def wait_available(self, volume_id: str) -> None:
        """Block until the volume is available.

        Raises:
            ProvisioningError: On timeout or API failure
        """
        logger.info(f"Waiting for volume {volume_id} to become available...")
        try:
            await self.cloud.wait_volume_available(volume_id)
        except (CloudError, WaitTimeoutError) as e:
            raise ProvisioningError(
                f"Volume did not become available in time: {e}",
                resource_id=volume_id,
                operation="wait-volume-available",
            ) from e
        logger.info(f"Volume {volume_id} is available")

    async def release(self, volume_id: str) -> None:
        """Delete a volume created by a failed restore. Never raises."""
        logger.info(f"Deleting volume {volume_id} after failed restore")
        try:
            await self.cloud.delete_volume(volume_id)
        except CloudError as e:
            logger.error(f"Error deleting volume {volume_id}: {e}")
        else:
            logger.info(f"Volume {volume_id} deleted")

    @asynccontextmanager
    async def provisioned(
        self, tags: TagSet, name: str, snapshot: SnapshotDescriptor | None
    ) -> AsyncIterator[ProvisionedVolume]:
        """Create an available volume, deleting it if the scope fails.

        Example:
            >>> async with provisioner.provisioned(tags, name, snapshot) as volume:
            ...     await attach(volume.volume_id)
        """
        volume = await self.create(tags, name, snapshot)
        try:
            await self.wait_available(volume.volume_id)
            yield volume
        except BaseException as e:
            logger.error(f"Restore failed with volume {volume.volume_id} provisioned: {e!r}")
            await self.release(volume.volume_id)
            raise
