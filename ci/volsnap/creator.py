"""
Snapshot creation at the end of a job.

Reads the bridging record written by the restore phase, quiesces and
unmounts the target, then detaches the volume, snapshots it and deletes
it. The snapshot becomes eligible for restores once it completes.

Invariants:
    - The volume is detached and available before create-snapshot
    - Snapshots of new volumes are always waited for
    - The source volume is deleted once the snapshot is initiated (and
      completed, when waited for); failing to delete it is not fatal
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from .cloud.base import CloudClient
from .errors import CloudError, SnapshotCreationError, WaitTimeoutError
from .filesystem import FilesystemPreparer
from .state import StateStore
from .tags import TagSet, ttl_tag

logger = logging.getLogger(__name__)

TEARDOWN_TTL_SECONDS = 10 * 60


@dataclass(frozen=True)
class CreateResult:
    """Outcome of the create phase.

    Attributes:
        snapshot_id: Snapshot created from the job volume
        waited: Whether completion was waited for (so the snapshot is
            already eligible)
    """

    snapshot_id: str
    waited: bool


def snapshot_description(branch: str, taken_at: datetime) -> str:
    return f"Snapshot for branch {branch} taken at {taken_at.isoformat(timespec='seconds')}"


class SnapshotCreator:
    """Turns the job volume into a snapshot.

    Attributes:
        cloud: Cloud client
        preparer: Filesystem preparer, for the teardown side
        state_store: Bridging record store
        instance_id: Instance the volume is attached to
        wait_for_completion: Wait for snapshots of restored volumes too
        clock: Wall clock in epoch seconds
    """

    def __init__(
        self,
        cloud: CloudClient,
        preparer: FilesystemPreparer,
        state_store: StateStore,
        instance_id: str,
        wait_for_completion: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cloud = cloud
        self.preparer = preparer
        self.state_store = state_store
        self.instance_id = instance_id
        self.wait_for_completion = wait_for_completion
        self.clock = clock

    async def create(self, mount_point: str, tags: TagSet, name: str) -> CreateResult:
        """Snapshot the volume currently mounted at `mount_point`.

        Raises:
            StateStoreError: If no valid record exists for the mount point
            FilesystemError: If the target cannot be unmounted
            SnapshotCreationError: If detach, snapshot initiation or a
                required completion wait fails
        """
        record = self.state_store.load(mount_point)
        volume_id = record.volume_id
        logger.info(
            "Creating snapshot",
            extra={
                "volume_id": volume_id,
                "device_name": record.device_name,
                "mount_point": mount_point,
                "new_volume": record.new_volume,
            },
        )

        await self.preparer.teardown(mount_point)
        await self._rearm_ttl(volume_id)
        await self._detach(volume_id)

        taken_at = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        try:
            snapshot_id = await self.cloud.create_snapshot(
                volume_id,
                tags=tags.to_aws(name=name),
                description=snapshot_description(tags.branch, taken_at),
            )
        except CloudError as e:
            raise SnapshotCreationError(
                f"Failed to create snapshot: {e}", resource_id=volume_id, operation="create-snapshot"
            ) from e
        logger.info(f"Snapshot {snapshot_id} creation initiated from volume {volume_id}")

        waited = record.new_volume or self.wait_for_completion
        if waited:
            reason = "new volume" if record.new_volume else "wait-for-completion is set"
            logger.info(f"Waiting for snapshot {snapshot_id} to complete ({reason}), this may take a few minutes")
            try:
                await self.cloud.wait_snapshot_completed(snapshot_id)
            except (CloudError, WaitTimeoutError) as e:
                raise SnapshotCreationError(
                    f"Snapshot did not complete in time: {e}",
                    resource_id=snapshot_id,
                    operation="wait-snapshot-completed",
                ) from e
            logger.info(f"Snapshot {snapshot_id} completed")
        else:
            logger.info(f"Not waiting for snapshot {snapshot_id} to complete")

        await self._delete(volume_id, snapshot_id)
        return CreateResult(snapshot_id=snapshot_id, waited=waited)

    async def _rearm_ttl(self, volume_id: str) -> None:
        expires_at = int(self.clock()) + TEARDOWN_TTL_SECONDS
        try:
            await self.cloud.create_tags([volume_id], [ttl_tag(expires_at)])
        except CloudError as e:
            logger.warning(f"Failed to update TTL tag on volume {volume_id}: {e}")

    async def _detach(self, volume_id: str) -> None:
        logger.info(f"Detaching volume {volume_id}")
        try:
            await self.cloud.detach_volume(volume_id, self.instance_id)
        except CloudError as e:
            raise SnapshotCreationError(
                f"Failed to detach volume: {e}", resource_id=volume_id, operation="detach-volume"
            ) from e

        logger.info(f"Waiting for volume {volume_id} to become available (detached)...")
        try:
            await self.cloud.wait_volume_available(volume_id)
        except (CloudError, WaitTimeoutError) as e:
            raise SnapshotCreationError(
                f"Volume did not detach in time: {e}",
                resource_id=volume_id,
                operation="wait-volume-available",
            ) from e
        logger.info(f"Volume {volume_id} is detached")

    async def _delete(self, volume_id: str, snapshot_id: str) -> None:
        logger.info(f"Deleting volume {volume_id}, its data is now in snapshot {snapshot_id}")
        try:
            await self.cloud.delete_volume(volume_id)
        except CloudError as e:
            logger.warning(f"Failed to delete volume {volume_id}, manual cleanup may be required: {e}")
        else:
            logger.info(f"Volume {volume_id} deleted")
