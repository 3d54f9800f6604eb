"""
Volume snapshotter: the restore and create phases.

restore() runs at job start:
    locate snapshot -> provision volume -> attach -> format/mount -> record

create() runs at job end:
    read record -> unmount -> detach -> snapshot -> delete volume

The two phases run in separate processes; the bridging record in the state
store is the only thing they share.

Invariants:
    - Any failure after provisioning deletes the new volume
    - The bridging record is written only after a successful mount
    - Both phases derive identity tags from the same configuration

How to change safely:
    - Keep the tag derivation stable, it selects which snapshots restore
    - New steps in restore() must run inside the provisioned() scope
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from .attachment import AttachmentManager
from .cloud.base import CloudClient
from .config import ActionConfig
from .creator import CreateResult, SnapshotCreator
from .errors import StateStoreError
from .filesystem import FilesystemPreparer
from .host import HostCommands
from .locator import SnapshotLocator
from .provisioner import VolumeProvisioner
from .state import StateStore, VolumeRecord
from .tags import TagSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoreResult:
    """Outcome of the restore phase.

    Attributes:
        volume_id: Volume mounted for the job
        device_name: On-host device path
        new_volume: Volume was created blank
        snapshot_id: Snapshot restored from, if any
    """

    volume_id: str
    device_name: str
    new_volume: bool
    snapshot_id: str | None = None


class VolumeSnapshotter:
    """Restores a directory from the latest snapshot and snapshots it again.

    Attributes:
        config: Action configuration
        cloud: Connected cloud client
        host: Host command surface
        state_store: Bridging record store
        clock: Wall clock in epoch seconds

    Example:
        >>> async with Ec2CloudClient(region) as cloud:
        ...     snapshotter = VolumeSnapshotter(config, cloud)
        ...     result = await snapshotter.restore()
    """

    def __init__(
        self,
        config: ActionConfig,
        cloud: CloudClient,
        host: HostCommands | None = None,
        state_store: StateStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.cloud = cloud
        self.host = host or HostCommands(use_sudo=config.host.use_sudo)
        self.state_store = state_store or StateStore(config.host.state_dir)
        self.clock = clock

        self.tags = TagSet.from_config(config)
        self.locator = SnapshotLocator(cloud)
        self.provisioner = VolumeProvisioner(
            cloud, config.volume, config.host.availability_zone, clock=clock
        )
        self.attachments = AttachmentManager(cloud, self.host)
        self.preparer = FilesystemPreparer(self.host)
        self.creator = SnapshotCreator(
            cloud,
            self.preparer,
            self.state_store,
            instance_id=config.host.instance_id,
            wait_for_completion=config.wait_for_completion,
            clock=clock,
        )

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    async def restore(self, mount_point: str | None = None) -> RestoreResult:
        """Mount a volume for the job at `mount_point` (default: config.path).

        Raises:
            CloudError: If snapshot discovery fails
            ProvisioningError, AttachmentError, FilesystemError: On a fatal
                restore failure; the created volume has been deleted
        """
        mount_point = mount_point or self.config.path
        logger.info(
            f"Restoring {mount_point} for branch {self.tags.branch}",
            extra={"repository": self.tags.repository, "version": self.tags.version},
        )

        snapshot = await self.locator.locate(self.tags, self.config.default_branch)
        name = self.config.volume_name(self._now())

        async with self.provisioner.provisioned(self.tags, name, snapshot) as volume:
            attached = await self.attachments.attach(volume.volume_id, self.config.host.instance_id)
            await self.preparer.prepare(attached.device_name, mount_point, volume.new_volume)

        record = VolumeRecord(
            volume_id=volume.volume_id,
            device_name=attached.device_name,
            mount_point=mount_point,
            new_volume=volume.new_volume,
        )
        try:
            self.state_store.save(record)
        except StateStoreError as e:
            logger.error(f"Failed to save volume record, the post step will fail: {e}")

        logger.info(
            "Restore complete",
            extra={
                "volume_id": volume.volume_id,
                "device_name": attached.device_name,
                "new_volume": volume.new_volume,
                "snapshot_id": volume.snapshot_id,
            },
        )
        return RestoreResult(
            volume_id=volume.volume_id,
            device_name=attached.device_name,
            new_volume=volume.new_volume,
            snapshot_id=volume.snapshot_id,
        )

    async def create(self, mount_point: str | None = None) -> CreateResult:
        """Snapshot the volume mounted at `mount_point` (default: config.path).

        Raises:
            StateStoreError, FilesystemError, SnapshotCreationError: On a
                fatal failure
        """
        mount_point = mount_point or self.config.path
        name = self.config.snapshot_name(self._now())
        result = await self.creator.create(mount_point, self.tags, name)
        logger.info(
            "Snapshot created",
            extra={"snapshot_id": result.snapshot_id, "completed": result.waited},
        )
        return result
