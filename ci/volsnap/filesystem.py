"""
Filesystem preparation and teardown on the runner.

Restore side: format (new volumes only) and mount the attached device on
the target path. When the target is the Docker data directory the engine
is stopped around the mount and must pass a health probe afterwards.

Teardown side: reclaim build cache, stop the engine and unmount, leaving
the volume quiescent for detach and snapshot.

Invariants:
    - A volume restored from a snapshot is never reformatted
    - A failed engine probe never leaves the volume mounted if umount works
    - Teardown treats an already unmounted target as success
"""

from __future__ import annotations

import logging
import posixpath

from .errors import FilesystemError
from .host import HostCommands

logger = logging.getLogger(__name__)

ENGINE_DATA_DIR = "/var/lib/docker"


def is_engine_path(path: str) -> bool:
    """Whether `path` is the engine data directory or lies below it."""
    normalized = posixpath.normpath(path)
    return normalized == ENGINE_DATA_DIR or normalized.startswith(ENGINE_DATA_DIR + "/")


class FilesystemPreparer:
    """Mounts and unmounts the managed volume.

    Attributes:
        host: Host command surface
    """

    def __init__(self, host: HostCommands) -> None:
        self.host = host

    async def prepare(self, device: str, mount_point: str, new_volume: bool) -> None:
        """Make `device` available at `mount_point`.

        Raises:
            FilesystemError: If formatting, mounting, restarting the engine
                or the engine health probe fails
        """
        engine = is_engine_path(mount_point)
        if engine:
            logger.info("Stopping docker before mounting its data directory")
            await self.host.stop_service()

        # the path may still be mounted from an earlier job on this host
        await self.host.unmount(mount_point)

        if new_volume:
            logger.info(f"Formatting new volume {device} as ext4")
            result = await self.host.format_ext4(device)
            if not result.ok:
                raise FilesystemError(
                    f"Failed to format volume: {result.output.strip()}",
                    resource_id=device,
                    operation="mkfs",
                )
        else:
            logger.info(f"Volume {device} restored from snapshot, skipping format")

        result = await self.host.make_dir(mount_point)
        if not result.ok:
            raise FilesystemError(
                f"Failed to create mount point: {result.output.strip()}",
                resource_id=mount_point,
                operation="mkdir",
            )

        result = await self.host.mount(device, mount_point)
        if not result.ok:
            raise FilesystemError(
                f"Failed to mount {device}: {result.output.strip()}",
                resource_id=mount_point,
                operation="mount",
            )
        logger.info(f"Mounted {device} at {mount_point}")

        if engine:
            await self._start_engine(mount_point)

    async def _start_engine(self, mount_point: str) -> None:
        result = await self.host.start_service()
        if not result.ok:
            raise FilesystemError(
                f"Failed to start docker: {result.output.strip()}",
                resource_id=mount_point,
                operation="start-engine",
            )

        probe = await self.host.engine_info()
        if probe.ok:
            logger.info("Docker is healthy on the restored volume")
            return

        logger.error("Docker health check failed, unmounting the volume")
        umount = await self.host.unmount(mount_point)
        if not umount.ok:
            logger.error(f"Failed to unmount {mount_point} after docker health check failure")
        raise FilesystemError(
            f"Docker failed its health check: {probe.output.strip()}",
            resource_id=mount_point,
            operation="engine-probe",
        )

    async def teardown(self, mount_point: str) -> None:
        """Quiesce users of `mount_point` and unmount it.

        Raises:
            FilesystemError: If the target is still mounted after umount fails
        """
        if is_engine_path(mount_point):
            logger.info("Docker build cache usage before cleanup")
            await self.host.builder_disk_usage()
            logger.info("Pruning docker build cache")
            await self.host.builder_prune()
            logger.info("Docker build cache usage after cleanup")
            await self.host.builder_disk_usage()
            await self.host.stop_service()

        result = await self.host.unmount(mount_point)
        if result.ok:
            logger.info(f"Unmounted {mount_point}")
            return

        probe = await self.host.disk_free(mount_point)
        if probe.ok and _df_reports_mount(probe.output, mount_point):
            raise FilesystemError(
                f"Failed to unmount: {result.output.strip()}",
                resource_id=mount_point,
                operation="umount",
            )
        logger.warning(f"umount of {mount_point} failed but it is not mounted, continuing")


def _df_reports_mount(output: str, mount_point: str) -> bool:
    """Whether df output lists `mount_point` in its "Mounted on" column."""
    target = posixpath.normpath(mount_point)
    for line in output.splitlines()[1:]:
        # "Mounted on" is the last column and may itself contain spaces
        if line.rstrip().endswith(" " + target):
            return True
    return False
