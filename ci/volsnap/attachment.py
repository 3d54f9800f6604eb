"""
Volume attachment and device-path resolution.

The device name passed to attach-volume is only advisory: on Nitro
instances the kernel exposes EBS volumes as NVMe devices
(/dev/nvme1n1...) whatever was requested. The real path is read back from
the host's block device list and the API value is kept as a fallback.

Invariants:
    - Attachment is confirmed before any device is resolved
    - The host's view wins over the API's when both are available
    - An unusable device path is fatal, a failed enumeration is not
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .cloud.base import ATTACHMENT_STATE_ATTACHED, CloudClient
from .errors import AttachmentError, CloudError, WaitTimeoutError
from .host import HostCommands

logger = logging.getLogger(__name__)

ADVISORY_DEVICE = "/dev/sdf"
EBS_MODEL = "Amazon Elastic Block Store"


@dataclass(frozen=True)
class BlockDevice:
    """One line of `lsblk -d -n -o PATH,MODEL`."""

    path: str
    model: str


def parse_lsblk(output: str) -> list[BlockDevice]:
    """Parse `lsblk -d -n -o PATH,MODEL` output.

    The model column may contain spaces and may be empty.
    """
    devices = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        path, _, model = line.partition(" ")
        devices.append(BlockDevice(path=path, model=model.strip()))
    return devices


def resolve_device_path(
    devices: list[BlockDevice],
    expected_model: str = EBS_MODEL,
    fallback: str | None = None,
) -> str | None:
    """Choose the on-host path of the attached volume.

    The last device whose model matches wins: the root volume is also an
    EBS device and lsblk lists it first. Without a match, `fallback` (the
    API-reported device) is returned.
    """
    chosen = fallback
    for device in devices:
        if device.model == expected_model:
            chosen = device.path
    return chosen


@dataclass(frozen=True)
class AttachedVolume:
    volume_id: str
    instance_id: str
    device_name: str
    api_device: str


class AttachmentManager:
    """Attaches volumes to the runner and finds their device path.

    Attributes:
        cloud: Cloud client
        host: Host command surface, for block device enumeration
        device: Advisory device name passed to attach-volume
    """

    def __init__(self, cloud: CloudClient, host: HostCommands, device: str = ADVISORY_DEVICE) -> None:
        self.cloud = cloud
        self.host = host
        self.device = device

    async def attach(self, volume_id: str, instance_id: str) -> AttachedVolume:
        """Attach a volume and resolve its device path.

        Raises:
            AttachmentError: If the attachment is not confirmed in time or
                no device path can be determined
        """
        logger.info(f"Attaching volume {volume_id} to instance {instance_id}")
        try:
            await self.cloud.attach_volume(volume_id, instance_id, self.device)
        except CloudError as e:
            raise AttachmentError(
                f"Failed to attach volume: {e}", resource_id=volume_id, operation="attach-volume"
            ) from e

        logger.info(f"Waiting for volume {volume_id} to be attached...")
        try:
            await self.cloud.wait_volume_attached(volume_id)
            volume = await self.cloud.describe_volume(volume_id)
        except (CloudError, WaitTimeoutError) as e:
            raise AttachmentError(
                f"Volume attachment was not confirmed: {e}",
                resource_id=volume_id,
                operation="wait-volume-attached",
            ) from e

        api_device = next(
            (
                a.device
                for a in volume.attachments
                if a.instance_id == instance_id and a.state == ATTACHMENT_STATE_ATTACHED
            ),
            None,
        )
        if api_device is None:
            raise AttachmentError(
                f"Volume is not attached to instance {instance_id}",
                resource_id=volume_id,
                operation="describe-volumes",
            )
        logger.info(f"Volume {volume_id} attached, API reports device {api_device}")

        device_name = await self.resolve(api_device)
        if not device_name:
            raise AttachmentError(
                "Could not determine the device path of the attached volume",
                resource_id=volume_id,
                operation="resolve-device",
            )
        logger.info(
            "Resolved device path",
            extra={"volume_id": volume_id, "device_name": device_name, "api_device": api_device},
        )
        return AttachedVolume(
            volume_id=volume_id,
            instance_id=instance_id,
            device_name=device_name,
            api_device=api_device,
        )

    async def resolve(self, api_device: str) -> str | None:
        result = await self.host.list_block_devices()
        if not result.ok:
            logger.warning(
                f"Failed to list block devices, using API device name {api_device}"
            )
            return api_device
        return resolve_device_path(parse_lsblk(result.output), EBS_MODEL, fallback=api_device)
