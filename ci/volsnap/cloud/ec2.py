"""
EC2 implementation of the CloudClient protocol.

Uses aiobotocore for async calls to the EC2 API. Credentials come from the
standard AWS credential chain (on runners: the instance profile).

Invariants:
    - Every botocore error is wrapped into CloudError with the resource id
    - Snapshot discovery is scoped to the caller's own snapshots
    - Waits poll describe calls, they never use botocore waiters

How to change safely:
    - Test against the in-memory client first, then a real account
    - Keep request shapes in sync with CreateVolumeRequest
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CloudError
from .base import (
    AttachmentDescriptor,
    CreateVolumeRequest,
    SnapshotDescriptor,
    VolumeDescriptor,
    WaitersMixin,
)
from ..tags import tags_to_dict
from ..waiter import DEFAULT_POLL_INTERVAL

logger = logging.getLogger(__name__)


def _snapshot_from_api(data: dict[str, Any]) -> SnapshotDescriptor:
    return SnapshotDescriptor(
        snapshot_id=data["SnapshotId"],
        start_time=data["StartTime"],
        volume_size=data.get("VolumeSize"),
        state=data.get("State", ""),
        tags=tags_to_dict(data.get("Tags")),
    )


def _volume_from_api(data: dict[str, Any]) -> VolumeDescriptor:
    attachments = tuple(
        AttachmentDescriptor(
            instance_id=a.get("InstanceId", ""),
            device=a.get("Device", ""),
            state=a.get("State", ""),
        )
        for a in data.get("Attachments") or []
    )
    return VolumeDescriptor(
        volume_id=data["VolumeId"],
        state=data.get("State", ""),
        size=data.get("Size"),
        attachments=attachments,
        tags=tags_to_dict(data.get("Tags")),
    )


class Ec2CloudClient(WaitersMixin):
    """EC2 block-storage client.

    Attributes:
        region: AWS region
        endpoint_url: Custom endpoint (LocalStack)
        poll_interval: Seconds between polls in bounded waits

    Example:
        >>> async with Ec2CloudClient(region="us-east-1") as ec2:
        ...     volume_id = await ec2.create_volume(request)
        ...     await ec2.wait_volume_available(volume_id)
    """

    def __init__(
        self,
        region: str,
        endpoint_url: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self.poll_interval = poll_interval
        self._session = None
        self._client_ctx = None
        self._client = None

    async def connect(self) -> None:
        """Create the EC2 client."""
        if self._client:
            return

        client_config: dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            client_config["endpoint_url"] = self.endpoint_url

        self._session = get_session()
        self._client_ctx = self._session.create_client("ec2", **client_config)
        self._client = await self._client_ctx.__aenter__()
        logger.info(
            "EC2 client created",
            extra={"region": self.region, "endpoint": self.endpoint_url or "AWS"},
        )

    async def close(self) -> None:
        """Close the EC2 client."""
        if self._client:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing EC2 client: {e}")
        self._client = None
        self._client_ctx = None
        self._session = None

    async def __aenter__(self) -> Ec2CloudClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _call(self, operation: str, resource_id: str | None, **kwargs: Any) -> dict[str, Any]:
        """Invoke an EC2 API method (operation name in CLI form) and wrap errors."""
        if not self._client:
            raise CloudError("EC2 client is not connected", resource_id=resource_id, operation=operation)
        method = getattr(self._client, operation.replace("-", "_"))
        try:
            return await method(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise CloudError(
                f"EC2 {operation} failed: {e}",
                resource_id=resource_id,
                operation=operation,
                code=code,
            ) from e
        except BotoCoreError as e:
            raise CloudError(
                f"EC2 {operation} failed: {e}",
                resource_id=resource_id,
                operation=operation,
            ) from e

    async def describe_snapshots(
        self,
        filters: list[dict[str, Any]] | None = None,
        snapshot_ids: list[str] | None = None,
        owner_ids: list[str] | None = None,
    ) -> list[SnapshotDescriptor]:
        kwargs: dict[str, Any] = {}
        if filters:
            kwargs["Filters"] = filters
        if snapshot_ids:
            kwargs["SnapshotIds"] = snapshot_ids
        if owner_ids:
            kwargs["OwnerIds"] = owner_ids

        resource_id = ",".join(snapshot_ids) if snapshot_ids else None
        snapshots: list[SnapshotDescriptor] = []
        while True:
            response = await self._call("describe-snapshots", resource_id, **kwargs)
            snapshots.extend(_snapshot_from_api(s) for s in response.get("Snapshots", []))
            next_token = response.get("NextToken")
            if not next_token:
                return snapshots
            kwargs["NextToken"] = next_token

    async def create_volume(self, request: CreateVolumeRequest) -> str:
        kwargs: dict[str, Any] = {
            "AvailabilityZone": request.availability_zone,
            "VolumeType": request.volume_type,
            "Iops": request.iops,
            "Throughput": request.throughput,
            "TagSpecifications": [{"ResourceType": "volume", "Tags": request.tags}],
        }
        if request.snapshot_id:
            kwargs["SnapshotId"] = request.snapshot_id
        if request.size is not None:
            kwargs["Size"] = request.size
        if request.initialization_rate:
            kwargs["VolumeInitializationRate"] = request.initialization_rate

        response = await self._call("create-volume", request.snapshot_id, **kwargs)
        return response["VolumeId"]

    async def describe_volume(self, volume_id: str) -> VolumeDescriptor:
        response = await self._call("describe-volumes", volume_id, VolumeIds=[volume_id])
        volumes = response.get("Volumes", [])
        if not volumes:
            raise CloudError("Volume not found", resource_id=volume_id, operation="describe-volumes")
        return _volume_from_api(volumes[0])

    async def attach_volume(self, volume_id: str, instance_id: str, device: str) -> str:
        response = await self._call(
            "attach-volume", volume_id, Device=device, InstanceId=instance_id, VolumeId=volume_id
        )
        return response.get("Device") or device

    async def detach_volume(self, volume_id: str, instance_id: str) -> None:
        await self._call("detach-volume", volume_id, VolumeId=volume_id, InstanceId=instance_id)

    async def create_tags(self, resource_ids: list[str], tags: list[dict[str, str]]) -> None:
        await self._call("create-tags", ",".join(resource_ids), Resources=resource_ids, Tags=tags)

    async def create_snapshot(
        self, volume_id: str, tags: list[dict[str, str]], description: str
    ) -> str:
        response = await self._call(
            "create-snapshot",
            volume_id,
            VolumeId=volume_id,
            TagSpecifications=[{"ResourceType": "snapshot", "Tags": tags}],
            Description=description,
        )
        return response["SnapshotId"]

    async def delete_volume(self, volume_id: str) -> None:
        await self._call("delete-volume", volume_id, VolumeId=volume_id)
