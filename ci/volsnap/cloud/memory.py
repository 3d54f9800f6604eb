"""
In-memory CloudClient implementation for testing.

This module provides a small simulated EC2 block-storage API for:
- Unit tests of the locator, provisioner, attachment and creator
- Integration tests of both phases end to end

Invariants:
    - State transitions happen after a configurable number of polls
    - Filters follow EC2 semantics for `status` and `tag:<key>`
    - Every call is recorded in `calls` in order

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the CloudClient protocol
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..errors import CloudError
from .base import (
    ATTACHMENT_STATE_ATTACHED,
    SNAPSHOT_STATE_COMPLETED,
    SNAPSHOT_STATE_PENDING,
    VOLUME_STATE_AVAILABLE,
    VOLUME_STATE_IN_USE,
    AttachmentDescriptor,
    CreateVolumeRequest,
    SnapshotDescriptor,
    VolumeDescriptor,
    WaitersMixin,
)
from ..tags import tags_to_dict

logger = logging.getLogger(__name__)


@dataclass
class InMemoryVolume:
    """Mutable volume state."""

    volume_id: str
    size: int
    state: str
    tags: dict[str, str]
    snapshot_id: str | None = None
    instance_id: str | None = None
    device: str | None = None
    attachment_state: str | None = None
    polls_until_ready: int = 0


@dataclass
class InMemorySnapshot:
    """Mutable snapshot state."""

    snapshot_id: str
    volume_size: int
    start_time: datetime
    state: str
    tags: dict[str, str]
    description: str = ""
    volume_id: str | None = None
    polls_until_ready: int = 0


@dataclass
class RecordedCall:
    operation: str
    args: dict[str, Any] = field(default_factory=dict)


class InMemoryCloudClient(WaitersMixin):
    """In-memory implementation of CloudClient.

    Attributes:
        volumes: volume_id -> InMemoryVolume
        snapshots: snapshot_id -> InMemorySnapshot
        calls: Every API call, in order
        transition_polls: Describe calls before a volume/snapshot settles
        attach_hangs: Attachments never reach "attached"
        device_map: Requested device -> device reported by describe-volumes
        failures: operation -> exception raised on the next call

    Example:
        >>> cloud = InMemoryCloudClient()
        >>> cloud.add_snapshot("snap-1", volume_size=40, tags={...})
        >>> volume_id = await cloud.create_volume(request)
    """

    def __init__(self, transition_polls: int = 1, poll_interval: float = 0.0) -> None:
        self.volumes: dict[str, InMemoryVolume] = {}
        self.snapshots: dict[str, InMemorySnapshot] = {}
        self.calls: list[RecordedCall] = []
        self.transition_polls = transition_polls
        self.poll_interval = poll_interval
        self.attach_hangs = False
        self.device_map: dict[str, str] = {}
        self.failures: dict[str, Exception] = {}
        self._ids = itertools.count(1)

    # -- test helpers --------------------------------------------------------

    def add_snapshot(
        self,
        snapshot_id: str,
        volume_size: int,
        tags: dict[str, str],
        start_time: datetime | None = None,
        state: str = SNAPSHOT_STATE_COMPLETED,
    ) -> InMemorySnapshot:
        snapshot = InMemorySnapshot(
            snapshot_id=snapshot_id,
            volume_size=volume_size,
            start_time=start_time or datetime.now(timezone.utc),
            state=state,
            tags=dict(tags),
        )
        self.snapshots[snapshot_id] = snapshot
        return snapshot

    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        """Make the next call of `operation` raise."""
        self.failures[operation] = error or CloudError(
            f"Simulated {operation} failure", operation=operation
        )

    def operations(self) -> list[str]:
        return [call.operation for call in self.calls]

    # -- internals -----------------------------------------------------------

    def _record(self, operation: str, **args: Any) -> None:
        self.calls.append(RecordedCall(operation, args))
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids):08x}"

    def _get_volume(self, volume_id: str, operation: str) -> InMemoryVolume:
        volume = self.volumes.get(volume_id)
        if volume is None or volume.state == "deleted":
            raise CloudError(
                "Volume not found", resource_id=volume_id, operation=operation,
                code="InvalidVolume.NotFound",
            )
        return volume

    @staticmethod
    def _matches(snapshot: InMemorySnapshot, filters: list[dict[str, Any]]) -> bool:
        for f in filters:
            name, values = f["Name"], f["Values"]
            if name == "status":
                if snapshot.state not in values:
                    return False
            elif name.startswith("tag:"):
                if snapshot.tags.get(name[len("tag:"):]) not in values:
                    return False
        return True

    # -- CloudClient ---------------------------------------------------------

    async def describe_snapshots(
        self,
        filters: list[dict[str, Any]] | None = None,
        snapshot_ids: list[str] | None = None,
        owner_ids: list[str] | None = None,
    ) -> list[SnapshotDescriptor]:
        self._record("describe-snapshots", filters=filters, snapshot_ids=snapshot_ids, owner_ids=owner_ids)
        if snapshot_ids:
            candidates = [self.snapshots[s] for s in snapshot_ids if s in self.snapshots]
            for snapshot in candidates:
                if snapshot.state == SNAPSHOT_STATE_PENDING:
                    if snapshot.polls_until_ready <= 0:
                        snapshot.state = SNAPSHOT_STATE_COMPLETED
                    snapshot.polls_until_ready -= 1
        else:
            candidates = list(self.snapshots.values())

        return [
            SnapshotDescriptor(
                snapshot_id=s.snapshot_id,
                start_time=s.start_time,
                volume_size=s.volume_size,
                state=s.state,
                tags=dict(s.tags),
            )
            for s in candidates
            if self._matches(s, filters or [])
        ]

    async def create_volume(self, request: CreateVolumeRequest) -> str:
        self._record("create-volume", request=request)
        if request.snapshot_id:
            snapshot = self.snapshots.get(request.snapshot_id)
            if snapshot is None:
                raise CloudError(
                    "Snapshot not found", resource_id=request.snapshot_id,
                    operation="create-volume", code="InvalidSnapshot.NotFound",
                )
            size = max(request.size or 0, snapshot.volume_size)
        else:
            size = request.size or 1

        volume_id = self._next_id("vol")
        self.volumes[volume_id] = InMemoryVolume(
            volume_id=volume_id,
            size=size,
            state="creating",
            tags=tags_to_dict(request.tags),
            snapshot_id=request.snapshot_id,
            polls_until_ready=self.transition_polls,
        )
        return volume_id

    async def describe_volume(self, volume_id: str) -> VolumeDescriptor:
        self._record("describe-volumes", volume_id=volume_id)
        volume = self._get_volume(volume_id, "describe-volumes")

        if volume.polls_until_ready > 0:
            volume.polls_until_ready -= 1
        elif volume.state == "creating":
            volume.state = VOLUME_STATE_AVAILABLE
        elif volume.attachment_state == "attaching" and not self.attach_hangs:
            volume.attachment_state = ATTACHMENT_STATE_ATTACHED
        elif volume.attachment_state == "detaching":
            volume.attachment_state = None
            volume.instance_id = None
            volume.device = None
            volume.state = VOLUME_STATE_AVAILABLE

        attachments: tuple[AttachmentDescriptor, ...] = ()
        if volume.attachment_state:
            attachments = (
                AttachmentDescriptor(
                    instance_id=volume.instance_id or "",
                    device=volume.device or "",
                    state=volume.attachment_state,
                ),
            )
        return VolumeDescriptor(
            volume_id=volume.volume_id,
            state=volume.state,
            size=volume.size,
            attachments=attachments,
            tags=dict(volume.tags),
        )

    async def attach_volume(self, volume_id: str, instance_id: str, device: str) -> str:
        self._record("attach-volume", volume_id=volume_id, instance_id=instance_id, device=device)
        volume = self._get_volume(volume_id, "attach-volume")
        if volume.state != VOLUME_STATE_AVAILABLE:
            raise CloudError(
                f"Volume is '{volume.state}', not available", resource_id=volume_id,
                operation="attach-volume", code="IncorrectState",
            )
        volume.state = VOLUME_STATE_IN_USE
        volume.instance_id = instance_id
        volume.device = self.device_map.get(device, device)
        volume.attachment_state = "attaching"
        volume.polls_until_ready = self.transition_polls
        return device

    async def detach_volume(self, volume_id: str, instance_id: str) -> None:
        self._record("detach-volume", volume_id=volume_id, instance_id=instance_id)
        volume = self._get_volume(volume_id, "detach-volume")
        if volume.instance_id != instance_id:
            raise CloudError(
                "Volume is not attached to this instance", resource_id=volume_id,
                operation="detach-volume", code="IncorrectState",
            )
        volume.attachment_state = "detaching"
        volume.polls_until_ready = self.transition_polls

    async def create_tags(self, resource_ids: list[str], tags: list[dict[str, str]]) -> None:
        self._record("create-tags", resource_ids=resource_ids, tags=tags)
        for resource_id in resource_ids:
            target = self.volumes.get(resource_id) or self.snapshots.get(resource_id)
            if target is None:
                raise CloudError("Resource not found", resource_id=resource_id, operation="create-tags")
            target.tags.update(tags_to_dict(tags))

    async def create_snapshot(
        self, volume_id: str, tags: list[dict[str, str]], description: str
    ) -> str:
        self._record("create-snapshot", volume_id=volume_id, tags=tags, description=description)
        volume = self._get_volume(volume_id, "create-snapshot")
        snapshot_id = self._next_id("snap")
        self.snapshots[snapshot_id] = InMemorySnapshot(
            snapshot_id=snapshot_id,
            volume_size=volume.size,
            start_time=datetime.now(timezone.utc),
            state=SNAPSHOT_STATE_PENDING,
            tags=tags_to_dict(tags),
            description=description,
            volume_id=volume_id,
            polls_until_ready=self.transition_polls,
        )
        return snapshot_id

    async def delete_volume(self, volume_id: str) -> None:
        self._record("delete-volume", volume_id=volume_id)
        volume = self._get_volume(volume_id, "delete-volume")
        if volume.attachment_state == ATTACHMENT_STATE_ATTACHED:
            raise CloudError(
                "Volume is attached", resource_id=volume_id,
                operation="delete-volume", code="VolumeInUse",
            )
        volume.state = "deleted"
