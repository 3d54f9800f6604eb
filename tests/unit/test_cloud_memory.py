"""
Unit tests for the in-memory cloud client and the shared waiters.

Tests cover:
- Snapshot filtering
- Volume and snapshot state transitions
- Waiter failure on terminal states
- Testing helpers
"""

import pytest

from ci.volsnap.cloud import CloudClient, InMemoryCloudClient
from ci.volsnap.cloud.base import CreateVolumeRequest
from ci.volsnap.errors import CloudError, WaitTimeoutError


def _request(**kwargs):
    return CreateVolumeRequest("us-east-1a", "gp3", 3000, 750, tags=[{"Key": "a", "Value": "b"}], **kwargs)


class TestInMemoryCloudClient:
    """Tests for InMemoryCloudClient."""

    def test_satisfies_protocol(self, cloud):
        assert isinstance(cloud, CloudClient)

    @pytest.mark.asyncio
    async def test_snapshot_filters(self, cloud):
        cloud.add_snapshot("snap-1", 40, {"branch": "main"})
        cloud.add_snapshot("snap-2", 40, {"branch": "dev"})
        cloud.add_snapshot("snap-3", 40, {"branch": "main"}, state="pending")

        snapshots = await cloud.describe_snapshots(filters=[
            {"Name": "status", "Values": ["completed"]},
            {"Name": "tag:branch", "Values": ["main"]},
        ])

        assert [s.snapshot_id for s in snapshots] == ["snap-1"]

    @pytest.mark.asyncio
    async def test_volume_lifecycle(self, cloud):
        volume_id = await cloud.create_volume(_request(size=10))
        assert (await cloud.describe_volume(volume_id)).state == "creating"

        volume = await cloud.wait_volume_available(volume_id)
        assert volume.tags == {"a": "b"}

        await cloud.attach_volume(volume_id, "i-1", "/dev/sdf")
        volume = await cloud.wait_volume_attached(volume_id)
        assert volume.state == "in-use"
        assert volume.attachments[0].device == "/dev/sdf"

        with pytest.raises(CloudError):
            await cloud.delete_volume(volume_id)

        await cloud.detach_volume(volume_id, "i-1")
        await cloud.wait_volume_available(volume_id)
        await cloud.delete_volume(volume_id)

        with pytest.raises(CloudError):
            await cloud.describe_volume(volume_id)

    @pytest.mark.asyncio
    async def test_volume_from_snapshot_inherits_size(self, cloud):
        cloud.add_snapshot("snap-1", 100, {})

        volume_id = await cloud.create_volume(_request(snapshot_id="snap-1"))

        assert cloud.volumes[volume_id].size == 100

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, cloud):
        with pytest.raises(CloudError) as exc_info:
            await cloud.create_volume(_request(snapshot_id="snap-missing"))

        assert exc_info.value.code == "InvalidSnapshot.NotFound"

    @pytest.mark.asyncio
    async def test_snapshot_completes(self, cloud):
        volume_id = await cloud.create_volume(_request(size=10))

        snapshot_id = await cloud.create_snapshot(volume_id, tags=[], description="d")
        snapshot = await cloud.wait_snapshot_completed(snapshot_id)

        assert snapshot.state == "completed"
        assert snapshot.volume_size == 10

    @pytest.mark.asyncio
    async def test_wait_on_unknown_snapshot_fails(self, cloud):
        with pytest.raises(CloudError):
            await cloud.wait_snapshot_completed("snap-missing")

    @pytest.mark.asyncio
    async def test_wait_fails_on_error_state(self, cloud):
        volume_id = await cloud.create_volume(_request(size=10))
        cloud.volumes[volume_id].state = "error"

        with pytest.raises(CloudError, match="error"):
            await cloud.wait_volume_available(volume_id)

    @pytest.mark.asyncio
    async def test_wait_timeout_override(self, cloud):
        cloud.transition_polls = 1_000_000
        volume_id = await cloud.create_volume(_request(size=10))

        with pytest.raises(WaitTimeoutError):
            await cloud.wait_volume_available(volume_id, timeout=0.01)

    @pytest.mark.asyncio
    async def test_fail_next_only_once(self, cloud):
        cloud.fail_next("describe-snapshots")

        with pytest.raises(CloudError):
            await cloud.describe_snapshots()
        assert await cloud.describe_snapshots() == []
        assert cloud.operations() == ["describe-snapshots", "describe-snapshots"]

    @pytest.mark.asyncio
    async def test_device_map(self):
        cloud = InMemoryCloudClient(transition_polls=0)
        cloud.device_map["/dev/sdf"] = "/dev/xvdf"
        volume_id = await cloud.create_volume(_request(size=10))
        await cloud.wait_volume_available(volume_id)

        await cloud.attach_volume(volume_id, "i-1", "/dev/sdf")
        volume = await cloud.wait_volume_attached(volume_id)

        assert volume.attachments[0].device == "/dev/xvdf"
