"""
Unit tests for the EC2 client.

The aiobotocore client is replaced by a recording fake so the request
shapes and error wrapping can be checked without AWS.
"""

from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from ci.volsnap.cloud.base import CreateVolumeRequest
from ci.volsnap.cloud.ec2 import Ec2CloudClient
from ci.volsnap.errors import CloudError


class FakeEc2:
    """Records EC2 calls and returns canned responses."""

    def __init__(self, responses=None, error=None):
        self.calls = []
        self.responses = responses or {}
        self.error = error

    def __getattr__(self, name):
        async def method(**kwargs):
            self.calls.append((name, kwargs))
            if self.error is not None:
                raise self.error
            response = self.responses.get(name, {})
            if isinstance(response, list):
                return response.pop(0)
            return response

        return method


def _client(fake):
    client = Ec2CloudClient(region="us-east-1")
    client._client = fake
    return client


class TestEc2CloudClient:
    """Tests for Ec2CloudClient request shapes and error handling."""

    @pytest.mark.asyncio
    async def test_not_connected(self):
        with pytest.raises(CloudError, match="not connected"):
            await Ec2CloudClient(region="us-east-1").delete_volume("vol-1")

    @pytest.mark.asyncio
    async def test_create_volume_from_snapshot(self):
        fake = FakeEc2({"create_volume": {"VolumeId": "vol-1"}})
        request = CreateVolumeRequest(
            "us-east-1a", "gp3", 3000, 750, tags=[{"Key": "Name", "Value": "v"}],
            snapshot_id="snap-1", initialization_rate=300,
        )

        assert await _client(fake).create_volume(request) == "vol-1"

        name, kwargs = fake.calls[0]
        assert name == "create_volume"
        assert kwargs["SnapshotId"] == "snap-1"
        assert kwargs["VolumeInitializationRate"] == 300
        assert kwargs["Iops"] == 3000
        assert kwargs["Throughput"] == 750
        assert "Size" not in kwargs
        assert kwargs["TagSpecifications"] == [
            {"ResourceType": "volume", "Tags": [{"Key": "Name", "Value": "v"}]}
        ]

    @pytest.mark.asyncio
    async def test_create_blank_volume(self):
        fake = FakeEc2({"create_volume": {"VolumeId": "vol-1"}})
        request = CreateVolumeRequest("us-east-1a", "gp3", 3000, 750, tags=[], size=40)

        await _client(fake).create_volume(request)

        kwargs = fake.calls[0][1]
        assert kwargs["Size"] == 40
        assert "SnapshotId" not in kwargs
        assert "VolumeInitializationRate" not in kwargs

    @pytest.mark.asyncio
    async def test_describe_snapshots_paginates(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        fake = FakeEc2({"describe_snapshots": [
            {"Snapshots": [{"SnapshotId": "snap-1", "StartTime": start, "VolumeSize": 40,
                            "State": "completed", "Tags": [{"Key": "a", "Value": "b"}]}],
             "NextToken": "t1"},
            {"Snapshots": [{"SnapshotId": "snap-2", "StartTime": start, "VolumeSize": 20,
                            "State": "completed"}]},
        ]})

        snapshots = await _client(fake).describe_snapshots(
            filters=[{"Name": "status", "Values": ["completed"]}], owner_ids=["self"]
        )

        assert [s.snapshot_id for s in snapshots] == ["snap-1", "snap-2"]
        assert snapshots[0].tags == {"a": "b"}
        assert snapshots[1].tags == {}
        assert fake.calls[1][1]["NextToken"] == "t1"
        assert fake.calls[0][1]["OwnerIds"] == ["self"]

    @pytest.mark.asyncio
    async def test_describe_volume_attachments(self):
        fake = FakeEc2({"describe_volumes": {"Volumes": [{
            "VolumeId": "vol-1", "State": "in-use", "Size": 40,
            "Attachments": [{"InstanceId": "i-1", "Device": "/dev/sdf", "State": "attached"}],
        }]}})

        volume = await _client(fake).describe_volume("vol-1")

        assert volume.is_attached
        assert volume.attachments[0].device == "/dev/sdf"

    @pytest.mark.asyncio
    async def test_describe_missing_volume(self):
        fake = FakeEc2({"describe_volumes": {"Volumes": []}})

        with pytest.raises(CloudError):
            await _client(fake).describe_volume("vol-1")

    @pytest.mark.asyncio
    async def test_create_snapshot_tags(self):
        fake = FakeEc2({"create_snapshot": {"SnapshotId": "snap-9"}})

        snapshot_id = await _client(fake).create_snapshot("vol-1", tags=[], description="d")

        assert snapshot_id == "snap-9"
        assert fake.calls[0][1]["TagSpecifications"][0]["ResourceType"] == "snapshot"

    @pytest.mark.asyncio
    async def test_client_error_wrapped(self):
        error = ClientError(
            {"Error": {"Code": "InvalidVolume.NotFound", "Message": "missing"}}, "DeleteVolume"
        )
        fake = FakeEc2(error=error)

        with pytest.raises(CloudError) as exc_info:
            await _client(fake).delete_volume("vol-1")

        assert exc_info.value.code == "InvalidVolume.NotFound"
        assert exc_info.value.resource_id == "vol-1"
        assert exc_info.value.operation == "delete-volume"
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_botocore_error_wrapped(self):
        fake = FakeEc2(error=EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com"))

        with pytest.raises(CloudError) as exc_info:
            await _client(fake).detach_volume("vol-1", "i-1")

        assert exc_info.value.operation == "detach-volume"
