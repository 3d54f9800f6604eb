"""
Unit tests for attachment and device-path resolution.

Tests cover:
- lsblk parsing
- Pure device resolution (last match, fallback)
- Attach flow against the in-memory cloud
"""

import pytest
import pytest_asyncio

from ci.volsnap.attachment import (
    EBS_MODEL,
    AttachmentManager,
    BlockDevice,
    parse_lsblk,
    resolve_device_path,
)
from ci.volsnap.cloud.base import CreateVolumeRequest
from ci.volsnap.errors import AttachmentError

INSTANCE_ID = "i-0123456789abcdef0"


class TestParseLsblk:
    """Tests for parse_lsblk."""

    def test_model_with_spaces(self):
        devices = parse_lsblk("/dev/nvme1n1 Amazon Elastic Block Store\n")
        assert devices == [BlockDevice("/dev/nvme1n1", "Amazon Elastic Block Store")]

    def test_padded_columns_and_blank_lines(self):
        output = "  /dev/nvme0n1   Amazon Elastic Block Store  \n\n/dev/loop0\n"
        devices = parse_lsblk(output)
        assert devices == [
            BlockDevice("/dev/nvme0n1", "Amazon Elastic Block Store"),
            BlockDevice("/dev/loop0", ""),
        ]


class TestResolveDevicePath:
    """Tests for resolve_device_path."""

    def test_last_matching_device_wins(self):
        devices = [
            BlockDevice("/dev/nvme0n1", EBS_MODEL),
            BlockDevice("/dev/nvme2n1", "Amazon EC2 NVMe Instance Storage"),
            BlockDevice("/dev/nvme1n1", EBS_MODEL),
        ]
        assert resolve_device_path(devices, EBS_MODEL, fallback="/dev/sdf") == "/dev/nvme1n1"

    def test_no_match_uses_fallback(self):
        devices = [BlockDevice("/dev/xvda", "")]
        assert resolve_device_path(devices, EBS_MODEL, fallback="/dev/xvdf") == "/dev/xvdf"

    def test_empty_list_without_fallback(self):
        assert resolve_device_path([], EBS_MODEL) is None

    def test_model_must_match_exactly(self):
        devices = [BlockDevice("/dev/nvme1n1", "Amazon Elastic Block Store Plus")]
        assert resolve_device_path(devices, EBS_MODEL, fallback="/dev/sdf") == "/dev/sdf"


class TestAttachmentManager:
    """Tests for AttachmentManager."""

    @pytest.fixture
    def manager(self, cloud, host):
        return AttachmentManager(cloud, host)

    @pytest_asyncio.fixture
    async def volume_id(self, cloud):
        volume_id = await cloud.create_volume(
            CreateVolumeRequest("us-east-1a", "gp3", 3000, 750, tags=[], size=40)
        )
        await cloud.wait_volume_available(volume_id)
        return volume_id

    @pytest.mark.asyncio
    async def test_attach_resolves_host_device(self, cloud, manager, volume_id):
        attached = await manager.attach(volume_id, INSTANCE_ID)

        assert attached.device_name == "/dev/nvme1n1"
        assert attached.api_device == "/dev/sdf"
        attach_call = next(c for c in cloud.calls if c.operation == "attach-volume")
        assert attach_call.args == {"volume_id": volume_id, "instance_id": INSTANCE_ID, "device": "/dev/sdf"}

    @pytest.mark.asyncio
    async def test_lsblk_failure_falls_back_to_api_device(self, cloud, runner, manager, volume_id):
        cloud.device_map["/dev/sdf"] = "/dev/xvdf"
        runner.fail("lsblk")

        attached = await manager.attach(volume_id, INSTANCE_ID)

        assert attached.device_name == "/dev/xvdf"

    @pytest.mark.asyncio
    async def test_no_ebs_device_listed_uses_api_device(self, runner, manager, volume_id):
        runner.reply("lsblk", output="/dev/xvda\n")

        attached = await manager.attach(volume_id, INSTANCE_ID)

        assert attached.device_name == "/dev/sdf"

    @pytest.mark.asyncio
    async def test_lsblk_runs_without_sudo(self, runner, manager, volume_id):
        await manager.attach(volume_id, INSTANCE_ID)

        lsblk = next(c for c in runner.commands if "lsblk" in c)
        assert lsblk == ["lsblk", "-d", "-n", "-o", "PATH,MODEL"]

    @pytest.mark.asyncio
    async def test_attach_timeout_raises(self, cloud, manager, volume_id):
        cloud.attach_hangs = True
        cloud.volume_attached_timeout = 0.05

        with pytest.raises(AttachmentError) as exc_info:
            await manager.attach(volume_id, INSTANCE_ID)

        assert exc_info.value.resource_id == volume_id

    @pytest.mark.asyncio
    async def test_attach_api_failure_raises(self, cloud, manager, volume_id):
        cloud.fail_next("attach-volume")

        with pytest.raises(AttachmentError) as exc_info:
            await manager.attach(volume_id, INSTANCE_ID)

        assert exc_info.value.operation == "attach-volume"
