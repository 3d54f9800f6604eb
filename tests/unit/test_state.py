"""
Unit tests for the bridging state store.

Tests cover:
- Deterministic, collision-free record paths
- Round trip of a record
- Missing and malformed records
"""

import json

import pytest

from ci.volsnap.errors import StateStoreError
from ci.volsnap.state import StateStore, VolumeRecord, state_path


class TestStatePath:
    """Tests for state_path."""

    def test_docker_data_dir(self):
        assert str(state_path("/var/lib/docker", "/runs-on")) == "/runs-on/snapshot-var-lib-docker.json"

    def test_literal_dash_is_escaped(self):
        assert state_path("/mnt/my-cache", "/s").name == "snapshot-mnt-my%2Dcache.json"

    def test_trailing_slash_is_ignored(self):
        assert state_path("/mnt/cache/", "/s") == state_path("/mnt/cache", "/s")

    def test_deterministic(self):
        assert state_path("/home/runner/work", "/s") == state_path("/home/runner/work", "/s")

    @pytest.mark.parametrize(
        "first,second",
        [
            ("/a-b", "/a/b"),
            ("/a--b", "/a/-b"),
            ("/cache%2D", "/cache-"),
        ],
    )
    def test_distinct_mount_points_distinct_paths(self, first, second):
        assert state_path(first, "/s") != state_path(second, "/s")

    def test_default_state_dir(self):
        assert str(state_path("/mnt/cache").parent) == "/runs-on"


class TestStateStore:
    """Tests for StateStore."""

    @pytest.fixture
    def store(self, tmp_path):
        return StateStore(tmp_path / "state")

    @pytest.fixture
    def record(self):
        return VolumeRecord(
            volume_id="vol-0abc",
            device_name="/dev/nvme1n1",
            mount_point="/var/lib/docker",
            new_volume=True,
        )

    def test_round_trip(self, store, record):
        """A saved record loads back unchanged."""
        store.save(record)

        loaded = store.load("/var/lib/docker")

        assert loaded == record
        assert loaded.new_volume is True

    def test_save_creates_directory(self, store, record):
        path = store.save(record)
        assert path.exists()
        assert path.parent == store.state_dir

    def test_save_overwrites(self, store, record):
        store.save(record)
        store.save(record.model_copy(update={"volume_id": "vol-0def"}))

        assert store.load("/var/lib/docker").volume_id == "vol-0def"
        assert len(list(store.state_dir.iterdir())) == 1

    def test_attachment_id_omitted_when_unset(self, store, record):
        path = store.save(record)
        data = json.loads(path.read_text())
        assert "attachment_id" not in data
        assert data["volume_id"] == "vol-0abc"

    def test_new_volume_defaults_false(self, store):
        path = store.path_for("/mnt/cache")
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps(
            {"volume_id": "vol-1", "device_name": "/dev/sdf", "mount_point": "/mnt/cache"}
        ))

        assert store.load("/mnt/cache").new_volume is False

    def test_missing_record_raises(self, store):
        with pytest.raises(StateStoreError):
            store.load("/mnt/cache")

    def test_invalid_json_raises(self, store):
        path = store.path_for("/mnt/cache")
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with pytest.raises(StateStoreError):
            store.load("/mnt/cache")

    def test_undecodable_record_raises(self, store):
        path = store.path_for("/mnt/cache")
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\xff\xfe{garbage")

        with pytest.raises(StateStoreError) as exc_info:
            store.load("/mnt/cache")

        assert exc_info.value.operation == "load-state"
        assert exc_info.value.resource_id == str(path)

    def test_schema_violation_raises(self, store):
        path = store.path_for("/mnt/cache")
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"volume_id": "", "mount_point": "/mnt/cache"}))

        with pytest.raises(StateStoreError):
            store.load("/mnt/cache")

    def test_unwritable_directory_raises(self, tmp_path, record):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = StateStore(blocker / "state")

        with pytest.raises(StateStoreError):
            store.save(record)
