"""
Bridging state store.

The restore phase and the create phase run as separate processes, often
far apart in time. The only thing they share is a small JSON record per
mount point telling the create phase which volume it owns:

    /runs-on/snapshot-var-lib-docker.json
    {"volume_id": "vol-...", "device_name": "/dev/nvme1n1",
     "mount_point": "/var/lib/docker", "new_volume": true}

Invariants:
    - One record per mount point, overwritten on every restore
    - Distinct mount points map to distinct files
    - Reads fail hard on a missing or malformed record

How to change safely:
    - Add new fields as optional with defaults; a restore from an older
      release may be followed by a create from a newer one
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import DEFAULT_STATE_DIR
from .errors import StateStoreError

logger = logging.getLogger(__name__)


class VolumeRecord(BaseModel):
    """The volume a mount point currently owns."""

    model_config = ConfigDict(frozen=True)

    volume_id: str = Field(..., min_length=1, description="Volume backing the mount point")
    device_name: str = Field(..., min_length=1, description="On-host device path")
    mount_point: str = Field(..., min_length=1, description="Directory the device is mounted on")
    attachment_id: str | None = Field(None, description="Attachment identifier, if known")
    new_volume: bool = Field(False, description="Volume was created blank for this run")


def state_path(mount_point: str, state_dir: str | Path = DEFAULT_STATE_DIR) -> Path:
    """Deterministic record location for a mount point.

    "/" becomes "-" and leading/trailing "-" are stripped, so
    /var/lib/docker maps to snapshot-var-lib-docker.json. Literal "%" and
    "-" are percent-encoded first so /a-b and /a/b stay distinct.
    """
    normalized = posixpath.normpath(mount_point)
    escaped = normalized.replace("%", "%25").replace("-", "%2D")
    sanitized = escaped.replace("/", "-").strip("-")
    return Path(state_dir) / f"snapshot-{sanitized}.json"


class StateStore:
    """Reads and writes bridging records.

    Attributes:
        state_dir: Directory holding the records
    """

    def __init__(self, state_dir: str | Path = DEFAULT_STATE_DIR) -> None:
        self.state_dir = Path(state_dir)

    def path_for(self, mount_point: str) -> Path:
        return state_path(mount_point, self.state_dir)

    def save(self, record: VolumeRecord) -> Path:
        """Write the record, replacing any previous one for the mount point.

        Raises:
            StateStoreError: If the record cannot be written
        """
        path = self.path_for(record.mount_point)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(record.model_dump_json(indent=2, exclude_none=True))
        except OSError as e:
            raise StateStoreError(
                f"Failed to write volume record: {e}", resource_id=str(path), operation="save-state"
            ) from e
        logger.info(
            "Volume record saved",
            extra={"path": str(path), "volume_id": record.volume_id},
        )
        return path

    def load(self, mount_point: str) -> VolumeRecord:
        """Read the record for a mount point.

        Raises:
            StateStoreError: If the record is missing or malformed
        """
        path = self.path_for(mount_point)
        try:
            data = path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            raise StateStoreError(
                f"Failed to read volume record: {e}", resource_id=str(path), operation="load-state"
            ) from e
        try:
            return VolumeRecord.model_validate_json(data)
        except ValidationError as e:
            raise StateStoreError(
                f"Malformed volume record: {e}", resource_id=str(path), operation="load-state"
            ) from e
