"""
Snapshot discovery with branch fallback.

Finds the most recent completed snapshot carrying the job's identity tags,
first for the job's branch and then, if nothing matches, for the
repository's default branch. Finding nothing is a normal outcome: the
restore then starts from a blank volume.
"""

from __future__ import annotations

import logging

from .cloud.base import SNAPSHOT_STATE_COMPLETED, CloudClient, SnapshotDescriptor
from .tags import TagSet

logger = logging.getLogger(__name__)

OWNER_SELF = "self"


def select_latest(snapshots: list[SnapshotDescriptor]) -> SnapshotDescriptor | None:
    """Pick the snapshot with the greatest start time.

    Ties keep the first one seen; no order is implied by snapshot ids.
    """
    latest: SnapshotDescriptor | None = None
    for snapshot in snapshots:
        if latest is None or snapshot.start_time > latest.start_time:
            latest = snapshot
    return latest


class SnapshotLocator:
    """Finds the best snapshot to restore for a branch.

    Attributes:
        cloud: Cloud client used for describe-snapshots
    """

    def __init__(self, cloud: CloudClient) -> None:
        self.cloud = cloud

    async def find_for_branch(self, tags: TagSet) -> SnapshotDescriptor | None:
        """Latest completed snapshot matching all identity tags (branch included)."""
        filters = [{"Name": "status", "Values": [SNAPSHOT_STATE_COMPLETED]}]
        filters.extend(tags.to_filters())
        snapshots = await self.cloud.describe_snapshots(filters=filters, owner_ids=[OWNER_SELF])
        return select_latest(snapshots)

    async def locate(self, tags: TagSet, default_branch: str | None = None) -> SnapshotDescriptor | None:
        """Find the snapshot to restore.

        Args:
            tags: Identity tags; tags.branch is the job's branch
            default_branch: Repository default branch, tried when the job's
                branch has no snapshot

        Returns:
            The selected snapshot, or None when neither branch has one

        Raises:
            CloudError: If describe-snapshots fails
        """
        branch = tags.branch
        logger.info(f"Searching for the latest snapshot for branch {branch}")
        snapshot = await self.find_for_branch(tags)
        if snapshot is not None:
            logger.info(
                f"Found latest snapshot {snapshot.snapshot_id} for branch {branch}",
                extra={"snapshot_id": snapshot.snapshot_id, "volume_size": snapshot.volume_size},
            )
            return snapshot

        if not default_branch or default_branch == branch:
            logger.info(f"No snapshot found for branch {branch}, a new volume will be created")
            return None

        logger.info(f"No snapshot found for branch {branch}, trying default branch {default_branch}")
        snapshot = await self.find_for_branch(tags.with_branch(default_branch))
        if snapshot is not None:
            logger.info(
                f"Found latest snapshot {snapshot.snapshot_id} from default branch {default_branch}",
                extra={"snapshot_id": snapshot.snapshot_id, "volume_size": snapshot.volume_size},
            )
            return snapshot

        logger.info(
            f"No existing snapshot found for branch {branch} or default branch "
            f"{default_branch}, a new volume will be created"
        )
        return None
