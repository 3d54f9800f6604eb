"""
Cloud block-storage abstraction for volsnap.

This package provides the CloudClient protocol and two implementations:
- EC2 via aiobotocore (production)
- In-memory (for testing)

Invariants:
    - All waits are bounded (fixed interval, hard deadline)
    - Provider errors surface as CloudError
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    AttachmentDescriptor,
    CloudClient,
    CreateVolumeRequest,
    SnapshotDescriptor,
    VolumeDescriptor,
)
from .ec2 import Ec2CloudClient
from .memory import InMemoryCloudClient

if TYPE_CHECKING:
    from ..config import ActionConfig


def create_cloud_client(config: ActionConfig) -> Ec2CloudClient:
    """Factory function to create the cloud client from configuration.

    Args:
        config: Action configuration

    Returns:
        An unconnected Ec2CloudClient for the configured region
    """
    return Ec2CloudClient(region=config.host.region)


__all__ = [
    # Protocol and types
    "CloudClient",
    "SnapshotDescriptor",
    "VolumeDescriptor",
    "AttachmentDescriptor",
    "CreateVolumeRequest",
    # Factory
    "create_cloud_client",
    # Implementations
    "Ec2CloudClient",
    "InMemoryCloudClient",
]
