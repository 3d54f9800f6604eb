"""
Tag vocabulary shared by volumes and snapshots.

Identity tags select which snapshots a job may restore; the TTL tag tells
the external reaper when a resource may be deleted.
"""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass, replace
from typing import Any

from .config import ActionConfig, Tag

TAG_KEY_VERSION = "runs-on-snapshot-version"
TAG_KEY_REPOSITORY = "runs-on-snapshot-repository"
TAG_KEY_BRANCH = "runs-on-snapshot-branch"
TAG_KEY_ARCH = "runs-on-snapshot-arch"
TAG_KEY_PLATFORM = "runs-on-snapshot-platform"
TAG_KEY_NAME = "Name"
TAG_KEY_TTL = "runs-on-delete-after"

# Go-style names, shared with snapshots written by other tooling.
_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def host_arch() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine)


def host_platform() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform.startswith("win"):
        return "windows"
    return sys.platform


@dataclass(frozen=True)
class TagSet:
    """Identity tags of a managed volume or snapshot.

    Attributes:
        version: Cache version input
        repository: owner/name of the repository
        branch: Branch the resource belongs to
        arch: CPU architecture of the host
        platform: OS of the host
        custom: Extra tags, appended verbatim
    """

    version: str
    repository: str
    branch: str
    arch: str
    platform: str
    custom: tuple[Tag, ...] = ()

    @classmethod
    def from_config(cls, config: ActionConfig) -> TagSet:
        return cls(
            version=config.version,
            repository=config.github_repository,
            branch=config.github_ref,
            arch=host_arch(),
            platform=host_platform(),
            custom=tuple(config.custom_tags),
        )

    def with_branch(self, branch: str) -> TagSet:
        return replace(self, branch=branch)

    def as_pairs(self) -> list[tuple[str, str]]:
        pairs = [
            (TAG_KEY_VERSION, self.version),
            (TAG_KEY_REPOSITORY, self.repository),
            (TAG_KEY_BRANCH, self.branch),
            (TAG_KEY_ARCH, self.arch),
            (TAG_KEY_PLATFORM, self.platform),
        ]
        pairs.extend((tag.key, tag.value) for tag in self.custom)
        return pairs

    def to_aws(self, name: str | None = None, ttl: int | None = None) -> list[dict[str, str]]:
        """Render as an EC2 tag list, optionally with Name and TTL tags."""
        tags = [{"Key": key, "Value": value} for key, value in self.as_pairs()]
        if name is not None:
            tags.append({"Key": TAG_KEY_NAME, "Value": name})
        if ttl is not None:
            tags.append(ttl_tag(ttl))
        return tags

    def to_filters(self) -> list[dict[str, Any]]:
        """Render as EC2 `tag:<key>` equality filters."""
        return [{"Name": f"tag:{key}", "Values": [value]} for key, value in self.as_pairs()]


def ttl_tag(expires_at: int) -> dict[str, str]:
    """TTL tag holding an absolute epoch-seconds deletion timestamp."""
    return {"Key": TAG_KEY_TTL, "Value": str(int(expires_at))}


def tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in tags or []}
