"""
Configuration management for volsnap.

All configuration comes from the environment of the CI step: action
inputs arrive as INPUT_* variables, job context as GITHUB_* variables and
the runner identity as RUNS_ON_* variables. The runner's own config.json
(under RUNS_ON_HOME) contributes the repository default branch and custom
tags.

Invariants:
    - Input defaults match the action metadata (gp3, 40 GiB, 3000 IOPS...)
    - The target path is always absolute
    - Identity values (ref, repository, instance, AZ) are required

How to change safely:
    - Add new inputs with defaults that keep existing workflows working
    - Identity and tag values end up in snapshot filters; changing how
      they are derived orphans every existing snapshot
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "/runs-on"
BRANCH_SLUG_MAX_LENGTH = 40

# Region prefix of an AZ name: us-east-1a, us-west-2-lax-1a, us-gov-west-1b
_REGION_PATTERN = re.compile(r"[a-z]+(?:-[a-z]+)+-\d+")


def _int_input(name: str, default: int, minimum: int = 0) -> int:
    """Read an integer action input, enforcing a lower bound."""
    raw = os.getenv(f"INPUT_{name.upper()}", "").strip() or str(default)
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"Invalid value '{raw}' for input '{name}'")
    if value < minimum:
        raise ConfigError(f"Invalid value '{raw}' for input '{name}': must be at least {minimum}")
    return value


def _bool_input(name: str, default: bool) -> bool:
    raw = os.getenv(f"INPUT_{name.upper()}", "").strip()
    if not raw:
        return default
    return raw.lower() == "true"


def region_from_zone(availability_zone: str) -> str:
    """Region an availability zone belongs to, including Local and Wavelength Zones."""
    match = _REGION_PATTERN.match(availability_zone)
    return match.group(0) if match else ""


@dataclass(frozen=True)
class Tag:
    """A custom key/value tag applied to volumes and snapshots."""

    key: str
    value: str


@dataclass(frozen=True)
class VolumeConfig:
    """Desired shape of provisioned volumes.

    Attributes:
        volume_type: EBS volume type
        size_gib: Target size; snapshots smaller than this are not reused
        iops: Provisioned IOPS
        throughput: Provisioned throughput (MiB/s)
        initialization_rate: Volume initialization rate (MiB/s, 0 = disabled)
    """

    volume_type: str = "gp3"
    size_gib: int = 40
    iops: int = 3000
    throughput: int = 750
    initialization_rate: int = 0

    @classmethod
    def from_env(cls) -> VolumeConfig:
        """Load configuration from action inputs."""
        return cls(
            volume_type=os.getenv("INPUT_VOLUME_TYPE", "").strip() or "gp3",
            size_gib=_int_input("volume_size", 40, minimum=1),
            iops=_int_input("volume_iops", 3000),
            throughput=_int_input("volume_throughput", 750),
            initialization_rate=_int_input("volume_initialization_rate", 0),
        )


@dataclass(frozen=True)
class RunnerConfig:
    """Settings published by the runner in its config.json.

    Attributes:
        default_branch: Repository default branch, used as restore fallback
        custom_tags: Tags appended verbatim to every managed resource
    """

    default_branch: str = ""
    custom_tags: tuple[Tag, ...] = ()

    @classmethod
    def from_file(cls, path: Path) -> RunnerConfig:
        """Load the runner config file.

        A missing or unparsable file yields an empty config; restores then
        simply skip the default-branch fallback.
        """
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            logger.warning(f"Runner config file not found: {path}")
            return cls()
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error parsing runner config file {path}: {e}")
            return cls()

        tags = tuple(
            Tag(key=str(tag["key"]), value=str(tag["value"]))
            for tag in data.get("customTags") or []
            if "key" in tag and "value" in tag
        )
        return cls(default_branch=data.get("defaultBranch") or "", custom_tags=tags)

    @classmethod
    def from_env(cls) -> RunnerConfig:
        """Load the runner config from $RUNS_ON_HOME/config.json."""
        home = os.getenv("RUNS_ON_HOME")
        if not home:
            logger.warning("RUNS_ON_HOME is not set, no default branch or custom tags")
            return cls()
        return cls.from_file(Path(home) / "config.json")


@dataclass(frozen=True)
class HostConfig:
    """Identity and local layout of the host running the job.

    Attributes:
        instance_id: EC2 instance the volume is attached to
        availability_zone: AZ volumes are created in
        region: AWS region (derived from the AZ when unset)
        state_dir: Directory holding the bridging records
        use_sudo: Prefix privileged host commands with sudo
    """

    instance_id: str = ""
    availability_zone: str = ""
    region: str = ""
    state_dir: str = DEFAULT_STATE_DIR
    use_sudo: bool = True

    @classmethod
    def from_env(cls) -> HostConfig:
        """Load configuration from environment variables."""
        az = os.getenv("RUNS_ON_AWS_AZ", "")
        region = os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", ""))
        if not region and az:
            region = region_from_zone(az)
        return cls(
            instance_id=os.getenv("RUNS_ON_INSTANCE_ID", ""),
            availability_zone=az,
            region=region,
            state_dir=os.getenv("VOLSNAP_STATE_DIR", DEFAULT_STATE_DIR),
            use_sudo=os.getenv("VOLSNAP_USE_SUDO", "true").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class ActionConfig:
    """Complete configuration of one phase invocation.

    Attributes:
        path: Absolute directory whose block device is persisted
        version: Cache version, part of the snapshot identity
        wait_for_completion: Always wait for snapshots to complete
        save: Create a snapshot in the post phase
        github_ref: Branch the job runs for
        github_repository: owner/name of the repository
        volume: Volume shape
        runner: Runner-provided defaults
        host: Host identity
        observability: Logging configuration
    """

    path: str = ""
    version: str = "v1"
    wait_for_completion: bool = False
    save: bool = True
    github_ref: str = ""
    github_repository: str = ""
    volume: VolumeConfig = field(default_factory=VolumeConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    host: HostConfig = field(default_factory=HostConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ActionConfig:
        """Load complete configuration from the environment.

        Returns:
            ActionConfig with all sections populated.

        Raises:
            ConfigError: If required configuration is missing or invalid.
        """
        config = cls(
            path=os.getenv("INPUT_PATH", "").strip(),
            version=os.getenv("INPUT_VERSION", "").strip() or "v1",
            wait_for_completion=_bool_input("wait_for_completion", False),
            save=_bool_input("save", True),
            github_ref=os.getenv("GITHUB_REF_NAME", ""),
            github_repository=os.getenv("GITHUB_REPOSITORY", ""),
            volume=VolumeConfig.from_env(),
            runner=RunnerConfig.from_env(),
            host=HostConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if not self.path:
            raise ConfigError("Input 'path' is required")
        if not self.path.startswith("/"):
            raise ConfigError(f"Path '{self.path}' must be an absolute path")
        if not self.github_ref:
            raise ConfigError("GITHUB_REF_NAME is required")
        if not self.github_repository:
            raise ConfigError("GITHUB_REPOSITORY is required")
        if not self.host.instance_id:
            raise ConfigError("RUNS_ON_INSTANCE_ID is required")
        if not self.host.availability_zone:
            raise ConfigError("RUNS_ON_AWS_AZ is required")

    @property
    def default_branch(self) -> str:
        return self.runner.default_branch

    @property
    def custom_tags(self) -> tuple[Tag, ...]:
        return self.runner.custom_tags

    @property
    def branch_slug(self) -> str:
        """Branch name safe for resource names (no refs/, no slashes, <= 40 chars)."""
        slug = self.github_ref
        if slug.startswith("refs/"):
            slug = slug[len("refs/"):]
        return slug.replace("/", "-")[:BRANCH_SLUG_MAX_LENGTH]

    def volume_name(self, now: datetime) -> str:
        return f"runs-on-volume-{self.branch_slug}-{now.strftime('%Y%m%d-%H%M%S')}"

    def snapshot_name(self, now: datetime) -> str:
        return f"runs-on-snapshot-{self.branch_slug}-{now.strftime('%Y%m%d-%H%M%S')}"

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Configuration loaded",
            extra={
                "path": self.path,
                "version": self.version,
                "branch": self.github_ref,
                "default_branch": self.default_branch,
                "repository": self.github_repository,
                "instance_id": self.host.instance_id,
                "availability_zone": self.host.availability_zone,
                "region": self.host.region,
                "volume_type": self.volume.volume_type,
                "volume_size": self.volume.size_gib,
                "wait_for_completion": self.wait_for_completion,
                "save": self.save,
                "custom_tags": len(self.custom_tags),
            },
        )
