"""
volsnap - Main entry point.

Runs one phase of the volume snapshot action:
- main phase (default): restore the latest snapshot onto the target path
- post phase (--post): snapshot the target path's volume and delete it

Usage:
    sudo -E volsnap          # at job start
    sudo -E volsnap --post   # at job end

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Exit status is 0 on success and 1 on any fatal error
    - A fatal error is logged once and reported as a workflow annotation
    - Outputs are appended to $GITHUB_OUTPUT only after the phase succeeds
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import json_log_formatter

from .cloud import CloudClient, create_cloud_client
from .config import ActionConfig
from .errors import ConfigError, VolumeSnapshotError
from .host import HostCommands
from .snapshotter import VolumeSnapshotter

logger = logging.getLogger(__name__)


def setup_logging(config: ActionConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: Action configuration
        verbose: Force DEBUG level
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)
    if verbose:
        level = logging.DEBUG

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def write_outputs(outputs: dict[str, str], path: str | None = None) -> None:
    """Append step outputs to the GITHUB_OUTPUT file, if there is one."""
    path = path or os.getenv("GITHUB_OUTPUT")
    if not path:
        logger.debug("GITHUB_OUTPUT is not set, skipping outputs")
        return
    with Path(path).open("a") as f:
        for key, value in outputs.items():
            f.write(f"{key}={value}\n")


async def run_phase(
    config: ActionConfig,
    post: bool,
    cloud: CloudClient,
    host: HostCommands | None = None,
) -> dict[str, str]:
    """Run one phase and return its step outputs.

    Raises:
        VolumeSnapshotError: On a fatal failure of the phase
    """
    snapshotter = VolumeSnapshotter(config, cloud, host=host)

    if not post:
        result = await snapshotter.restore()
        return {
            "volume-id": result.volume_id,
            "device-name": result.device_name,
            "new-volume": str(result.new_volume).lower(),
            "snapshot-id": result.snapshot_id or "",
        }

    if not config.save:
        logger.info("Input 'save' is false, not creating a snapshot")
        return {}

    created = await snapshotter.create()
    return {
        "snapshot-id": created.snapshot_id,
        "snapshot-completed": str(created.waited).lower(),
    }


async def run(config: ActionConfig, post: bool) -> dict[str, str]:
    """Run one phase against EC2."""
    async with create_cloud_client(config) as cloud:
        return await run_phase(config, post, cloud)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Restore a directory from an EBS snapshot, or snapshot it again"
    )
    parser.add_argument(
        "--post", action="store_true", help="Run the post phase (create a snapshot)"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    args = parser.parse_args()

    # Load configuration
    try:
        config = ActionConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print(f"::error::{e}")
        sys.exit(1)

    setup_logging(config, verbose=args.verbose)
    config.log_config()

    phase = "post" if args.post else "main"
    logger.info(f"Running {phase} phase for {config.path}")
    try:
        outputs = asyncio.run(run(config, args.post))
    except VolumeSnapshotError as e:
        logger.error(f"{phase} phase failed: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
        print(f"::error::{e}")
        sys.exit(1)

    write_outputs(outputs)
    logger.info(f"{phase} phase completed", extra=outputs)
    sys.exit(0)


if __name__ == "__main__":
    main()
