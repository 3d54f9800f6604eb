"""
Host command surface.

Thin wrappers around the commands volsnap runs on the runner: mounting,
formatting, block-device enumeration and control of the container engine
whose data directory may live on the managed volume.

Each command returns a CommandResult carrying the combined output and a
success flag; callers decide whether a failure is fatal.

Invariants:
    - Commands never raise on a non-zero exit, they report it
    - Output is truncated in logs only, callers always get all of it
    - Privileged commands are prefixed with sudo unless disabled
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

LOG_OUTPUT_LIMIT = 400
LOG_OUTPUT_HEAD = 200

ENGINE_SERVICE = "docker"
DEFAULT_BUILDER = "runs-on"
DEFAULT_KEEP_STORAGE = "12g"


def truncate_output(output: str, limit: int = LOG_OUTPUT_LIMIT) -> str:
    """Shorten verbose command output for logging."""
    if len(output) <= limit:
        return output
    return output[:LOG_OUTPUT_HEAD] + "... (output truncated)"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a host command.

    Attributes:
        args: Command line that was run
        output: Combined stdout and stderr
        returncode: Exit status (127 when the executable is missing)
    """

    args: tuple[str, ...]
    output: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.args)


class CommandRunner(Protocol):
    async def run(self, args: list[str]) -> CommandResult:
        ...


class SubprocessRunner:
    """Runs commands as child processes of the current event loop."""

    async def run(self, args: list[str]) -> CommandResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            return CommandResult(tuple(args), str(e), 127)

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise
        return CommandResult(tuple(args), stdout.decode("utf-8", errors="replace"), process.returncode)


class HostCommands:
    """Commands volsnap runs on the runner.

    Attributes:
        runner: Executes command lines
        use_sudo: Prefix privileged commands with sudo

    Example:
        >>> host = HostCommands(SubprocessRunner())
        >>> result = await host.mount("/dev/nvme1n1", "/var/lib/docker")
        >>> result.ok
        True
    """

    def __init__(self, runner: CommandRunner | None = None, use_sudo: bool = True) -> None:
        self.runner = runner or SubprocessRunner()
        self.use_sudo = use_sudo

    async def run(self, *args: str, privileged: bool = True) -> CommandResult:
        """Run a command, logging it and a truncated copy of its output."""
        argv = ["sudo", *args] if privileged and self.use_sudo else list(args)
        logger.info(f"Executing command: {' '.join(argv)}")
        result = await self.runner.run(argv)
        if result.ok:
            logger.info(f"Command successful. Output:\n{truncate_output(result.output)}")
        else:
            logger.warning(
                f"Command failed (exit {result.returncode}): {result.command}\n"
                f"Output:\n{truncate_output(result.output)}"
            )
        return result

    async def unmount(self, path: str) -> CommandResult:
        return await self.run("umount", path)

    async def mount(self, device: str, path: str) -> CommandResult:
        return await self.run("mount", device, path)

    async def format_ext4(self, device: str) -> CommandResult:
        # -F: proceed even if the device looks already formatted or is small
        return await self.run("mkfs.ext4", "-F", device)

    async def make_dir(self, path: str) -> CommandResult:
        return await self.run("mkdir", "-p", path)

    async def list_block_devices(self) -> CommandResult:
        return await self.run("lsblk", "-d", "-n", "-o", "PATH,MODEL", privileged=False)

    async def disk_free(self, path: str) -> CommandResult:
        return await self.run("df", path, privileged=False)

    async def stop_service(self, name: str = ENGINE_SERVICE) -> CommandResult:
        return await self.run("systemctl", "stop", name)

    async def start_service(self, name: str = ENGINE_SERVICE) -> CommandResult:
        return await self.run("systemctl", "start", name)

    async def engine_info(self) -> CommandResult:
        return await self.run("docker", "system", "info")

    async def builder_disk_usage(self, builder: str = DEFAULT_BUILDER) -> CommandResult:
        return await self.run("docker", "buildx", "--builder", builder, "du")

    async def builder_prune(
        self, builder: str = DEFAULT_BUILDER, keep_storage: str = DEFAULT_KEEP_STORAGE
    ) -> CommandResult:
        return await self.run(
            "docker", "buildx", "--builder", builder, "prune", "--keep-storage", keep_storage, "-f"
        )
