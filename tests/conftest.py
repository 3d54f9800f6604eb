"""
Shared fixtures for volsnap tests.

Provides an in-memory cloud, a scripted host command runner (no command
ever reaches the real host) and a configuration pointing the state store
at a temporary directory.
"""

from __future__ import annotations

import pytest

from ci.volsnap.cloud.memory import InMemoryCloudClient
from ci.volsnap.config import ActionConfig, HostConfig, RunnerConfig, VolumeConfig
from ci.volsnap.host import CommandResult, HostCommands
from ci.volsnap.state import StateStore
from ci.volsnap.tags import TagSet

NOW = 1_700_000_000.0

LSBLK_OUTPUT = (
    "/dev/nvme0n1 Amazon Elastic Block Store\n"
    "/dev/nvme1n1 Amazon Elastic Block Store\n"
)


class ScriptedRunner:
    """CommandRunner that records command lines and replies from a script.

    Commands succeed with empty output unless a reply was registered for a
    prefix of the command line (sudo excluded). The latest matching reply wins.
    """

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.replies: list[tuple[tuple[str, ...], str, int]] = []

    def reply(self, *prefix: str, output: str = "", returncode: int = 0) -> None:
        self.replies.append((prefix, output, returncode))

    def fail(self, *prefix: str, output: str = "failed", returncode: int = 1) -> None:
        self.reply(*prefix, output=output, returncode=returncode)

    def executed(self) -> list[str]:
        """Command lines run so far, without the sudo prefix."""
        return [" ".join(_strip_sudo(args)) for args in self.commands]

    async def run(self, args: list[str]) -> CommandResult:
        self.commands.append(list(args))
        argv = tuple(_strip_sudo(args))
        for prefix, output, returncode in reversed(self.replies):
            if argv[: len(prefix)] == prefix:
                return CommandResult(tuple(args), output, returncode)
        return CommandResult(tuple(args), "", 0)


def _strip_sudo(args: list[str]) -> list[str]:
    return list(args[1:]) if args and args[0] == "sudo" else list(args)


@pytest.fixture
def runner():
    """Scripted runner with an EBS data volume listed by lsblk."""
    runner = ScriptedRunner()
    runner.reply("lsblk", output=LSBLK_OUTPUT)
    return runner


@pytest.fixture
def host(runner):
    return HostCommands(runner, use_sudo=True)


@pytest.fixture
def cloud():
    """In-memory cloud with instant transitions."""
    return InMemoryCloudClient(transition_polls=1, poll_interval=0.0)


@pytest.fixture
def config(tmp_path):
    return ActionConfig(
        path="/mnt/cache",
        github_ref="feature-x",
        github_repository="acme/app",
        volume=VolumeConfig(size_gib=40),
        runner=RunnerConfig(default_branch="main"),
        host=HostConfig(
            instance_id="i-0123456789abcdef0",
            availability_zone="us-east-1a",
            region="us-east-1",
            state_dir=str(tmp_path / "state"),
        ),
    )


@pytest.fixture
def tags(config):
    return TagSet.from_config(config)


@pytest.fixture
def state_store(config):
    return StateStore(config.host.state_dir)


@pytest.fixture
def clock():
    return lambda: NOW
