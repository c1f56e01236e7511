"""Command runners: run commands against a machine and copy files into it.

- ExecRunner: the local host (bare-metal driver)
- SSHRunner: a VM reachable over SSH
- KICRunner: a container node, through `docker exec` / `docker cp`
"""

import logging
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from common import SSH_OPTS, run_command, ssh_args

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Captured result of one command."""
    args: list
    returncode: int = 0
    stdout: str = ''
    stderr: str = ''
    duration: float = 0.0

    @property
    def command(self) -> str:
        return ' '.join(shlex.quote(str(a)) for a in self.args)

    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


class RunError(Exception):
    """Command exited non-zero."""

    def __init__(self, result: RunResult):
        self.result = result
        detail = result.stderr.strip() or result.stdout.strip()
        super().__init__(f"{result.command}: exit status {result.returncode}: {detail}")


@dataclass
class FileAsset:
    """A local file to place inside a machine."""
    source: Path
    target_dir: str
    target_name: str
    permissions: str = '0644'

    @property
    def target_path(self) -> str:
        return f"{self.target_dir.rstrip('/')}/{self.target_name}"


@runtime_checkable
class CommandRunner(Protocol):
    """Runs commands inside a machine."""

    def run_cmd(self, cmd: list[str], timeout: int = 600) -> RunResult:
        """Run cmd, raising RunError on a non-zero exit."""

    def copy(self, asset: FileAsset) -> None:
        """Place a local file inside the machine."""


def _finish(args: list, rc: int, out: str, err: str, start: float) -> RunResult:
    result = RunResult(args=args, returncode=rc, stdout=out, stderr=err, duration=time.time() - start)
    if result.duration > 1:
        logger.info(f"Completed: {result.command}: ({result.duration:.1f}s)")
    if rc != 0:
        raise RunError(result)
    return result


@dataclass
class ExecRunner:
    """Runs commands on the local host."""

    def run_cmd(self, cmd: list[str], timeout: int = 600) -> RunResult:
        start = time.time()
        rc, out, err = run_command(cmd, timeout=timeout)
        return _finish(cmd, rc, out, err, start)

    def copy(self, asset: FileAsset) -> None:
        self.run_cmd(['sudo', 'mkdir', '-p', asset.target_dir])
        self.run_cmd(['sudo', 'cp', '-a', str(asset.source), asset.target_path])
        self.run_cmd(['sudo', 'chmod', asset.permissions, asset.target_path])


@dataclass
class SSHRunner:
    """Runs commands on a machine over SSH."""
    host: str
    port: int = 22
    user: str = 'docker'
    key_path: Optional[Path] = None

    def run_cmd(self, cmd: list[str], timeout: int = 600) -> RunResult:
        start = time.time()
        remote = ' '.join(shlex.quote(str(c)) for c in cmd)
        args = ssh_args(self.host, port=self.port, user=self.user, key_path=self.key_path,
                        timeout=min(timeout, 60)) + [remote]
        rc, out, err = run_command(args, timeout=timeout)
        return _finish(cmd, rc, out, err, start)

    def copy(self, asset: FileAsset) -> None:
        """Copy via scp to a temp path, then move into place with sudo."""
        tmp = f'/tmp/{asset.target_name}.{int(time.time() * 1000)}'
        scp = ['scp'] + SSH_OPTS + ['-P', str(self.port)]
        if self.key_path:
            scp += ['-o', 'IdentitiesOnly=yes', '-i', str(self.key_path)]
        scp += [str(asset.source), f'{self.user}@{self.host}:{tmp}']
        start = time.time()
        rc, out, err = run_command(scp, timeout=300)
        _finish(scp, rc, out, err, start)
        self.run_cmd(['sudo', 'mkdir', '-p', asset.target_dir])
        self.run_cmd(['sudo', 'mv', tmp, asset.target_path])
        self.run_cmd(['sudo', 'chmod', asset.permissions, asset.target_path])


@dataclass
class KICRunner:
    """Runs commands inside a container node."""
    name: str
    oci_binary: str = 'docker'
    env: dict = field(default_factory=dict)

    def run_cmd(self, cmd: list[str], timeout: int = 600) -> RunResult:
        start = time.time()
        args = [self.oci_binary, 'exec', '--privileged']
        for key, value in sorted(self.env.items()):
            args += ['-e', f'{key}={value}']
        # Containers run as root; sudo is redundant and may be missing
        inner = cmd[1:] if cmd and cmd[0] == 'sudo' else cmd
        args += [self.name] + list(inner)
        rc, out, err = run_command(args, timeout=timeout)
        return _finish(cmd, rc, out, err, start)

    def copy(self, asset: FileAsset) -> None:
        self.run_cmd(['mkdir', '-p', asset.target_dir])
        args = [self.oci_binary, 'cp', str(asset.source), f'{self.name}:{asset.target_path}']
        start = time.time()
        rc, out, err = run_command(args, timeout=300)
        _finish(args, rc, out, err, start)
        self.run_cmd(['chmod', asset.permissions, asset.target_path])
