"""Mount helper: keep a guest directory in sync with a host directory.

The start command spawns `mount` as a child process with
IS_MINIKUBE_CHILD_PROCESS=true and records its pid under the minikube home.
The helper copies new and changed files into the machine until stopped.
"""

import logging
import os
import subprocess
import sys
import threading
from pathlib import Path
from typing import Optional

from command import CommandRunner, FileAsset
from common import child_process_env
from constants import MOUNT_PROCESS_FILE_NAME

logger = logging.getLogger(__name__)

DEFAULT_MOUNT_TARGET = '/minikube-host'
SYNC_INTERVAL = 2.0


def default_mount_string() -> str:
    return f'{Path.home()}:{DEFAULT_MOUNT_TARGET}'


def parse_mount_string(mount_string: str) -> tuple[Path, str]:
    """Split `<host dir>:<guest dir>`.

    Raises:
        ValueError: If either side is missing or the guest path is relative
    """
    source, sep, target = mount_string.rpartition(':')
    if not sep or not source or not target:
        raise ValueError(f"mount string must be <source directory>:<target directory>, got {mount_string!r}")
    if not target.startswith('/'):
        raise ValueError(f"mount target must be an absolute path, got {target!r}")
    return Path(source).expanduser(), target


def sync_once(runner: CommandRunner, source: Path, target: str, seen: dict) -> int:
    """Copy files that are new or changed since the last pass.

    Args:
        seen: path -> mtime from previous passes, updated in place

    Returns:
        Number of files copied
    """
    copied = 0
    for path in sorted(p for p in source.rglob('*') if p.is_file()):
        mtime = path.stat().st_mtime
        if seen.get(path) == mtime:
            continue
        rel = path.relative_to(source)
        target_dir = target.rstrip('/') + ('/' + str(rel.parent) if str(rel.parent) != '.' else '')
        runner.copy(FileAsset(source=path, target_dir=target_dir or '/', target_name=path.name))
        seen[path] = mtime
        copied += 1
    return copied


def run_mount(runner: CommandRunner, mount_string: str, stop: Optional[threading.Event] = None,
              interval: float = SYNC_INTERVAL) -> None:
    """Sync until `stop` is set (or forever)."""
    source, target = parse_mount_string(mount_string)
    if not source.is_dir():
        raise ValueError(f"mount source {source} is not a directory")
    stop = stop or threading.Event()
    seen: dict = {}
    logger.info(f"Mounting {source} into {target}")
    while True:
        copied = sync_once(runner, source, target, seen)
        if copied:
            logger.info(f"Synced {copied} file(s) into {target}")
        if stop.wait(interval):
            return


def configure_mounts(mount_string: str, profile: str, minikube_home: Path,
                     verbose: bool = False) -> subprocess.Popen:
    """Spawn the mount helper and record its pid.

    Returns:
        The helper process
    """
    logger.info(f"Creating mount {mount_string} ...")
    cmd = [sys.executable, sys.argv[0], 'mount', '--profile', profile, mount_string]
    if verbose:
        cmd.append('--verbose')
    proc = subprocess.Popen(
        cmd,
        env=child_process_env(),
        stdout=None if verbose else subprocess.DEVNULL,
        stderr=None if verbose else subprocess.DEVNULL,
    )
    pid_file = minikube_home / MOUNT_PROCESS_FILE_NAME
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    tmp = pid_file.with_name(pid_file.name + '.tmp')
    tmp.write_text(str(proc.pid))
    os.replace(tmp, pid_file)
    return proc
