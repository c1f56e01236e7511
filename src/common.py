"""Common utilities for running commands."""

import logging
import os
import subprocess
from pathlib import Path
from typing import Iterable, Optional

from constants import IS_MINIKUBE_CHILD_PROCESS

logger = logging.getLogger(__name__)

# Use relaxed host key checking: machines are recreated with the same address
SSH_OPTS = ['-o', 'StrictHostKeyChecking=no', '-o', 'UserKnownHostsFile=/dev/null', '-o', 'LogLevel=ERROR']


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None,
    input_data: Optional[str] = None,
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            input=input_data,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def ssh_args(host: str, port: int = 22, user: str = 'docker',
             key_path: Optional[Path] = None, timeout: int = 60) -> list[str]:
    """Build the ssh argument prefix for a machine."""
    args = ['ssh'] + SSH_OPTS + ['-o', f'ConnectTimeout={timeout}', '-p', str(port)]
    if key_path:
        args += ['-o', 'IdentitiesOnly=yes', '-i', str(key_path)]
    return args + [f'{user}@{host}']


def unique(items: Iterable[str]) -> list[str]:
    """Remove duplicates, keeping the first occurrence of each item."""
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def child_process_env() -> dict:
    """Environment for helper processes spawned by minikube."""
    env = dict(os.environ)
    env[IS_MINIKUBE_CHILD_PROCESS] = 'true'
    return env


def is_child_process() -> bool:
    """True when running as a helper process spawned by minikube."""
    return os.environ.get(IS_MINIKUBE_CHILD_PROCESS, '').lower() == 'true'
