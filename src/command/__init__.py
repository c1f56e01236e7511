"""Command runners for machines."""

from command.runner import (
    CommandRunner,
    ExecRunner,
    FileAsset,
    KICRunner,
    RunError,
    RunResult,
    SSHRunner,
)

__all__ = [
    'CommandRunner',
    'ExecRunner',
    'FileAsset',
    'KICRunner',
    'RunError',
    'RunResult',
    'SSHRunner',
]
