"""Host record persistence.

Records live at {minikube_home}/machines/{name}/config.json. Writes are
write-through with no caching layer; callers hold the machines lock.
"""

import json
import logging
import shutil
from pathlib import Path

from machine.host import Host

logger = logging.getLogger(__name__)


class HostNotFoundError(Exception):
    """No record exists for the machine."""


class HostStore:
    """Filesystem store for host records."""

    def __init__(self, path: Path):
        """Initialize the store.

        Args:
            path: Machines directory ({minikube_home}/machines)
        """
        self.path = Path(path)

    def _config_path(self, name: str) -> Path:
        return self.path / name / 'config.json'

    def exists(self, name: str) -> bool:
        return self._config_path(name).is_file()

    def save(self, host: Host) -> Path:
        """Write a host record, replacing any previous one atomically."""
        path = self._config_path(host.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix('.tmp')
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(host.to_dict(), f, indent=2)
        tmp.replace(path)
        logger.debug(f"Saved host record to {path}")
        return path

    def load(self, name: str) -> Host:
        """Read a host record.

        Raises:
            HostNotFoundError: If the machine has no record
        """
        path = self._config_path(name)
        if not path.is_file():
            raise HostNotFoundError(f"Host does not exist: {name}")
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        logger.debug(f"Loaded host record from {path}")
        return Host.from_dict(data)

    def remove(self, name: str) -> None:
        shutil.rmtree(self.path / name, ignore_errors=True)

    def names(self) -> list[str]:
        if not self.path.is_dir():
            return []
        return sorted(p.name for p in self.path.iterdir() if (p / 'config.json').is_file())
