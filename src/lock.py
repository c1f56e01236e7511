"""Cross-process machine locks.

Provisioning a machine is not safe to run twice at once: the backend drivers
and the shared certificate material race. Each machine name gets an advisory
fcntl lock file under the machines directory; processes on the same host
contend on it. There is no cross-host coordination.
"""

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from errors import ErrorKind, MinikubeError

logger = logging.getLogger(__name__)

# Provisioning generally completes within 60 seconds, but slow backends exist
DEFAULT_LOCK_TIMEOUT = 15 * 60


class Releaser:
    """Held lock. Release exactly once, or use as a context manager."""

    def __init__(self, name: str, path: Path, fd: int):
        self.name = name
        self.path = path
        self._fd = fd
        self._acquired_at = time.monotonic()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            logger.warning(f"machines lock for {self.name!r} already released")
            return
        self._released = True
        held = time.monotonic() - self._acquired_at
        logger.info(f"releasing machines lock for {self.name!r}, held for {held:.1f}s")
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)

    def __enter__(self) -> 'Releaser':
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


def lock_path(name: str, lock_dir: Path) -> Path:
    return lock_dir / f'{name}.lock'


def acquire_machines_lock(
    name: str,
    lock_dir: Path,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
    interval: float = 0.5,
) -> Releaser:
    """Block until the lock for `name` is held or `timeout` elapses.

    Raises:
        MinikubeError: LOCK_TIMEOUT when the timeout elapses, LOCK_ERROR when
            the lock file can't be opened or locked
    """
    path = lock_path(name, lock_dir)
    logger.info(f"acquiring machines lock for {name}: path={path} timeout={timeout}s")
    start = time.monotonic()

    try:
        lock_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_CREAT | os.O_RDWR, 0o644)
    except OSError as e:
        raise MinikubeError(ErrorKind.LOCK_ERROR, f"open lock file {path}: {e}") from e

    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start >= timeout:
                    raise MinikubeError(
                        ErrorKind.LOCK_TIMEOUT,
                        f"timed out after {timeout:.0f}s waiting for machines lock {name!r}; "
                        "another minikube process may be provisioning it",
                    ) from None
                time.sleep(interval)
    except MinikubeError:
        os.close(fd)
        raise
    except OSError as e:
        os.close(fd)
        raise MinikubeError(ErrorKind.LOCK_ERROR, f"lock {path}: {e}") from e

    # Record the holder for anyone inspecting a stuck lock
    os.ftruncate(fd, 0)
    os.write(fd, str(os.getpid()).encode())

    logger.info(f"acquired machines lock for {name!r} in {time.monotonic() - start:.1f}s")
    return Releaser(name, path, fd)


@contextmanager
def machines_lock(name: str, lock_dir: Path, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Iterator[Releaser]:
    """Hold the machines lock for the duration of the block."""
    releaser = acquire_machines_lock(name, lock_dir, timeout=timeout)
    try:
        yield releaser
    finally:
        if not releaser.released:
            releaser.release()
