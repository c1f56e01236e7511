"""Delete machines and their records."""

import logging
import os
import signal

from config import ClusterConfig, Settings, delete_profile, machine_name
from constants import MOUNT_PROCESS_FILE_NAME
from errors import wrap
from lock import machines_lock
from machine.store import HostNotFoundError

logger = logging.getLogger(__name__)


def delete_host(api, name: str, settings: Settings) -> bool:
    """Remove one machine's backend unit and host record under its lock.

    Returns:
        True if a machine was deleted, False if none existed
    """
    with machines_lock(name, settings.lock_dir, timeout=settings.lock_timeout):
        if not api.exists(name):
            logger.info(f"Machine {name} does not exist, nothing to delete")
            return False
        try:
            api.remove(name)
        except HostNotFoundError:
            return False
        except Exception as e:
            raise wrap(e, f'delete host {name}')
    logger.info(f"Removed machine {name}")
    return True


def kill_mount_process(settings: Settings) -> None:
    """Stop the mount helper recorded in the pid file, if any."""
    pid_file = settings.minikube_home / MOUNT_PROCESS_FILE_NAME
    if not pid_file.exists():
        return
    try:
        pid = int(pid_file.read_text().strip())
        os.kill(pid, signal.SIGTERM)
        logger.info(f"Stopped mount process {pid}")
    except ProcessLookupError:
        pass
    except (ValueError, OSError) as e:
        logger.warning(f"Unable to stop mount process: {e}")
    pid_file.unlink(missing_ok=True)


def delete_cluster(api, cc: ClusterConfig, settings: Settings) -> list[str]:
    """Delete every node of a cluster, then its profile.

    Returns:
        Names of the machines that were removed
    """
    kill_mount_process(settings)
    removed = []
    # Workers first, control plane last
    for node in sorted(cc.nodes, key=lambda n: n.control_plane):
        name = machine_name(cc, node)
        if delete_host(api, name, settings):
            removed.append(name)
    delete_profile(cc.name, settings)
    return removed
