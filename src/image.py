"""Container image operations through the local docker CLI."""

import logging
import re
from pathlib import Path

from common import run_command
from errors import ErrorKind, MinikubeError
from tasks import TaskGroup

logger = logging.getLogger(__name__)

# Registry responses that mean credentials are required, classified once here
_AUTH_PATTERNS = (
    re.compile(r'needs login', re.IGNORECASE),
    re.compile(r'unauthorized', re.IGNORECASE),
    re.compile(r'authentication required', re.IGNORECASE),
    re.compile(r'denied: requested access to the resource is denied', re.IGNORECASE),
)


def _is_auth_failure(output: str) -> bool:
    return any(p.search(output) for p in _AUTH_PATTERNS)


def tag_of(img: str) -> str:
    """Strip the digest from an image reference."""
    return img.split('@')[0]


def exists_image_in_daemon(img: str, oci_binary: str = 'docker') -> bool:
    """True if the image is already present in the local daemon."""
    rc, out, _ = run_command(
        [oci_binary, 'images', '--format', '{{.Repository}}:{{.Tag}}@{{.Digest}}'], timeout=60,
    )
    if rc == 0 and img in out:
        logger.info(f"Found {img} in local {oci_binary} daemon, skipping pull")
        return True
    return False


def write_image_to_daemon(img: str, oci_binary: str = 'docker', timeout: int = 1800) -> None:
    """Pull an image into the local daemon.

    Raises:
        MinikubeError: REGISTRY_AUTH_REQUIRED when the registry wants
            credentials, PROVISION for any other failure
    """
    logger.info(f"Writing {img} to local daemon")
    rc, out, err = run_command([oci_binary, 'pull', img], timeout=timeout)
    if rc == 0:
        return
    output = (err or out).strip()
    if _is_auth_failure(output):
        raise MinikubeError(
            ErrorKind.REGISTRY_AUTH_REQUIRED, f"pull {img}: {output}",
            remediation="Please either authenticate to the registry or use --base-image flag "
                        "to use a different registry.",
        )
    raise MinikubeError(ErrorKind.PROVISION, f"pull {img}: {output}")


def cache_path(cache_dir: Path, img: str) -> Path:
    """Local tarball path for an image: registry/repo_tag."""
    ref = tag_of(img)
    return cache_dir / ref.replace(':', '_')


def save_to_file(img: str, dest: Path, oci_binary: str = 'docker') -> Path:
    """Pull an image and save it as a tarball, skipping cached ones."""
    if dest.exists():
        logger.debug(f"{img} already cached at {dest}")
        return dest
    if not exists_image_in_daemon(img, oci_binary):
        write_image_to_daemon(img, oci_binary)
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + '.tmp')
    rc, _, err = run_command([oci_binary, 'save', '-o', str(tmp), tag_of(img)], timeout=600)
    if rc != 0:
        tmp.unlink(missing_ok=True)
        raise MinikubeError(ErrorKind.PROVISION, f"save {img}: {err.strip()}")
    tmp.replace(dest)
    return dest


def save_to_dir(images: list[str], cache_dir: Path, oci_binary: str = 'docker', concurrency: int = 4) -> None:
    """Save images to the cache directory with bounded concurrency.

    Raises:
        TaskGroupError: With every image that could not be saved
    """
    with TaskGroup('save-images', concurrency=concurrency) as group:
        for img in images:
            group.go(save_to_file, img, cache_path(cache_dir, img), oci_binary, name=img)
        group.wait()
