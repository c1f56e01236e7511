"""Artifact cache coordination.

Slow downloads (preload tarball, Kubernetes images, the KIC base image) run
in task groups while the machine is being created. The start flow rejoins
them at explicit waits:

- wait_download_kic_artifacts: before the machine is created; a registry
  authentication failure is escalated, anything else is logged
- wait_cache_images: after the machine is up; failures are logged only
"""

import logging
import platform
from typing import Callable, Optional

import download
import image
from common import unique
from config import ClusterConfig, Settings, image_cache_list
from driver import kic
from driver.registry import Kind
from errors import ErrorKind, MinikubeError, wrap
from machine import cache as machine_cache
from tasks import TaskGroup, TaskGroupError

logger = logging.getLogger(__name__)

AUTH_REMEDIATION = "Please either authenticate to the registry or use --base-image flag to use a different registry."


def begin_cache_images(group: TaskGroup, image_repository: str, k8s_version: str,
                       container_runtime: str, settings: Settings) -> None:
    """Fetch the preload tarball, or enqueue per-image caching.

    A successful preload makes individual image caching redundant.
    """
    if not image_repository and settings.preload and \
            download.preload_exists(k8s_version, container_runtime, settings.cache_dir):
        logger.info("Caching tarball of preloaded images")
        try:
            download.preload(k8s_version, container_runtime, settings.cache_dir)
            logger.info(f"Finished verifying existence of preloaded tar for {k8s_version} on {container_runtime}")
            return
        except download.DownloadError as e:
            logger.warning(f"Error downloading preloaded artifacts will continue without preload: {e}")

    if not settings.cache_images:
        return

    group.go(machine_cache.cache_images_for_bootstrapper, image_repository, k8s_version, settings,
             name='cache-images-for-bootstrapper')


def wait_cache_images(group: TaskGroup, settings: Settings,
                      on_error: Optional[Callable[[TaskGroupError], None]] = None) -> None:
    """Wait for image caching. Failures are logged and never raised."""
    if not settings.cache_images:
        return
    try:
        group.wait()
    except TaskGroupError as e:
        logger.error(f"Error caching images: {e}")
        if on_error is not None:
            on_error(e)


def base_image_candidates(cc: ClusterConfig) -> list[str]:
    """Base image references to try, in order."""
    return unique([cc.kic_base_image or kic.BASE_IMAGE, kic.BASE_IMAGE_FALLBACK_1, kic.BASE_IMAGE_FALLBACK_2])


def pull_base_image(candidates: list[str], oci_binary: str = 'docker') -> str:
    """Pull the first candidate that succeeds.

    Returns:
        The reference that was pulled

    Raises:
        MinikubeError: The last failure when every candidate fails
    """
    last_error: Optional[MinikubeError] = None
    for ref in candidates:
        logger.info(f"Downloading {ref} to local daemon")
        try:
            image.write_image_to_daemon(ref, oci_binary)
            return ref
        except MinikubeError as e:
            logger.info(f"failed to download base image {ref!r}: {e}")
            last_error = e
    if last_error is None:
        raise MinikubeError(ErrorKind.PROVISION, "no base image candidates")
    raise last_error


def begin_download_kic_artifacts(group: TaskGroup, cc: ClusterConfig, kind: Optional[Kind]) -> None:
    """Pull the KIC base image in the background unless it is already local."""
    logger.info(f"Beginning downloading kic artifacts for {cc.driver} with {cc.kubernetes_config.container_runtime}")
    if kind != Kind.KIC or cc.driver != 'docker':
        logger.info("Driver isn't docker, skipping base-image download")
        return

    if image.exists_image_in_daemon(cc.kic_base_image or kic.BASE_IMAGE):
        return

    logger.info("Pulling base image ...")
    group.go(pull_base_image, base_image_candidates(cc), name='kic-base-image')


def wait_download_kic_artifacts(group: TaskGroup) -> Optional[str]:
    """Wait for the base image download.

    Returns:
        The base image reference that was pulled, or None

    Raises:
        MinikubeError: REGISTRY_AUTH_REQUIRED when the registry rejected the
            pull for lack of credentials
    """
    try:
        results = group.wait()
    except TaskGroupError as e:
        for err in e.errors:
            if isinstance(err, MinikubeError) and err.kind == ErrorKind.REGISTRY_AUTH_REQUIRED:
                logger.warning(f"Error downloading kic artifacts: {err}")
                if not err.remediation:
                    err.remediation = AUTH_REMEDIATION
                raise err.wrap('download kic artifacts')
        logger.error(f"Error downloading kic artifacts: {e}")
        return None

    if results:
        logger.info("Successfully downloaded all kic artifacts")
        return results[0]
    return None


def cache_kubectl_binary(k8s_version: str, settings: Settings):
    """Download kubectl for this host."""
    goos = platform.system().lower()
    arch = download.host_arch()
    name = 'kubectl.exe' if goos == 'windows' else 'kubectl'
    return download.binary(name, k8s_version, settings.cache_dir, goos=goos, arch=arch)


def save_images_to_tar_from_config(settings: Settings) -> list[str]:
    """Save the images listed under `cache:` in config.yaml to the image cache."""
    images = image_cache_list(settings)
    if images:
        image.save_to_dir(images, settings.image_cache_dir)
    return images


def handle_download_only(cache_group: TaskGroup, kic_group: TaskGroup, k8s_version: str,
                         settings: Settings) -> bool:
    """Finish every download when running download-only.

    Returns:
        True when this was a download-only run and everything is cached;
        the caller stops there

    Raises:
        MinikubeError: If binaries or configured images cannot be cached
    """
    if not settings.download_only:
        return False

    try:
        machine_cache.cache_binaries_for_bootstrapper(k8s_version, settings)
    except Exception as e:
        raise wrap(e, 'Failed to cache binaries')
    try:
        cache_kubectl_binary(k8s_version, settings)
    except Exception as e:
        raise wrap(e, 'Failed to cache kubectl')

    wait_cache_images(cache_group, settings)
    wait_download_kic_artifacts(kic_group)

    try:
        save_images_to_tar_from_config(settings)
    except Exception as e:
        raise wrap(e, 'Failed to cache images to tar')

    logger.info("Download complete!")
    return True
