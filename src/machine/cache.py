"""Cache Kubernetes images and binaries needed by the kubeadm bootstrapper."""

import logging
import time
from pathlib import Path

import download
import image
from config import Settings
from tasks import TaskGroup

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_REPOSITORY = 'k8s.gcr.io'
BOOTSTRAPPER_BINARIES = ('kubeadm', 'kubelet', 'kubectl')

# minor version -> (pause, etcd, coredns)
_COMPONENT_VERSIONS = {
    16: ('3.1', '3.3.15-0', '1.6.2'),
    17: ('3.1', '3.4.3-0', '1.6.5'),
    18: ('3.2', '3.4.3-0', '1.6.7'),
}
_LATEST_MINOR = max(_COMPONENT_VERSIONS)

AUXILIARY_IMAGES = [
    'gcr.io/k8s-minikube/storage-provisioner:v1.8.1',
    'kubernetesui/dashboard:v2.0.0',
    'kubernetesui/metrics-scraper:v1.0.4',
]


def _minor(version: str) -> int:
    parts = version.lstrip('v').split('.')
    try:
        return int(parts[1])
    except (IndexError, ValueError):
        return _LATEST_MINOR


def kubeadm_images(image_repository: str, version: str) -> list[str]:
    """Images kubeadm pulls for a Kubernetes version, plus minikube's own."""
    repo = image_repository or DEFAULT_IMAGE_REPOSITORY
    minor = _minor(version)
    pause, etcd, coredns = _COMPONENT_VERSIONS.get(
        min(minor, _LATEST_MINOR), _COMPONENT_VERSIONS[min(_COMPONENT_VERSIONS)],
    )
    images = [f'{repo}/{component}:{version}' for component in
              ('kube-proxy', 'kube-scheduler', 'kube-controller-manager', 'kube-apiserver')]
    images += [f'{repo}/coredns:{coredns}', f'{repo}/etcd:{etcd}', f'{repo}/pause:{pause}']
    return images + AUXILIARY_IMAGES


def cache_images_for_bootstrapper(image_repository: str, version: str, settings: Settings) -> list[str]:
    """Save the bootstrapper's images to the local image cache.

    Raises:
        TaskGroupError: With every image that could not be cached
    """
    start = time.time()
    images = kubeadm_images(image_repository, version)
    image.save_to_dir(images, settings.image_cache_dir)
    logger.info(f"duration metric: cached {len(images)} images in {time.time() - start:.1f}s")
    return images


def cache_binaries_for_bootstrapper(version: str, settings: Settings) -> list[Path]:
    """Download kubeadm, kubelet and kubectl for the guest.

    Raises:
        TaskGroupError: With every binary that failed to download
    """
    with TaskGroup('cache-binaries', concurrency=len(BOOTSTRAPPER_BINARIES)) as group:
        for name in BOOTSTRAPPER_BINARIES:
            group.go(download.binary, name, version, settings.cache_dir, name=name)
        return group.wait()
