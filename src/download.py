"""Artifact downloads: preloaded image tarballs and Kubernetes binaries.

Downloads stream to a temporary file next to the destination, are verified
against the published checksum, then renamed into place so a partial file
is never mistaken for a cached artifact.
"""

import base64
import hashlib
import logging
import os
import platform
import time
from pathlib import Path
from typing import Optional

import requests

logger = logging.getLogger(__name__)

PRELOAD_VERSION = 'v3'
PRELOAD_BUCKET = 'minikube-preloaded-volume-tarballs'
KUBERNETES_RELEASE_URL = 'https://storage.googleapis.com/kubernetes-release/release'

_ARCH = {'x86_64': 'amd64', 'amd64': 'amd64', 'aarch64': 'arm64', 'arm64': 'arm64'}

CHUNK_SIZE = 1024 * 1024
HTTP_TIMEOUT = 30


class DownloadError(Exception):
    """Download or verification failure."""


def host_arch() -> str:
    """Release architecture name for this host, defaulting to amd64."""
    return _ARCH.get(platform.machine().lower(), 'amd64')


def tarball_name(k8s_version: str, container_runtime: str) -> str:
    return (f'preloaded-images-k8s-{PRELOAD_VERSION}-{k8s_version}-{container_runtime}'
            f'-overlay2-{host_arch()}.tar.lz4')


def tarball_path(cache_dir: Path, k8s_version: str, container_runtime: str) -> Path:
    """Local path of the preload tarball."""
    return cache_dir / 'preloaded-tarball' / tarball_name(k8s_version, container_runtime)


def remote_tarball_url(k8s_version: str, container_runtime: str) -> str:
    return f'https://storage.googleapis.com/{PRELOAD_BUCKET}/{tarball_name(k8s_version, container_runtime)}'


def preload_exists(k8s_version: str, container_runtime: str, cache_dir: Path) -> bool:
    """True if a preload tarball is available locally or remotely.

    Only the docker runtime has preload tarballs.
    """
    if container_runtime != 'docker':
        return False

    if tarball_path(cache_dir, k8s_version, container_runtime).exists():
        return True

    url = remote_tarball_url(k8s_version, container_runtime)
    try:
        resp = requests.head(url, timeout=HTTP_TIMEOUT, allow_redirects=True)
    except requests.exceptions.RequestException as e:
        logger.info(f"Unable to check preload at {url}: {e}")
        return False
    logger.info(f"Found remote preload: {url}" if resp.status_code == 200
                else f"{url} status code: {resp.status_code}")
    return resp.status_code == 200


def _remote_md5(k8s_version: str, container_runtime: str) -> Optional[str]:
    """Hex MD5 of the preload object from the bucket metadata, if published."""
    name = tarball_name(k8s_version, container_runtime)
    url = f'https://storage.googleapis.com/storage/v1/b/{PRELOAD_BUCKET}/o/{name}'
    try:
        resp = requests.get(url, timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
        md5_b64 = resp.json().get('md5Hash')
        if not md5_b64:
            return None
        return base64.b64decode(md5_b64, validate=True).hex()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.warning(f"Unable to fetch checksum for {name}: {e}")
        return None


def download_file(url: str, dest: Path, checksum: Optional[str] = None, algorithm: str = 'sha256') -> Path:
    """Stream url to dest, verifying the hex digest when given.

    Raises:
        DownloadError: On HTTP errors or checksum mismatch
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + '.download')
    digest = hashlib.new(algorithm)
    start = time.time()

    logger.info(f"Downloading {url} -> {dest}")
    try:
        with requests.get(url, stream=True, timeout=HTTP_TIMEOUT) as resp:
            resp.raise_for_status()
            with open(tmp, 'wb') as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
                    digest.update(chunk)
    except (requests.exceptions.RequestException, OSError) as e:
        tmp.unlink(missing_ok=True)
        raise DownloadError(f"download {url}: {e}") from e

    if checksum and digest.hexdigest() != checksum.lower():
        tmp.unlink(missing_ok=True)
        raise DownloadError(
            f"checksum mismatch for {url}: expected {checksum}, got {digest.hexdigest()}"
        )

    tmp.replace(dest)
    logger.info(f"duration metric: downloaded {dest.name} in {time.time() - start:.1f}s")
    return dest


def preload(k8s_version: str, container_runtime: str, cache_dir: Path) -> Path:
    """Download and verify the preload tarball unless it is already cached."""
    target = tarball_path(cache_dir, k8s_version, container_runtime)
    if target.exists():
        logger.info(f"Found {target} in cache, skipping download")
        return target

    checksum = _remote_md5(k8s_version, container_runtime)
    return download_file(
        remote_tarball_url(k8s_version, container_runtime), target,
        checksum=checksum, algorithm='md5',
    )


def binary_path(cache_dir: Path, name: str, version: str, goos: str = 'linux') -> Path:
    return cache_dir / goos / version / name


def binary(name: str, version: str, cache_dir: Path, goos: str = 'linux', arch: str = 'amd64') -> Path:
    """Download a Kubernetes release binary (kubeadm, kubelet, kubectl)."""
    target = binary_path(cache_dir, name, version, goos)
    if target.exists():
        logger.debug(f"{target} already cached")
        return target

    url = f'{KUBERNETES_RELEASE_URL}/{version}/bin/{goos}/{arch}/{name}'
    try:
        resp = requests.get(f'{url}.sha256', timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
        checksum = resp.text.split()[0] if resp.text.strip() else None
    except requests.exceptions.RequestException as e:
        raise DownloadError(f"fetch checksum for {name} {version}: {e}") from e

    download_file(url, target, checksum=checksum, algorithm='sha256')
    os.chmod(target, 0o755)
    return target
