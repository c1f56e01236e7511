"""Copy user-provided files from the minikube home into a machine.

- {minikube_home}/files/<path> is copied to /<path> in the guest
- {minikube_home}/certs/*.pem and *.crt are copied into the guest CA directory
"""

import logging
from pathlib import Path

from command import CommandRunner, FileAsset
from constants import GUEST_CERT_AUTH_DIR

logger = logging.getLogger(__name__)

CERT_SUFFIXES = ('.pem', '.crt')


def local_assets(minikube_home: Path) -> list[FileAsset]:
    """Assets to copy, in a stable order."""
    assets = []

    files_dir = minikube_home / 'files'
    if files_dir.is_dir():
        for path in sorted(p for p in files_dir.rglob('*') if p.is_file()):
            rel = path.relative_to(files_dir)
            target_dir = '/' + str(rel.parent) if str(rel.parent) != '.' else '/'
            assets.append(FileAsset(source=path, target_dir=target_dir, target_name=path.name))

    certs_dir = minikube_home / 'certs'
    if certs_dir.is_dir():
        for path in sorted(certs_dir.iterdir()):
            if path.is_file() and path.suffix in CERT_SUFFIXES:
                assets.append(FileAsset(source=path, target_dir=GUEST_CERT_AUTH_DIR, target_name=path.name))

    return assets


def sync_local_assets(runner: CommandRunner, minikube_home: Path) -> int:
    """Copy every local asset into the machine.

    Returns:
        Number of files copied

    Raises:
        RunError: On the first copy that fails
    """
    assets = local_assets(minikube_home)
    for asset in assets:
        logger.info(f"local asset: {asset.source} -> {asset.target_path}")
        runner.copy(asset)
    return len(assets)
