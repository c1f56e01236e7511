"""Bring up the nodes of a cluster.

For each node, artifact downloads start first and run alongside machine
creation; download-only runs stop once everything is cached.
"""

import logging
import time
from typing import Optional

from config import ClusterConfig, Node, Settings, save_profile
from driver.registry import Kind
from errors import ErrorKind, MinikubeError
from machine.host import Host
from machine.start import start_host
from node import cache
from tasks import TaskGroup

logger = logging.getLogger(__name__)


def provision(api, cc: ClusterConfig, node: Node, settings: Settings) -> Optional[tuple[Host, bool]]:
    """Start one node's machine.

    Returns:
        (host, existed), or None after a completed download-only run

    Raises:
        MinikubeError: From the artifact waits or from start_host
    """
    kind = api.registry.kind(cc.driver)
    if kind is None:
        raise MinikubeError(
            ErrorKind.UNSUPPORTED_DRIVER, f"unsupported/missing driver: {cc.driver}",
            remediation=f"Choose one of: {', '.join(api.registry.names())}",
        )

    k8s_version = node.kubernetes_version or cc.kubernetes_config.kubernetes_version
    runtime = cc.kubernetes_config.container_runtime
    with TaskGroup('cache-images') as cache_group, TaskGroup('kic-artifacts') as kic_group:
        if kind == Kind.KIC:
            cache.begin_download_kic_artifacts(kic_group, cc, kind)
        if kind != Kind.BARE_METAL:
            cache.begin_cache_images(cache_group, cc.kubernetes_config.image_repository, k8s_version, runtime,
                                     settings)

        if cache.handle_download_only(cache_group, kic_group, k8s_version, settings):
            return None

        base_image = cache.wait_download_kic_artifacts(kic_group)
        if base_image and base_image != cc.kic_base_image:
            logger.info(f"Using base image {base_image}")
            cc = cc.copy(kic_base_image=base_image)

        result = start_host(api, cc, node, settings)
        cache.wait_cache_images(cache_group, settings)
        return result


def start_cluster(api, cc: ClusterConfig, settings: Settings) -> Optional[list[tuple[Host, bool]]]:
    """Save the profile and start every node, control plane first.

    Returns:
        One (host, existed) per node, or None for a download-only run
    """
    cc.validate()
    cc = cc.copy()
    save_profile(cc, settings)

    start = time.time()
    nodes = sorted(cc.nodes, key=lambda n: not n.control_plane)
    results = []
    for node in nodes:
        result = provision(api, cc, node, settings)
        if result is None:
            return None
        host, existed = result
        try:
            node.ip = host.driver.get_ip()
        except Exception as e:
            logger.warning(f"Unable to get IP of {host.name}: {e}")
        save_profile(cc, settings)
        results.append(result)
        logger.info(f"{'Restarted existing' if existed else 'Created'} machine {host.name}")

    logger.info(f"duration metric: started {len(results)} node(s) in {time.time() - start:.1f}s")
    return results
