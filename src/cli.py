#!/usr/bin/env python3
"""CLI entry point for minikube-lifecycle.

Verbs:
- start: Create or reuse the machines of a cluster profile
- status: Report host state per node
- delete: Remove a profile's machines and its configuration
- mount: Mount helper spawned by `start --mount` (not for direct use)

Examples:
    minikube-lifecycle start -p dev --driver docker --nodes 2
    minikube-lifecycle start --download-only
    minikube-lifecycle status -p dev --output json
    minikube-lifecycle delete -p dev
"""

import argparse
import json
import logging
import signal
import sys
import threading
from importlib.metadata import PackageNotFoundError, version as package_version

from common import is_child_process
from config import (
    ClusterConfig,
    ConfigError,
    KubernetesConfig,
    Node,
    Settings,
    load_global_config,
    load_profile,
    machine_name,
    profile_exists,
)
from constants import DEFAULT_PROFILE
from driver import default_registry
from errors import MinikubeError
from machine import HostStore, LocalClient
from machine.delete import delete_cluster
from machine.status import CLUSTER_NOT_RUNNING_FLAG, HOST_NOT_RUNNING_FLAG, cluster_status, exit_code
from node.mount import configure_mounts, default_mount_string, run_mount
from node.start import start_cluster

logger = logging.getLogger(__name__)

VERB_COMMANDS = {
    "start": "Create or reuse the machines of a cluster profile",
    "status": "Report host state per node",
    "delete": "Remove a profile's machines and its configuration",
}

EXIT_FAILURE = 1
EXIT_USAGE = 2

# config.yaml key -> ClusterConfig / KubernetesConfig field
_GLOBAL_KEYS = {
    'driver': 'driver',
    'cpus': 'cpus',
    'memory': 'memory',
    'disk-size': 'disk_size',
    'base-image': 'kic_base_image',
}
_GLOBAL_K8S_KEYS = {
    'kubernetes-version': 'kubernetes_version',
    'container-runtime': 'container_runtime',
    'image-repository': 'image_repository',
}


def get_version() -> str:
    try:
        return package_version('minikube-lifecycle')
    except PackageNotFoundError:
        return 'dev'


def _setup_logging(verb: str, verbose: bool, settings: Settings) -> None:
    """Configure logging; helper processes log to a file under the minikube home."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers = None
    if is_child_process():
        settings.logs_dir.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(settings.logs_dir / f'{verb}.log', encoding='utf-8')]
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
        force=True,
    )


def _common_parser(verb: str, description: str) -> argparse.ArgumentParser:
    """Build argument parser with the options shared by every verb."""
    parser = argparse.ArgumentParser(prog=f'minikube-lifecycle {verb}', description=description)
    parser.add_argument(
        '--profile', '-p',
        default=DEFAULT_PROFILE,
        help=f'Profile (cluster) name (default: {DEFAULT_PROFILE})',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _report_error(err: Exception) -> int:
    """Print an error and return the exit code for it."""
    print(f"Error: {err}", file=sys.stderr)
    if isinstance(err, MinikubeError):
        if err.remediation:
            print(f"  {err.remediation}", file=sys.stderr)
        if err.needs_user_action:
            return EXIT_USAGE
    return EXIT_FAILURE


def _client(settings: Settings) -> LocalClient:
    return LocalClient(default_registry(), HostStore(settings.machines_dir))


def _build_cluster_config(args, settings: Settings, registry) -> ClusterConfig:
    """Merge defaults, config.yaml, an existing profile and flags, in that order.

    Raises:
        ConfigError: If no driver is usable
    """
    if profile_exists(args.profile, settings):
        cc = load_profile(args.profile, settings)
    else:
        cc = ClusterConfig(name=args.profile, kubernetes_config=KubernetesConfig(cluster_name=args.profile))
        defaults = load_global_config(settings)
        for key, attr in _GLOBAL_KEYS.items():
            if key in defaults:
                setattr(cc, attr, defaults[key])
        for key, attr in _GLOBAL_K8S_KEYS.items():
            if key in defaults:
                setattr(cc.kubernetes_config, attr, defaults[key])

    for attr in ('driver', 'cpus', 'memory', 'disk_size'):
        value = getattr(args, attr)
        if value is not None:
            setattr(cc, attr, value)
    if args.base_image:
        cc.kic_base_image = args.base_image
    if args.kubernetes_version:
        cc.kubernetes_config.kubernetes_version = args.kubernetes_version
    if args.container_runtime:
        cc.kubernetes_config.container_runtime = args.container_runtime
    if args.image_repository is not None:
        cc.kubernetes_config.image_repository = args.image_repository
    cc.docker_env = cc.docker_env + args.docker_env
    cc.docker_opt = cc.docker_opt + args.docker_opt
    cc.insecure_registry = cc.insecure_registry + args.insecure_registry
    cc.registry_mirror = cc.registry_mirror + args.registry_mirror

    if not cc.driver:
        chosen = registry.choose()
        if chosen is None:
            raise ConfigError("No usable driver found. Install docker or pass --driver")
        logger.info(f"Automatically selected the {chosen.name} driver")
        cc.driver = chosen.name

    k8s_version = cc.kubernetes_config.kubernetes_version
    if not cc.nodes:
        cc.nodes = [Node(name='', kubernetes_version=k8s_version, control_plane=True, worker=True)]
    for i in range(len(cc.nodes) + 1, (args.nodes or 0) + 1):
        cc.nodes.append(Node(name=f'm{i:02d}', kubernetes_version=k8s_version, control_plane=False, worker=True))
    for node in cc.nodes:
        node.kubernetes_version = k8s_version
    return cc


def start_main(argv: list) -> int:
    """Handle 'start' verb."""
    parser = _common_parser('start', 'Create or reuse the machines of a cluster profile')
    parser.add_argument('--driver', help='Driver name (default: auto-select)')
    parser.add_argument('--cpus', type=int, help='Number of CPUs per node')
    parser.add_argument('--memory', type=int, help='Memory per node in MB')
    parser.add_argument('--disk-size', dest='disk_size', type=int, help='Disk size per node in MB')
    parser.add_argument('--kubernetes-version', help='Kubernetes version, e.g. v1.18.3')
    parser.add_argument('--container-runtime', help='docker, containerd or cri-o')
    parser.add_argument('--image-repository', help='Alternative registry for Kubernetes images')
    parser.add_argument('--base-image', help='Base image for container nodes')
    parser.add_argument('--docker-env', action='append', default=[], metavar='KEY=VALUE',
                        help='Environment for the container engine (repeatable)')
    parser.add_argument('--docker-opt', action='append', default=[],
                        help='Extra container engine flag (repeatable)')
    parser.add_argument('--insecure-registry', action='append', default=[],
                        help='Insecure registry to allow (repeatable)')
    parser.add_argument('--registry-mirror', action='append', default=[],
                        help='Registry mirror (repeatable)')
    parser.add_argument('--nodes', '-n', type=int, help='Number of nodes')
    parser.add_argument('--cache-images', dest='cache_images', action='store_true', default=None,
                        help='Cache Kubernetes images in the background (default)')
    parser.add_argument('--no-cache-images', dest='cache_images', action='store_false',
                        help='Do not cache Kubernetes images')
    parser.add_argument('--download-only', action='store_true',
                        help='Download artifacts and exit without creating machines')
    parser.add_argument('--mount', action='store_true',
                        help='Mount a host directory into the control plane')
    parser.add_argument('--mount-string', default=default_mount_string(),
                        help='<host dir>:<guest dir> for --mount')
    parser.add_argument('--create-timeout', type=float, help='Seconds allowed for machine creation')
    args = parser.parse_args(argv)

    overrides = {'download_only': args.download_only}
    if args.create_timeout is not None:
        overrides['create_timeout'] = args.create_timeout
    settings = Settings.from_env(**overrides)
    if args.cache_images is not None:
        settings.cache_images = args.cache_images
    _setup_logging('start', args.verbose, settings)

    api = _client(settings)
    try:
        cc = _build_cluster_config(args, settings, api.registry)
        print(f"minikube-lifecycle {get_version()}: starting profile {cc.name!r} with the {cc.driver} driver")
        results = start_cluster(api, cc, settings)
    except (MinikubeError, ConfigError) as e:
        return _report_error(e)

    if results is None:
        print("Download complete!")
        return 0

    for host, existed in results:
        print(f"  {host.name}: {'updated existing machine' if existed else 'created'}")
    if args.mount:
        try:
            configure_mounts(args.mount_string, cc.name, settings.minikube_home, verbose=args.verbose)
        except OSError as e:
            return _report_error(e)
    print(f"Done! Profile {cc.name!r} is ready")
    return 0


def status_main(argv: list) -> int:
    """Handle 'status' verb."""
    parser = _common_parser('status', 'Report host state per node')
    parser.add_argument('--output', '-o', choices=['text', 'json'], default='text', help='Output format')
    args = parser.parse_args(argv)
    settings = Settings.from_env()
    _setup_logging('status', args.verbose, settings)

    try:
        cc = load_profile(args.profile, settings)
    except ConfigError as e:
        print(f"Profile {args.profile!r} not found: {e}", file=sys.stderr)
        return HOST_NOT_RUNNING_FLAG | CLUSTER_NOT_RUNNING_FLAG

    statuses = cluster_status(_client(settings), cc)
    if args.output == 'json':
        data = [s.to_dict() for s in statuses]
        print(json.dumps(data[0] if len(data) == 1 else data, indent=2))
    else:
        for status in statuses:
            print(status.name)
            print(f"type: {'Control Plane' if status.control_plane else 'Worker'}")
            print(f"host: {status.host}")
            print()
    return exit_code(statuses)


def delete_main(argv: list) -> int:
    """Handle 'delete' verb."""
    parser = _common_parser('delete', "Remove a profile's machines and its configuration")
    args = parser.parse_args(argv)
    settings = Settings.from_env()
    _setup_logging('delete', args.verbose, settings)

    try:
        cc = load_profile(args.profile, settings)
    except ConfigError:
        logger.info(f"Profile {args.profile!r} not found, deleting its machine only")
        cc = ClusterConfig(name=args.profile, nodes=[Node()])

    try:
        removed = delete_cluster(_client(settings), cc, settings)
    except MinikubeError as e:
        return _report_error(e)
    print(f"Removed {len(removed)} machine(s) for profile {cc.name!r}")
    return 0


def mount_main(argv: list) -> int:
    """Handle 'mount' verb (spawned by start --mount)."""
    parser = _common_parser('mount', 'Keep a guest directory in sync with a host directory')
    parser.add_argument('mount_string', help='<host dir>:<guest dir>')
    args = parser.parse_args(argv)
    settings = Settings.from_env()
    _setup_logging('mount', args.verbose, settings)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        cc = load_profile(args.profile, settings)
        api = _client(settings)
        host = api.load(machine_name(cc, cc.control_plane()))
        run_mount(api.command_runner(host), args.mount_string, stop=stop)
    except KeyboardInterrupt:
        return 0
    except (MinikubeError, ConfigError, ValueError) as e:
        logger.error(f"mount failed: {e}")
        return _report_error(e)
    return 0


_VERBS = {
    'start': start_main,
    'status': status_main,
    'delete': delete_main,
    'mount': mount_main,
}


def print_usage():
    """Print top-level usage showing verbs."""
    print(f"minikube-lifecycle {get_version()}")
    print()
    print("Usage: minikube-lifecycle <command> [options]")
    print()
    print("Commands:")
    for verb, desc in VERB_COMMANDS.items():
        print(f"  {verb:<10} {desc}")
    print()
    print("Run 'minikube-lifecycle <command> --help' for command-specific options.")


def main(argv: list = None) -> int:
    """CLI entry point: dispatch to verb handlers."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0
    if argv[0] == '--version':
        print(f"minikube-lifecycle {get_version()}")
        return 0

    handler = _VERBS.get(argv[0])
    if handler is None:
        print(f"Error: Unknown command '{argv[0]}'")
        print_usage()
        return 1
    return handler(argv[1:])


if __name__ == '__main__':
    sys.exit(main())
