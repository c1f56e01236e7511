"""Shared constants."""

DEFAULT_PROFILE = 'minikube'
DEFAULT_KUBERNETES_VERSION = 'v1.18.3'
DEFAULT_CONTAINER_RUNTIME = 'docker'
DEFAULT_MEMORY = 4000  # MB
DEFAULT_CPUS = 2
DEFAULT_DISK_SIZE = 20000  # MB
MIN_USABLE_MEMORY = 1024  # Kubernetes will not start with less than 1GB

CONTAINER_RUNTIMES = ('docker', 'containerd', 'cri-o')

DEFAULT_SERVICE_CIDR = '10.96.0.0/12'
DEFAULT_ENGINE_INSTALL_URL = 'https://get.docker.com'

APISERVER_PORT = 8443
SSH_PORT = 22
DOCKER_DAEMON_PORT = 2376
REGISTRY_ADDON_PORT = 5000

# Set on helper processes spawned by minikube (e.g. the mount process)
IS_MINIKUBE_CHILD_PROCESS = 'IS_MINIKUBE_CHILD_PROCESS'
MOUNT_PROCESS_FILE_NAME = '.mount-process'

# Guest filesystem layout
GUEST_ADDONS_DIR = '/etc/kubernetes/addons'
GUEST_MANIFESTS_DIR = '/etc/kubernetes/manifests'
GUEST_EPHEMERAL_DIR = '/var/tmp/minikube'
GUEST_PERSISTENT_DIR = '/var/lib/minikube'
GUEST_KUBERNETES_CERTS_DIR = '/var/lib/minikube/certs'
GUEST_GVISOR_DIR = '/tmp/gvisor'
GUEST_CERT_AUTH_DIR = '/usr/share/ca-certificates'
GUEST_CERT_STORE_DIR = '/etc/ssl/certs'
