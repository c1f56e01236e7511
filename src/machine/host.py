"""Host records: what minikube knows about one machine."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from constants import DEFAULT_ENGINE_INSTALL_URL

HOST_CONFIG_VERSION = 3


@dataclass
class AuthOptions:
    """Certificate locations for a machine.

    Every node of every cluster shares the single cert directory under the
    minikube home.
    """
    cert_dir: str = ''
    store_path: str = ''

    @classmethod
    def for_home(cls, minikube_home: Path) -> 'AuthOptions':
        return cls(cert_dir=str(minikube_home), store_path=str(minikube_home))

    @property
    def ca_cert_path(self) -> str:
        return str(Path(self.cert_dir) / 'certs' / 'ca.pem')

    @property
    def ca_private_key_path(self) -> str:
        return str(Path(self.cert_dir) / 'certs' / 'ca-key.pem')

    @property
    def client_cert_path(self) -> str:
        return str(Path(self.cert_dir) / 'certs' / 'cert.pem')

    @property
    def client_key_path(self) -> str:
        return str(Path(self.cert_dir) / 'certs' / 'key.pem')

    @property
    def server_cert_path(self) -> str:
        return str(Path(self.store_path) / 'machines' / 'server.pem')

    @property
    def server_key_path(self) -> str:
        return str(Path(self.store_path) / 'machines' / 'server-key.pem')

    def to_dict(self) -> dict:
        return {
            'cert_dir': self.cert_dir,
            'store_path': self.store_path,
            'ca_cert_path': self.ca_cert_path,
            'ca_private_key_path': self.ca_private_key_path,
            'client_cert_path': self.client_cert_path,
            'client_key_path': self.client_key_path,
            'server_cert_path': self.server_cert_path,
            'server_key_path': self.server_key_path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AuthOptions':
        return cls(cert_dir=data.get('cert_dir', ''), store_path=data.get('store_path', ''))


@dataclass
class EngineOptions:
    """Container engine settings applied inside a machine."""
    env: list = field(default_factory=list)
    insecure_registry: list = field(default_factory=list)
    registry_mirror: list = field(default_factory=list)
    arbitrary_flags: list = field(default_factory=list)
    install_url: str = DEFAULT_ENGINE_INSTALL_URL

    def to_dict(self) -> dict:
        return {
            'env': list(self.env),
            'insecure_registry': list(self.insecure_registry),
            'registry_mirror': list(self.registry_mirror),
            'arbitrary_flags': list(self.arbitrary_flags),
            'install_url': self.install_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'EngineOptions':
        return cls(
            env=list(data.get('env') or []),
            insecure_registry=list(data.get('insecure_registry') or []),
            registry_mirror=list(data.get('registry_mirror') or []),
            arbitrary_flags=list(data.get('arbitrary_flags') or []),
            install_url=data.get('install_url', DEFAULT_ENGINE_INSTALL_URL),
        )


@dataclass
class Host:
    """One machine.

    Attributes:
        name: Machine name (also the lock and store key)
        driver_name: Registry name of the driver
        driver_config: Driver-specific configuration
        auth_options: Certificate locations
        engine_options: Container engine settings
        driver: Live driver object, attached on creation or load, never saved
    """
    name: str
    driver_name: str
    driver_config: dict = field(default_factory=dict)
    auth_options: AuthOptions = field(default_factory=AuthOptions)
    engine_options: EngineOptions = field(default_factory=EngineOptions)
    driver: Optional[Any] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        driver_config = self.driver.to_dict() if self.driver is not None else self.driver_config
        return {
            'config_version': HOST_CONFIG_VERSION,
            'name': self.name,
            'driver_name': self.driver_name,
            'driver': driver_config,
            'auth_options': self.auth_options.to_dict(),
            'engine_options': self.engine_options.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Host':
        return cls(
            name=data['name'],
            driver_name=data['driver_name'],
            driver_config=dict(data.get('driver') or {}),
            auth_options=AuthOptions.from_dict(data.get('auth_options') or {}),
            engine_options=EngineOptions.from_dict(data.get('engine_options') or {}),
        )
