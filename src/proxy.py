"""Proxy settings forwarded to the container engine inside a machine."""

import logging
import os

logger = logging.getLogger(__name__)

PROXY_ENV_VARS = ('HTTP_PROXY', 'HTTPS_PROXY', 'NO_PROXY')


def docker_env(environ=None) -> list[str]:
    """Return KEY=value entries for the proxy variables set in the environment.

    Upper-case names win over lower-case ones.
    """
    environ = os.environ if environ is None else environ
    env = []
    for key in PROXY_ENV_VARS:
        value = environ.get(key) or environ.get(key.lower())
        if value:
            logger.debug(f"Forwarding {key} to the container engine")
            env.append(f'{key}={value}')
    return env
