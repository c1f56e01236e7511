"""Structured errors for provisioning.

Every failure that leaves the orchestrator is a MinikubeError carrying an
ErrorKind plus a chain of context strings, outermost first:

    boot lock: acquire machines lock for "minikube": timed out after 900s

Callers branch on `kind`, never on message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of provisioning failures."""
    # Configuration errors: require user action, never retried
    UNSUPPORTED_DRIVER = 'unsupported_driver'
    CONFLICTING_RESOURCE = 'conflicting_resource'
    # Transient errors
    LOCK_TIMEOUT = 'lock_timeout'
    LOCK_ERROR = 'lock_error'
    PROVISION = 'provision'
    # Unknown outcome: the resource may or may not exist
    CREATE_TIMEOUT = 'create_timeout'
    # Registry authentication, needs user intervention
    REGISTRY_AUTH_REQUIRED = 'registry_auth_required'


_RETRYABLE = {ErrorKind.LOCK_TIMEOUT, ErrorKind.LOCK_ERROR, ErrorKind.PROVISION, ErrorKind.CREATE_TIMEOUT}
_USER_ACTION = {ErrorKind.UNSUPPORTED_DRIVER, ErrorKind.CONFLICTING_RESOURCE, ErrorKind.REGISTRY_AUTH_REQUIRED}


class MinikubeError(Exception):
    """Provisioning error with a kind and a context chain.

    Attributes:
        kind: ErrorKind classification
        message: Innermost error text
        context: Step names, outermost first
        remediation: Optional advice shown to the user
        host: Partially provisioned host, when one exists at failure time
    """

    def __init__(self, kind: ErrorKind, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.remediation = remediation
        self.context: list[str] = []
        self.host = None

    def wrap(self, context: str) -> 'MinikubeError':
        """Prepend a context string and return self."""
        self.context.insert(0, context)
        return self

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE

    @property
    def needs_user_action(self) -> bool:
        return self.kind in _USER_ACTION

    def __str__(self) -> str:
        return ': '.join(self.context + [self.message])


def wrap(err: BaseException, context: str) -> MinikubeError:
    """Wrap any exception with step context.

    A MinikubeError keeps its kind and gains the context. Anything else
    becomes a PROVISION error with the original exception as its cause.
    """
    if isinstance(err, MinikubeError):
        return err.wrap(context)
    wrapped = MinikubeError(ErrorKind.PROVISION, str(err) or type(err).__name__)
    wrapped.__cause__ = err
    return wrapped.wrap(context)
