"""Phone-number verification client.

Signed-request protocol, operation services and the per-user
verification session state machine.
"""

from .environment import ClientEnvironment, Environment
from .events import EventSink, ListenerRegistry
from .exceptions import (
    ClientConfigError,
    LocalValidationError,
    NoDeviceIdError,
    ProtocolError,
    SignatureError,
    TransportError,
    VerifyClientError,
)
from .models import Command, OperationResult, ResultCode, SessionState, UserStatus, VerifyError
from .session import VerifySession

__all__ = [
    # Environment
    "ClientEnvironment",
    "Environment",
    # Events
    "EventSink",
    "ListenerRegistry",
    # Exceptions
    "ClientConfigError",
    "LocalValidationError",
    "NoDeviceIdError",
    "ProtocolError",
    "SignatureError",
    "TransportError",
    "VerifyClientError",
    # Models
    "Command",
    "OperationResult",
    "ResultCode",
    "SessionState",
    "UserStatus",
    "VerifyError",
    # Session
    "VerifySession",
]
