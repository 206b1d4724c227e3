# ruff: noqa: F401
import logging

from .call import Call
from .exceptions import InvalidStateError, SessionFullError
from .factory import PeerConnectionFactory
from .negotiator import PerfectNegotiator
from .relay import ConnectionRecord, RelayConfiguration, SignalingRelay
from .signaling import (
    BaseSignaling,
    Candidate,
    Role,
    RoleAssignment,
    WebSocketSignaling,
)

__version__ = "0.1.0"

# Set default logging handler to avoid "No handler found" warnings.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "BaseSignaling",
    "Call",
    "Candidate",
    "ConnectionRecord",
    "InvalidStateError",
    "PeerConnectionFactory",
    "PerfectNegotiator",
    "RelayConfiguration",
    "Role",
    "RoleAssignment",
    "SessionFullError",
    "SignalingRelay",
    "WebSocketSignaling",
]
