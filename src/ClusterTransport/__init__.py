# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport",
#   "purpose": "Package initialization for ClusterTransport",
#   "sections": []
# }
# === /NAVMAP ===

"""Public API for the resilient cluster transport.

The facade exposes the orchestrator (:class:`Transport`), its building blocks
(connection pool, per-node connection, sniffer, selectors, resurrection
policy), the configuration models, the notification contract, and the error
taxonomy.
"""

from __future__ import annotations

from . import errors
from .cancellation import CancellationToken
from .config import (
    AuthOptions,
    ConnectionOptions,
    NodeSpec,
    ReuseOptions,
    TlsOptions,
    TransportConfig,
)
from .connection import Connection, RequestParams, Result
from .errors import (
    ConfigurationError,
    DeserializationError,
    NoLivingConnectionsError,
    RequestAbortedError,
    ResponseError,
    SerializationError,
    TransportError,
)
from .events import (
    DiagnosticSink,
    EventEmitter,
    EventKind,
    NotificationEvent,
    RecordingSink,
    RequestMeta,
)
from .logging_utils import setup_logging
from .pool import ConnectionPool, Node, NodeStatus, default_node_filter
from .resurrection import ResurrectionPolicy, ResurrectStrategy
from .selectors import CustomSelector, NodeSelector, RandomSelector, RoundRobinSelector
from .serializer import Serializer
from .sniffer import SniffReason, Sniffer
from .transport import CallState, Transport, TransportResponse

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "errors",
    "AuthOptions",
    "CallState",
    "CancellationToken",
    "ConfigurationError",
    "Connection",
    "ConnectionOptions",
    "ConnectionPool",
    "CustomSelector",
    "DeserializationError",
    "DiagnosticSink",
    "EventEmitter",
    "EventKind",
    "Node",
    "NodeSelector",
    "NodeSpec",
    "NodeStatus",
    "NoLivingConnectionsError",
    "NotificationEvent",
    "RandomSelector",
    "RecordingSink",
    "RequestAbortedError",
    "RequestMeta",
    "RequestParams",
    "ResponseError",
    "Result",
    "ResurrectStrategy",
    "ResurrectionPolicy",
    "ReuseOptions",
    "RoundRobinSelector",
    "SerializationError",
    "Serializer",
    "SniffReason",
    "Sniffer",
    "TlsOptions",
    "Transport",
    "TransportConfig",
    "TransportError",
    "TransportResponse",
    "default_node_filter",
    "setup_logging",
]
