# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.events",
#   "purpose": "Lifecycle notification events and the emission contract",
#   "sections": [
#     {"id": "eventkind", "name": "EventKind", "anchor": "class-eventkind", "kind": "class"},
#     {"id": "requestmeta", "name": "RequestMeta", "anchor": "class-requestmeta", "kind": "class"},
#     {"id": "notificationevent", "name": "NotificationEvent", "anchor": "class-notificationevent", "kind": "class"},
#     {"id": "diagnosticsink", "name": "DiagnosticSink", "anchor": "class-diagnosticsink", "kind": "class"},
#     {"id": "eventemitter", "name": "EventEmitter", "anchor": "class-eventemitter", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Lifecycle notification events and the emission contract.

The transport emits exactly one :class:`NotificationEvent` per lifecycle step
(serialization, attempt start, attempt end, deserialization, retry, sniff,
resurrect) to a caller-owned :class:`DiagnosticSink`. Emission is synchronous
and purely observational: a sink that raises is logged and ignored, so it can
never alter control flow. There is no implicit global registry; each
transport owns the emitter it was constructed with.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Lifecycle steps that produce a notification."""

    SERIALIZATION = "serialization"
    REQUEST = "request"
    RESPONSE = "response"
    DESERIALIZATION = "deserialization"
    RETRY = "retry"
    SNIFF = "sniff"
    RESURRECT = "resurrect"


@dataclass
class RequestMeta:
    """Per-call metadata carried by events, responses and errors."""

    request_id: Any
    name: str
    context: Any = None
    method: str = "GET"
    path: str = "/"
    node_id: Optional[str] = None
    attempts: int = 0
    aborted: bool = False
    sniff_reason: Optional[str] = None
    sniff_hosts: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class NotificationEvent:
    """One notification delivered to the sink."""

    kind: EventKind
    error: Optional[BaseException]
    meta: Optional[RequestMeta]
    context: Dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)


class DiagnosticSink(Protocol):
    """Protocol for consuming lifecycle notifications (logging, metrics)."""

    def emit(self, event: NotificationEvent) -> None: ...


class EventEmitter:
    """Delivers events to an optional sink, shielding callers from sink failures."""

    def __init__(self, sink: Optional[DiagnosticSink] = None) -> None:
        self.sink = sink

    def emit(
        self,
        kind: EventKind,
        error: Optional[BaseException] = None,
        meta: Optional[RequestMeta] = None,
        **context: Any,
    ) -> NotificationEvent:
        event = NotificationEvent(kind=kind, error=error, meta=meta, context=context)
        logger.debug(
            "transport.%s",
            kind.value,
            extra={
                "event_kind": kind.value,
                "request_id": getattr(meta, "request_id", None),
                "node_id": getattr(meta, "node_id", None),
                "error": type(error).__name__ if error is not None else None,
            },
        )
        if self.sink is not None:
            try:
                self.sink.emit(event)
            except Exception:
                # Never fail the transport on telemetry
                logger.warning("Diagnostic sink raised on %s event", kind.value, exc_info=True)
        return event


class RecordingSink:
    """Sink that keeps every event in memory; handy for tests and debugging."""

    def __init__(self) -> None:
        self.events: List[NotificationEvent] = []

    def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[EventKind]:
        return [event.kind for event in self.events]

    def of_kind(self, kind: EventKind) -> List[NotificationEvent]:
        return [event for event in self.events if event.kind is kind]


__all__ = [
    "EventKind",
    "RequestMeta",
    "NotificationEvent",
    "DiagnosticSink",
    "EventEmitter",
    "RecordingSink",
]
