# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.errors",
#   "purpose": "Error taxonomy shared by connections, the pool and the orchestrator",
#   "sections": [
#     {"id": "transporterror", "name": "TransportError", "anchor": "class-transporterror", "kind": "class"},
#     {"id": "configurationerror", "name": "ConfigurationError", "anchor": "class-configurationerror", "kind": "class"},
#     {"id": "serializationerror", "name": "SerializationError", "anchor": "class-serializationerror", "kind": "class"},
#     {"id": "deserializationerror", "name": "DeserializationError", "anchor": "class-deserializationerror", "kind": "class"},
#     {"id": "connectionerror", "name": "ConnectionError", "anchor": "class-connectionerror", "kind": "class"},
#     {"id": "timeouterror", "name": "TimeoutError", "anchor": "class-timeouterror", "kind": "class"},
#     {"id": "requestabortederror", "name": "RequestAbortedError", "anchor": "class-requestabortederror", "kind": "class"},
#     {"id": "nolivingconnectionserror", "name": "NoLivingConnectionsError", "anchor": "class-nolivingconnectionserror", "kind": "class"},
#     {"id": "responseerror", "name": "ResponseError", "anchor": "class-responseerror", "kind": "class"},
#     {"id": "is-retriable", "name": "is_retriable", "anchor": "function-is-retriable", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy for the cluster transport.

Every failure surfaced to a caller is a :class:`TransportError`. The concrete
kinds tell the caller whether the outcome was retriable without having to
inspect transport internals:

- ``ConnectionError`` / ``TimeoutError``: transport-level faults. The
  orchestrator recovers from them locally (dead-marking + retry against
  another node) and only surfaces the last one once the retry budget is spent.
- ``RequestAbortedError``: caller cancellation or a response exceeding a hard
  size cap. Never retried; node liveness is untouched.
- ``NoLivingConnectionsError``: the pool had nothing usable for this call.
- ``ResponseError``: the node answered with an application-level error status.
- ``ConfigurationError``: raised at construction only, never at request time.
- ``SerializationError`` / ``DeserializationError``: body codec failures.

The names ``ConnectionError`` and ``TimeoutError`` intentionally mirror the
failure kinds; import the module (``from ClusterTransport import errors``)
rather than the bare names to keep the builtins visible.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .connection import Result
    from .events import RequestMeta

__all__ = (
    "TransportError",
    "ConfigurationError",
    "SerializationError",
    "DeserializationError",
    "ConnectionError",
    "TimeoutError",
    "RequestAbortedError",
    "NoLivingConnectionsError",
    "ResponseError",
    "is_retriable",
)


class TransportError(Exception):
    """Base class for every error raised by the cluster transport."""

    default_message = "Transport Error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        meta: Optional["RequestMeta"] = None,
        result: Optional["Result"] = None,
    ) -> None:
        self.message = message if message is not None else self.default_message
        super().__init__(self.message)
        self.meta = meta
        self.result = result

    @property
    def node_id(self) -> Optional[str]:
        if self.result is not None:
            return self.result.node_id
        if self.meta is not None:
            return self.meta.node_id
        return None

    @property
    def status_code(self) -> Optional[int]:
        return self.result.status_code if self.result is not None else None

    @property
    def headers(self) -> Optional[Mapping[str, str]]:
        return self.result.headers if self.result is not None else None

    @property
    def raw_body(self) -> Optional[bytes]:
        return self.result.body if self.result is not None else None

    def __str__(self) -> str:
        return self.message


class ConfigurationError(TransportError):
    """Invalid or conflicting construction options."""

    default_message = "Configuration Error"


class SerializationError(TransportError):
    """The request body could not be encoded."""

    default_message = "Serialization Error"

    def __init__(self, message: Optional[str] = None, *, data: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.data = data


class DeserializationError(TransportError):
    """The response body could not be decoded; ``data`` keeps the raw payload."""

    default_message = "Deserialization Error"

    def __init__(
        self, message: Optional[str] = None, *, data: bytes = b"", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        self.data = data


class ConnectionError(TransportError):  # noqa: A001
    """Transport-level failure: resolution, reset, premature close."""

    default_message = "Connection Error"


class TimeoutError(TransportError):  # noqa: A001
    """The attempt exceeded its deadline."""

    default_message = "Request timed out"


class RequestAbortedError(TransportError):
    """The caller cancelled the call, or the response exceeded a hard size cap."""

    default_message = "Request aborted"


class NoLivingConnectionsError(TransportError):
    """The pool could not produce a usable connection for this call."""

    default_message = (
        "Given the configuration, the ConnectionPool was not able to find a usable "
        "Connection for this request."
    )

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        last_error: Optional[TransportError] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.last_error = last_error


class ResponseError(TransportError):
    """A completed exchange whose status code is an application-level error."""

    default_message = "Response Error"

    def __init__(self, result: "Result", *, body: Any = None, meta: Optional["RequestMeta"] = None):
        super().__init__(_error_type(body), meta=meta, result=result)
        self.body = body

    @property
    def status_code(self) -> Optional[int]:
        if isinstance(self.body, dict) and isinstance(self.body.get("status"), int):
            return self.body["status"]
        return super().status_code


def _error_type(body: Any) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("type"), str):
            return error["type"]
    return ResponseError.default_message


def is_retriable(error: BaseException) -> bool:
    """Return True for the failure kinds the orchestrator retries."""
    return isinstance(error, (ConnectionError, TimeoutError))
