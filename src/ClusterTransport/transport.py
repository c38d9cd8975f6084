# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.transport",
#   "purpose": "Request orchestration: select, send, retry and sniff triggers",
#   "sections": [
#     {"id": "transportresponse", "name": "TransportResponse", "anchor": "class-transportresponse", "kind": "class"},
#     {"id": "callphase", "name": "CallPhase", "anchor": "class-callphase", "kind": "class"},
#     {"id": "callstate", "name": "CallState", "anchor": "class-callstate", "kind": "class"},
#     {"id": "transport", "name": "Transport", "anchor": "class-transport", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Request orchestrator.

:class:`Transport` turns one logical request into at most ``max_retries + 1``
HTTP attempts against distinct cluster members::

    SELECT ──► SEND ──► SUCCESS
      ▲          │
      └─ RETRY ◄─┤ ConnectionError / TimeoutError / retry_on_status
                 └──► FATAL (aborted, response error, budget spent)

Each call owns a :class:`CallState` (phase, attempt counter, tried node ids,
last transport error). The pool is shared by every call and by the sniffer;
all of its state transitions are synchronous, so interleaved calls never see
it half-updated.

Usage:
    async with Transport(["http://localhost:9200"], max_retries=2) as transport:
        response = await transport.perform_request("GET", "/_cluster/health")
        print(response.status_code, response.body)
"""

from __future__ import annotations

import asyncio
import collections.abc
import gzip
import itertools
import logging
import time
import zlib
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Collection,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from . import errors, policy
from .cancellation import CancellationToken
from .config import NodeSpec, TransportConfig, validate_options
from .connection import Body, Connection, RequestParams, Result
from .events import DiagnosticSink, EventEmitter, EventKind, RequestMeta
from .pool import ConnectionPool
from .serializer import JSON_MIMETYPE, NDJSON_MIMETYPE, Serializer
from .sniffer import SniffReason, Sniffer

logger = logging.getLogger(__name__)

NodesInput = Union[str, NodeSpec, Dict[str, Any], Iterable[Union[str, NodeSpec, Dict[str, Any]]]]


@dataclass
class TransportResponse:
    """Decoded outcome of a successful (or ignored-status) call."""

    body: Any
    status_code: int
    headers: Mapping[str, str]
    meta: RequestMeta


class CallPhase(str, Enum):
    SELECT = "select"
    SEND = "send"
    RETRY = "retry"


@dataclass
class CallState:
    """Attempt bookkeeping for one orchestrated call."""

    max_retries: int
    deadline: Optional[float] = None
    phase: CallPhase = CallPhase.SELECT
    attempts: int = 0
    tried: Set[str] = field(default_factory=set)
    last_error: Optional[errors.TransportError] = None

    @property
    def can_retry(self) -> bool:
        return self.attempts <= self.max_retries

    def remaining(self, now: float) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - now


class Transport:
    """Resilient request execution over a pool of cluster nodes.

    Args:
        nodes: Seed node(s): url strings, :class:`NodeSpec` or dicts.
        config: Validated configuration; keyword options are accepted instead.
        sink: Optional notification sink receiving every lifecycle event.
        serializer: Body codec (JSON/NDJSON by default).
        clock: Monotonic clock shared with the pool, injectable for tests.

    Raises:
        ConfigurationError: Invalid options or no seed nodes.
    """

    def __init__(
        self,
        nodes: NodesInput,
        config: Optional[TransportConfig] = None,
        *,
        sink: Optional[DiagnosticSink] = None,
        serializer: Optional[Serializer] = None,
        clock: Callable[[], float] = time.monotonic,
        **options: Any,
    ) -> None:
        if config is None:
            config = validate_options(TransportConfig, **options)
        elif options:
            raise errors.ConfigurationError("Pass either TransportConfig or keyword options, not both")

        self.config = config
        self.serializer = serializer or Serializer()
        self.emitter = EventEmitter(sink)
        self._clock = clock
        self.pool = ConnectionPool(config, emitter=self.emitter, clock=clock)
        if not self.pool.add_connection(nodes):
            raise errors.ConfigurationError("At least one seed node is required")
        self.sniffer = Sniffer(self.pool, config, emitter=self.emitter, serializer=self.serializer)

        self.headers = {key.lower(): value for key, value in config.headers.items()}
        self.headers.setdefault("user-agent", policy.USER_AGENT)
        if config.suggest_compression:
            self.headers.setdefault("accept-encoding", policy.ACCEPT_ENCODING)

        self._request_ids = itertools.count(1)
        self._startup: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # ── Public API ────────────────────────────────────────────────────────────

    async def perform_request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        bulk_body: Optional[Iterable[Any]] = None,
        querystring: Union[str, Mapping[str, Any], None] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        ignore: Collection[int] = (),
        opaque_id: Optional[str] = None,
        id: Any = None,
        context: Any = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> TransportResponse:
        """Execute one logical request with selection, retry and decoding.

        Args:
            method: HTTP method.
            path: Request path, relative to each node's base url.
            body: JSON-serializable payload, pre-encoded ``str``/``bytes`` or a
                byte stream (streams are never retried).
            bulk_body: Sequence of documents sent as NDJSON.
            querystring: Query string, raw or as a mapping.
            headers: Extra headers; override transport defaults.
            timeout: Per-attempt timeout overriding ``request_timeout``.
            max_retries: Per-call retry budget overriding the configured one.
            ignore: Error statuses returned as responses instead of raised.
            opaque_id: Sent as ``x-opaque-id`` (after ``opaque_id_prefix``).
            id: Request id; generated when omitted.
            context: Caller context copied into :class:`RequestMeta`.
            cancellation: Token that aborts the call when cancelled.

        Returns:
            The decoded :class:`TransportResponse`.

        Raises:
            RequestAbortedError: Cancelled, or a response exceeded a size cap.
            NoLivingConnectionsError: No usable node for the call.
            ConnectionError: Last connection fault once the budget is spent.
            TimeoutError: Last timeout once the budget is spent.
            ResponseError: Error status not listed in ``ignore``.
            SerializationError: The body could not be encoded.
            DeserializationError: The response could not be decoded.
        """
        method = method.upper()
        meta = RequestMeta(
            request_id=id if id is not None else self._next_request_id(method, path),
            name=self.config.name,
            context=context if context is not None else self.config.context,
            method=method,
            path=path,
        )
        self._check_cancelled(cancellation, meta)
        await self._ensure_started()

        request_headers = dict(self.headers)
        for key, value in (headers or {}).items():
            request_headers[key.lower()] = value
        opaque = self._opaque_id(opaque_id)
        if opaque is not None:
            request_headers["x-opaque-id"] = opaque

        content, streamed = self._encode_body(body, bulk_body, request_headers, meta)
        params = RequestParams(
            method=meta.method,
            path=path,
            querystring=querystring,
            headers=request_headers,
            body=content,
        )

        budget = self.config.max_retries if max_retries is None else max_retries
        if streamed:
            # A consumed stream cannot be replayed against another node
            budget = 0
        deadline = self.config.request_deadline
        state = CallState(
            max_retries=max(0, budget),
            deadline=self._clock() + deadline if deadline is not None else None,
        )
        attempt_timeout = timeout if timeout is not None else self.config.request_timeout
        ignored = frozenset(ignore)

        while True:
            if state.phase is CallPhase.RETRY:
                self._emit(EventKind.RETRY, state.last_error, meta, attempts=state.attempts)
                logger.info(
                    "Retrying request",
                    extra={
                        "request_id": meta.request_id,
                        "attempts": state.attempts,
                        "node_id": meta.node_id,
                        "error": type(state.last_error).__name__,
                    },
                )
                state.phase = CallPhase.SELECT

            self._check_cancelled(cancellation, meta)
            connection = await self._select(state, meta)
            state.phase = CallPhase.SEND
            state.attempts += 1
            meta.attempts = state.attempts
            try:
                result = await self._attempt(
                    connection, params, self._attempt_timeout(state, attempt_timeout), cancellation, meta
                )
            except errors.RequestAbortedError as exc:
                meta.aborted = cancellation is not None and cancellation.is_cancelled()
                exc.meta = meta
                raise
            except errors.TransportError as exc:
                exc.meta = meta
                if not errors.is_retriable(exc):
                    raise
                self._on_fault(connection, exc)
                state.last_error = exc
                if not state.can_retry:
                    raise
                state.phase = CallPhase.RETRY
                continue

            response = self._decode(result, meta, ignored)
            if isinstance(response, errors.ResponseError):
                if result.status_code in self.config.retry_on_status:
                    self._on_fault(connection, response)
                    state.last_error = response
                    if state.can_retry:
                        state.phase = CallPhase.RETRY
                        continue
                raise response
            return response

    async def close(self) -> None:
        """Stop background sniffing and close every node connection."""
        await self.sniffer.stop()
        tasks = list(self._background)
        if self._startup is not None:
            tasks.append(self._startup)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.pool.close()

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Phases ────────────────────────────────────────────────────────────────

    async def _select(self, state: CallState, meta: RequestMeta) -> Connection:
        remaining = state.remaining(self._clock())
        if remaining is not None and remaining <= 0:
            raise errors.TimeoutError(meta=meta) from state.last_error
        try:
            connection = await self.pool.get_connection(exclude_ids=state.tried, meta=meta)
        except errors.NoLivingConnectionsError as exc:
            if state.last_error is None:
                raise
            raise errors.NoLivingConnectionsError(
                meta=meta, last_error=state.last_error
            ) from state.last_error
        state.tried.add(connection.id)
        meta.node_id = connection.id
        return connection

    async def _attempt(
        self,
        connection: Connection,
        params: RequestParams,
        timeout: Optional[float],
        cancellation: Optional[CancellationToken],
        meta: RequestMeta,
    ) -> Result:
        self._emit(EventKind.REQUEST, None, meta)
        try:
            result = await connection.request(params, timeout=timeout, cancellation=cancellation)
        except errors.TransportError as exc:
            self._emit(EventKind.RESPONSE, exc, meta)
            raise
        self._emit(EventKind.RESPONSE, None, meta, status_code=result.status_code)
        return result

    def _decode(
        self, result: Result, meta: RequestMeta, ignored: Collection[int]
    ) -> Union[TransportResponse, errors.ResponseError]:
        if meta.method == "HEAD":
            body: Any = result.status_code < 300
        else:
            try:
                body = self.serializer.loads(result.body, result.headers.get("content-type"))
            except errors.DeserializationError as exc:
                exc.meta = meta
                exc.result = result
                self._emit(EventKind.DESERIALIZATION, exc, meta)
                raise
            self._emit(EventKind.DESERIALIZATION, None, meta)

        status = result.status_code
        head_miss = meta.method == "HEAD" and status == 404
        if status >= 400 and status not in ignored and not head_miss:
            return errors.ResponseError(result, body=body, meta=meta)
        return TransportResponse(body=body, status_code=status, headers=result.headers, meta=meta)

    def _on_fault(self, connection: Connection, error: errors.TransportError) -> None:
        logger.warning(
            "Attempt against %s failed: %s",
            connection.id,
            error,
            extra={"node_id": connection.id, "error": type(error).__name__},
        )
        self.pool.mark_dead(connection.id)
        if self.config.sniff_on_connection_fault:
            self._spawn(self.sniffer.sniff(SniffReason.CONNECTION_FAULT))

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _ensure_started(self) -> None:
        if self._startup is None:
            self._startup = asyncio.get_running_loop().create_task(self._start())
        await asyncio.shield(self._startup)

    async def _start(self) -> None:
        if self.config.sniff_on_start:
            await self.sniffer.sniff(SniffReason.ON_START)
        self.sniffer.start_interval()

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _check_cancelled(
        self, cancellation: Optional[CancellationToken], meta: RequestMeta
    ) -> None:
        if cancellation is not None and cancellation.is_cancelled():
            meta.aborted = True
            raise errors.RequestAbortedError(meta=meta)

    def _attempt_timeout(self, state: CallState, timeout: Optional[float]) -> Optional[float]:
        remaining = state.remaining(self._clock())
        if remaining is None:
            return timeout
        remaining = max(remaining, 0.001)
        return remaining if timeout is None else min(timeout, remaining)

    def _next_request_id(self, method: str, path: str) -> Any:
        generate = self.config.generate_request_id
        if generate is not None:
            return generate(method, path)
        return next(self._request_ids)

    def _opaque_id(self, opaque_id: Optional[str]) -> Optional[str]:
        if opaque_id is None:
            return None
        return f"{self.config.opaque_id_prefix or ''}{opaque_id}"

    def _encode_body(
        self,
        body: Any,
        bulk_body: Optional[Iterable[Any]],
        headers: Dict[str, str],
        meta: RequestMeta,
    ) -> Tuple[Body, bool]:
        streamed = False
        try:
            if body is not None and bulk_body is not None:
                raise errors.SerializationError("Pass either body or bulk_body, not both")
            if bulk_body is not None:
                content: Body = self.serializer.ndjson(bulk_body)
                headers.setdefault("content-type", NDJSON_MIMETYPE)
            elif body is None:
                content = None
            elif _is_stream(body):
                content = body
                streamed = True
            else:
                content = self.serializer.dumps(body)
                headers.setdefault("content-type", JSON_MIMETYPE)
        except errors.SerializationError as exc:
            exc.meta = meta
            self._emit(EventKind.SERIALIZATION, exc, meta)
            raise
        self._emit(EventKind.SERIALIZATION, None, meta)

        if content is not None and self.config.compression:
            headers["content-encoding"] = "gzip"
            if isinstance(content, bytes):
                content = gzip.compress(content)
            else:
                content = _gzip_stream(content)
        return content, streamed

    def _emit(self, kind: EventKind, error: Optional[BaseException], meta: RequestMeta, **context: Any) -> None:
        # Events keep a snapshot; the live meta keeps changing across attempts
        self.emitter.emit(kind, error, replace(meta, sniff_hosts=list(meta.sniff_hosts)), **context)


def _is_stream(body: Any) -> bool:
    return hasattr(body, "__aiter__") or isinstance(body, collections.abc.Iterator)


async def _gzip_stream(chunks: Any) -> AsyncIterator[bytes]:
    compressor = zlib.compressobj(wbits=zlib.MAX_WBITS | 16)
    if hasattr(chunks, "__aiter__"):
        async for chunk in chunks:
            data = compressor.compress(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
            if data:
                yield data
    else:
        for chunk in chunks:
            data = compressor.compress(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
            if data:
                yield data
    yield compressor.flush()


__all__ = ["TransportResponse", "CallPhase", "CallState", "Transport"]
