# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.sniffer",
#   "purpose": "Topology discovery against a living node and pool diffing",
#   "sections": [
#     {"id": "sniffreason", "name": "SniffReason", "anchor": "class-sniffreason", "kind": "class"},
#     {"id": "sniffer", "name": "Sniffer", "anchor": "class-sniffer", "kind": "class"},
#     {"id": "parse-nodes", "name": "parse_nodes", "anchor": "function-parse-nodes", "kind": "function"},
#     {"id": "parse-publish-address", "name": "parse_publish_address", "anchor": "function-parse-publish-address", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Topology discovery.

The sniffer asks one living node for the cluster's current HTTP endpoints
(``GET _nodes/_all/http`` by default) and reconciles the pool with the answer:
unseen urls are added alive, vanished urls are removed, retained nodes keep
their liveness state. A sniff never fails a caller request: errors are
emitted to the sink, logged, and dropped.

Only one sniff runs at a time; triggering another while one is in flight is a
no-op. The timed trigger runs as a background task owned by the sniffer.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, List, Mapping, Optional

from .config import DEFAULT_ROLES, NodeSpec, TransportConfig, validate_options
from .connection import RequestParams
from .errors import ResponseError, TransportError
from .events import EventEmitter, EventKind, RequestMeta
from .pool import ConnectionPool
from .serializer import Serializer

logger = logging.getLogger(__name__)


class SniffReason(str, Enum):
    ON_START = "sniff-on-start"
    INTERVAL = "sniff-interval"
    CONNECTION_FAULT = "sniff-on-connection-fault"
    DEFAULT = "default"


class Sniffer:
    """Discovers cluster members and keeps the pool in sync with them."""

    def __init__(
        self,
        pool: ConnectionPool,
        config: TransportConfig,
        *,
        emitter: Optional[EventEmitter] = None,
        serializer: Optional[Serializer] = None,
    ) -> None:
        self.pool = pool
        self.config = config
        self.emitter = emitter or EventEmitter()
        self.serializer = serializer or Serializer()
        self._is_sniffing = False
        self._interval_task: Optional[asyncio.Task] = None
        self._sniff_count = 0

    @property
    def is_sniffing(self) -> bool:
        return self._is_sniffing

    async def sniff(self, reason: SniffReason = SniffReason.DEFAULT) -> bool:
        """Run one discovery round.

        Returns:
            True if the pool was updated from a successful discovery, False if
            the round was skipped (another sniff in flight) or failed.
        """
        if self._is_sniffing:
            logger.debug("Sniff already in progress; skipping", extra={"reason": reason.value})
            return False

        self._is_sniffing = True
        self._sniff_count += 1
        meta = RequestMeta(
            request_id=f"sniff-{self._sniff_count}",
            name=self.config.name,
            context=self.config.context,
            path=self.config.sniff_endpoint,
            sniff_reason=reason.value,
        )
        try:
            specs = await self._discover(meta)
        except TransportError as exc:
            logger.warning(
                "Sniff failed: %s",
                exc,
                extra={"reason": reason.value, "node_id": meta.node_id, "error": type(exc).__name__},
            )
            self.emitter.emit(EventKind.SNIFF, exc, meta, reason=reason.value)
            return False
        except Exception as exc:
            logger.error(
                "Sniff failed unexpectedly: %s",
                exc,
                exc_info=True,
                extra={"reason": reason.value, "node_id": meta.node_id, "error": type(exc).__name__},
            )
            self.emitter.emit(EventKind.SNIFF, exc, meta, reason=reason.value)
            return False
        finally:
            self._is_sniffing = False

        added, removed = self.pool.update(specs)
        meta.sniff_hosts = [spec.url for spec in specs]
        logger.info(
            "Sniffed %d node(s)",
            len(specs),
            extra={"reason": reason.value, "added": added, "removed": removed},
        )
        self.emitter.emit(EventKind.SNIFF, None, meta, reason=reason.value, added=added, removed=removed)
        return True

    async def _discover(self, meta: RequestMeta) -> List[NodeSpec]:
        connection = await self.pool.get_connection(meta=meta)
        meta.node_id = connection.id
        meta.attempts = 1
        result = await connection.request(
            RequestParams(method="GET", path=self.config.sniff_endpoint),
            timeout=self.config.request_timeout,
        )
        payload = self.serializer.loads(result.body, result.headers.get("content-type"))
        if result.status_code >= 400:
            raise ResponseError(result, body=payload, meta=meta)
        specs = parse_nodes(payload, scheme=connection.url.scheme)
        if not specs:
            raise TransportError("Sniff returned no usable nodes", meta=meta, result=result)
        return specs

    # ── Interval trigger ──────────────────────────────────────────────────────

    def start_interval(self) -> None:
        """Start the background timer when ``sniff_interval`` is configured."""
        if self.config.sniff_interval is None or self._interval_task is not None:
            return
        self._interval_task = asyncio.get_running_loop().create_task(self._run_interval())

    async def _run_interval(self) -> None:
        interval = self.config.sniff_interval
        while True:
            await asyncio.sleep(interval)
            await self.sniff(SniffReason.INTERVAL)

    async def stop(self) -> None:
        task, self._interval_task = self._interval_task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


def parse_nodes(payload: Any, *, scheme: str = "http") -> List[NodeSpec]:
    """Turn a ``_nodes/_all/http`` response into node specs.

    Nodes without a usable HTTP publish address, or with a malformed
    ``roles`` list, are skipped.
    """
    if not isinstance(payload, Mapping) or not isinstance(payload.get("nodes"), Mapping):
        return []
    specs: List[NodeSpec] = []
    for node_id, info in payload["nodes"].items():
        if not isinstance(info, Mapping):
            continue
        http = info.get("http")
        address = http.get("publish_address") if isinstance(http, Mapping) else None
        if not isinstance(address, str) or not address.strip():
            continue
        roles = info.get("roles")
        if roles is not None and not (
            isinstance(roles, list) and all(isinstance(role, str) for role in roles)
        ):
            continue
        specs.append(
            validate_options(
                NodeSpec,
                url=f"{scheme}://{parse_publish_address(address)}",
                id=str(node_id),
                roles=frozenset(roles) if isinstance(roles, list) else DEFAULT_ROLES,
            )
        )
    return specs


def parse_publish_address(address: str) -> str:
    """Normalize a publish address to ``host:port``.

    Handles ``host:port``, ``hostname/ip:port`` (hostname wins) and
    ``[v6]:port``.

    >>> parse_publish_address("example.com/10.0.0.1:9200")
    'example.com:9200'
    """
    address = address.strip()
    if "/" in address:
        hostname, _, ip_port = address.partition("/")
        if not hostname:
            return ip_port
        port = ip_port.rsplit(":", 1)[1] if ":" in ip_port else ""
        return f"{hostname}:{port}" if port else hostname
    return address


__all__ = ["SniffReason", "Sniffer", "parse_nodes", "parse_publish_address"]
