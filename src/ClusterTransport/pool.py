# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.pool",
#   "purpose": "Node registry with liveness tracking, selection and resurrection",
#   "sections": [
#     {"id": "nodestatus", "name": "NodeStatus", "anchor": "class-nodestatus", "kind": "class"},
#     {"id": "node", "name": "Node", "anchor": "class-node", "kind": "class"},
#     {"id": "default-node-filter", "name": "default_node_filter", "anchor": "function-default-node-filter", "kind": "function"},
#     {"id": "connectionpool", "name": "ConnectionPool", "anchor": "class-connectionpool", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Connection pool: node registry, liveness and selection.

The pool is the only owner of :class:`Node` state. Every state transition
(``add_connection``, ``remove_connection``, ``mark_dead``, ``mark_alive``,
``update`` and the selection itself) is a plain synchronous method, so under
asyncio's cooperative scheduling no caller can observe a half-updated pool.
The only suspension point in :meth:`ConnectionPool.get_connection` is the
resurrection probe, which happens after the candidate has been chosen.

Typical usage:
    pool = ConnectionPool(TransportConfig())
    pool.add_connection(["http://node-1:9200", "http://node-2:9200"])
    conn = await pool.get_connection(exclude_ids={"http://node-1:9200"})
    try:
        result = await conn.request(params)
    except errors.ConnectionError:
        pool.mark_dead(conn.id)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Collection, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from . import policy
from .config import NodeSpec, TransportConfig, as_node_spec
from .connection import Connection
from .errors import ConfigurationError, NoLivingConnectionsError
from .events import EventEmitter, RequestMeta
from .resurrection import ResurrectionPolicy, ResurrectStrategy
from .selectors import NodeSelector, build_selector

logger = logging.getLogger(__name__)

NodeInput = Union[str, NodeSpec, Dict[str, Any]]
NodeFilter = Callable[["Node"], bool]


class NodeStatus(str, Enum):
    ALIVE = "alive"
    DEAD = "dead"


@dataclass
class Node:
    """Liveness record of one cluster member. Timestamps are monotonic."""

    id: str
    url: str
    roles: frozenset
    status: NodeStatus = NodeStatus.ALIVE
    dead_since: Optional[float] = None
    failure_count: int = 0
    next_resurrect_at: Optional[float] = None

    @property
    def is_alive(self) -> bool:
        return self.status is NodeStatus.ALIVE


def default_node_filter(node: Node) -> bool:
    """Skip dedicated master nodes: they coordinate, they don't serve requests."""
    roles = node.roles
    return not ("master" in roles and not roles & policy.SERVING_ROLES)


class ConnectionPool:
    """Registry of nodes with liveness state and a selection strategy.

    Args:
        config: Immutable transport configuration snapshot.
        selector: Selection strategy; defaults to ``config.node_selector``.
        resurrection: Resurrection policy; defaults to one built from ``config``.
        emitter: Notification emitter shared with the transport.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        config: Optional[TransportConfig] = None,
        *,
        selector: Optional[NodeSelector] = None,
        resurrection: Optional[ResurrectionPolicy] = None,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or TransportConfig()
        self.emitter = emitter or EventEmitter()
        self.selector = selector or build_selector(self.config.node_selector)
        self.node_filter: NodeFilter = self.config.node_filter or default_node_filter
        self.resurrection = resurrection or ResurrectionPolicy(
            self.config.resurrect_strategy,
            resurrect_timeout=self.config.resurrect_timeout,
            cutoff=self.config.resurrect_timeout_cutoff,
            ping_timeout=self.config.ping_timeout,
            emitter=self.emitter,
        )
        self._clock = clock
        self._nodes: Dict[str, Node] = {}
        self._connections: Dict[str, Connection] = {}
        self._retired: List[Connection] = []
        self._closing: Set[asyncio.Task] = set()

    # ── Membership ────────────────────────────────────────────────────────────

    def add_connection(self, nodes: Union[NodeInput, Iterable[NodeInput]]) -> List[Connection]:
        """Register nodes; urls already in the pool are skipped.

        Returns:
            The connections created for newly added nodes.

        Raises:
            ConfigurationError: On invalid specs or an id already used by another url.
        """
        if isinstance(nodes, (str, NodeSpec, dict)):
            nodes = [nodes]
        known_urls = {node.url for node in self._nodes.values()}
        added: List[Connection] = []
        for raw in nodes:
            spec = as_node_spec(raw)
            if spec.url in known_urls:
                continue
            if spec.node_id in self._nodes:
                raise ConfigurationError(f"Connection with id '{spec.node_id}' is already present")
            connection = Connection(self.config.connection_options(spec))
            self._nodes[connection.id] = Node(id=connection.id, url=spec.url, roles=spec.roles)
            self._connections[connection.id] = connection
            known_urls.add(spec.url)
            added.append(connection)
        if added:
            self.selector.observe(list(self._nodes))
            logger.debug("Added %d node(s)", len(added), extra={"node_ids": [c.id for c in added]})
        return added

    def remove_connection(self, node_id: str) -> None:
        """Remove a node unconditionally and close its connection.

        Attempts still in flight against it fail with ConnectionError on their
        next I/O.
        """
        self._nodes.pop(node_id, None)
        connection = self._connections.pop(node_id, None)
        if connection is None:
            return
        connection.discard()
        self._schedule_close(connection)
        self.selector.observe(list(self._nodes))
        logger.debug("Removed node %s", node_id, extra={"node_id": node_id})

    def update(self, nodes: Iterable[NodeInput]) -> Tuple[List[str], List[str]]:
        """Synchronize membership with a discovered topology.

        Adds unseen urls, removes vanished ones, and leaves the liveness state
        of retained nodes untouched.

        Returns:
            ``(added_ids, removed_ids)``
        """
        specs = [as_node_spec(raw) for raw in nodes]
        wanted = {spec.url for spec in specs}
        removed = [node.id for node in list(self._nodes.values()) if node.url not in wanted]
        for node_id in removed:
            self.remove_connection(node_id)
        known_urls = {node.url for node in self._nodes.values()}
        fresh = [spec for spec in specs if spec.url not in known_urls and spec.node_id not in self._nodes]
        added = [conn.id for conn in self.add_connection(fresh)]
        return added, removed

    # ── Liveness ──────────────────────────────────────────────────────────────

    def mark_dead(self, node_id: str) -> None:
        """Mark a node dead and push its next resurrection out by the backoff."""
        node = self._nodes.get(node_id)
        if node is None:
            return
        now = self._clock()
        node.status = NodeStatus.DEAD
        node.dead_since = now
        node.failure_count += 1
        node.next_resurrect_at = now + self.resurrection.backoff(node.failure_count)
        logger.warning(
            "Marked node %s as dead",
            node_id,
            extra={
                "node_id": node_id,
                "failure_count": node.failure_count,
                "resurrect_in_s": node.next_resurrect_at - now,
            },
        )

    def mark_alive(self, node_id: str) -> None:
        """Return a node to rotation and reset its backoff state."""
        node = self._nodes.get(node_id)
        if node is None:
            return
        was_dead = not node.is_alive
        node.status = NodeStatus.ALIVE
        node.dead_since = None
        node.failure_count = 0
        node.next_resurrect_at = None
        if was_dead:
            logger.info("Marked node %s as alive", node_id, extra={"node_id": node_id})

    # ── Selection ─────────────────────────────────────────────────────────────

    async def get_connection(
        self,
        *,
        node_filter: Optional[NodeFilter] = None,
        selector: Optional[NodeSelector] = None,
        exclude_ids: Collection[str] = (),
        meta: Optional[RequestMeta] = None,
    ) -> Connection:
        """Select a connection for the next attempt.

        Alive nodes matching the filter and not excluded are preferred; when
        every matching alive node was already tried, tried nodes become
        eligible again. With no alive candidate at all, the resurrection
        policy gets one chance on the best eligible dead node.

        Raises:
            NoLivingConnectionsError: Nothing usable remains for this call.
        """
        accept = node_filter or self.node_filter
        choose = selector or self.selector

        alive = [
            self._connections[node.id]
            for node in self._nodes.values()
            if node.is_alive and accept(node)
        ]
        candidates = [conn for conn in alive if conn.id not in exclude_ids] or alive
        if candidates:
            return choose.select(candidates)

        node = self._resurrection_candidate(accept, exclude_ids)
        if node is not None and await self.resurrection.resurrect(self, node, meta=meta):
            connection = self._connections.get(node.id)
            if connection is not None:
                return connection
        raise NoLivingConnectionsError(meta=meta)

    def _resurrection_candidate(
        self, accept: NodeFilter, exclude_ids: Collection[str]
    ) -> Optional[Node]:
        if not self.resurrection.enabled:
            return None
        now = self._clock()
        eligible = [
            node
            for node in self._nodes.values()
            if not node.is_alive
            and node.id not in exclude_ids
            and accept(node)
            and (node.next_resurrect_at or 0.0) <= now
        ]
        if not eligible:
            return None
        if self.resurrection.strategy is ResurrectStrategy.OPTIMISTIC:
            return min(eligible, key=lambda node: node.dead_since or 0.0)
        return min(eligible, key=lambda node: node.next_resurrect_at or 0.0)

    # ── Views ─────────────────────────────────────────────────────────────────

    def connection(self, node_id: str) -> Connection:
        return self._connections[node_id]

    def node(self, node_id: str) -> Node:
        """Snapshot of a node's state (a copy; the pool keeps the original)."""
        return replace(self._nodes[node_id])

    @property
    def nodes(self) -> Sequence[Node]:
        return tuple(replace(node) for node in self._nodes.values())

    @property
    def connections(self) -> Sequence[Connection]:
        return tuple(self._connections.values())

    @property
    def alive(self) -> Sequence[Node]:
        return tuple(node for node in self.nodes if node.is_alive)

    @property
    def dead(self) -> Sequence[Node]:
        return tuple(node for node in self.nodes if not node.is_alive)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def empty(self) -> None:
        """Remove every node and wait for their sockets to close."""
        for node_id in list(self._nodes):
            self.remove_connection(node_id)
        await self._drain()

    async def close(self) -> None:
        await self.empty()

    def _schedule_close(self, connection: Connection) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: closed by the next empty()/close()
            self._retired.append(connection)
            return
        task = loop.create_task(connection.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _drain(self) -> None:
        retired, self._retired = self._retired, []
        for connection in retired:
            await connection.close()
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)


__all__ = ["NodeStatus", "Node", "default_node_filter", "ConnectionPool"]
