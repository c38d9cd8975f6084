# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.resurrection",
#   "purpose": "Dead-node backoff and re-probing",
#   "sections": [
#     {"id": "resurrectstrategy", "name": "ResurrectStrategy", "anchor": "class-resurrectstrategy", "kind": "class"},
#     {"id": "resurrectionpolicy", "name": "ResurrectionPolicy", "anchor": "class-resurrectionpolicy", "kind": "class"},
#     {"id": "ping", "name": "ping", "anchor": "function-ping", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Dead-node backoff and re-probing.

When a node is marked dead the pool asks :class:`ResurrectionPolicy` when it
may be tried again. The delay is a capped exponential backoff keyed on the
node's consecutive failure count::

    delay = resurrect_timeout * 2 ** min(failure_count - 1, cutoff)

(60 s, 120 s, 240 s, ... capped at 60 s * 2**5 with the defaults). The curve
is computed with Tenacity's ``wait_exponential`` so it matches the retry
backoff semantics used elsewhere.

Once no alive node is left, the pool hands the best eligible dead node to
:meth:`ResurrectionPolicy.resurrect`:

- ``ping``: probe it with a HEAD request bounded by ``ping_timeout``; a
  completed exchange returns it to rotation, a failed probe marks it dead
  again, which extends its backoff.
- ``optimistic``: return it to rotation without probing.
- ``none``: never resurrect.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from tenacity import RetryCallState, wait_exponential

from . import policy
from .connection import RequestParams
from .errors import TransportError
from .events import EventEmitter, EventKind, RequestMeta

if TYPE_CHECKING:  # pragma: no cover
    from .connection import Connection
    from .pool import ConnectionPool, Node

logger = logging.getLogger(__name__)


class ResurrectStrategy(str, Enum):
    PING = "ping"
    OPTIMISTIC = "optimistic"
    NONE = "none"


class ResurrectionPolicy:
    """Backoff computation and the resurrect step for dead nodes."""

    def __init__(
        self,
        strategy: ResurrectStrategy | str = policy.RESURRECT_STRATEGY,
        *,
        resurrect_timeout: float = policy.RESURRECT_TIMEOUT,
        cutoff: int = policy.RESURRECT_TIMEOUT_CUTOFF,
        ping_timeout: float = policy.PING_TIMEOUT,
        emitter: Optional[EventEmitter] = None,
    ) -> None:
        self.strategy = ResurrectStrategy(strategy)
        self.resurrect_timeout = resurrect_timeout
        self.cutoff = cutoff
        self.ping_timeout = ping_timeout
        self.emitter = emitter or EventEmitter()
        self._wait = wait_exponential(
            multiplier=resurrect_timeout, max=resurrect_timeout * 2**cutoff
        )

    @property
    def enabled(self) -> bool:
        return self.strategy is not ResurrectStrategy.NONE

    def backoff(self, failure_count: int) -> float:
        """Seconds a node with ``failure_count`` consecutive failures stays dead."""
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = max(1, failure_count)
        return float(self._wait(state))

    async def resurrect(
        self,
        pool: "ConnectionPool",
        node: "Node",
        *,
        meta: Optional[RequestMeta] = None,
    ) -> bool:
        """Try to bring ``node`` back into rotation.

        Returns:
            True if the node is alive afterwards.
        """
        if not self.enabled:
            return False

        connection = pool.connection(node.id)
        if self.strategy is ResurrectStrategy.OPTIMISTIC:
            pool.mark_alive(node.id)
            self._emit(node, True, None, meta)
            return True

        error = await ping(connection, self.ping_timeout)
        if node.id not in pool:
            # Removed by a concurrent topology update while probing
            return False
        if error is None:
            pool.mark_alive(node.id)
        else:
            pool.mark_dead(node.id)
        self._emit(node, error is None, error, meta)
        return error is None

    def _emit(
        self,
        node: "Node",
        is_alive: bool,
        error: Optional[BaseException],
        meta: Optional[RequestMeta],
    ) -> None:
        logger.info(
            "Resurrect %s node %s",
            "succeeded for" if is_alive else "failed for",
            node.id,
            extra={"node_id": node.id, "strategy": self.strategy.value, "is_alive": is_alive},
        )
        self.emitter.emit(
            EventKind.RESURRECT,
            error,
            meta,
            strategy=self.strategy.value,
            node_id=node.id,
            is_alive=is_alive,
        )


async def ping(connection: "Connection", timeout: float) -> Optional[TransportError]:
    """Probe ``connection`` with ``HEAD /``.

    Returns:
        None when the node answered (any status), otherwise the failure.
    """
    try:
        await connection.request(RequestParams(method="HEAD", path="/"), timeout=timeout)
    except TransportError as exc:
        logger.debug("Ping failed", extra={"node_id": connection.id, "error": str(exc)})
        return exc
    return None


__all__ = ["ResurrectStrategy", "ResurrectionPolicy", "ping"]
