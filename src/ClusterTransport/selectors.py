"""Node-selection strategies.

A selector picks one connection out of the candidates the pool has already
filtered (alive, matching the node filter, not yet tried in this call). The
strategy is chosen once at construction:

- :class:`RoundRobinSelector` (default): walks the pool in insertion order,
  keeping a cursor that only moves when a selection is made.
- :class:`RandomSelector`: uniform choice.
- :class:`CustomSelector`: wraps a caller function ``fn(candidates) -> Connection``.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence, Union

from .errors import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover
    from .connection import Connection


class NodeSelector:
    """Base strategy: ``select(candidates) -> Connection``."""

    name = "base"

    def select(self, candidates: Sequence["Connection"]) -> "Connection":
        raise NotImplementedError

    def observe(self, ordered_ids: Sequence[str]) -> None:
        """Hook called by the pool whenever its membership changes."""

    def __call__(self, candidates: Sequence["Connection"]) -> "Connection":
        return self.select(candidates)


class RoundRobinSelector(NodeSelector):
    """Cycles through candidates by node id, resuming after the last pick."""

    name = "round-robin"

    def __init__(self) -> None:
        self._last_id: Optional[str] = None
        self._order: list[str] = []

    def observe(self, ordered_ids: Sequence[str]) -> None:
        self._order = list(ordered_ids)

    def select(self, candidates: Sequence["Connection"]) -> "Connection":
        if len(candidates) == 1 or self._last_id is None or self._last_id not in self._order:
            choice = candidates[0]
        else:
            by_id = {conn.id: conn for conn in candidates}
            start = self._order.index(self._last_id)
            rotated = self._order[start + 1 :] + self._order[: start + 1]
            choice = next((by_id[node_id] for node_id in rotated if node_id in by_id), candidates[0])
        self._last_id = choice.id
        return choice


class RandomSelector(NodeSelector):
    name = "random"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def select(self, candidates: Sequence["Connection"]) -> "Connection":
        return self._rng.choice(list(candidates))


class CustomSelector(NodeSelector):
    """Delegates to a caller-supplied function."""

    name = "custom"

    def __init__(self, fn: Callable[[Sequence["Connection"]], "Connection"]) -> None:
        self._fn = fn

    def select(self, candidates: Sequence["Connection"]) -> "Connection":
        choice = self._fn(candidates)
        if choice not in candidates:
            raise ValueError("Custom node selector returned a connection outside the candidates")
        return choice


def build_selector(spec: Union[str, NodeSelector, Callable[..., Any]]) -> NodeSelector:
    """Resolve the configured ``node_selector`` into a strategy instance."""
    if isinstance(spec, NodeSelector):
        return spec
    if spec == "round-robin":
        return RoundRobinSelector()
    if spec == "random":
        return RandomSelector()
    if callable(spec):
        return CustomSelector(spec)
    raise ConfigurationError(f"Unknown node selector: {spec!r}")


__all__ = [
    "NodeSelector",
    "RoundRobinSelector",
    "RandomSelector",
    "CustomSelector",
    "build_selector",
]
