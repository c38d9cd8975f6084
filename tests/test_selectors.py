"""Node-selection strategies."""

from __future__ import annotations

import random
from types import SimpleNamespace

import pytest

from ClusterTransport.errors import ConfigurationError
from ClusterTransport.selectors import (
    CustomSelector,
    RandomSelector,
    RoundRobinSelector,
    build_selector,
)


def _conns(*ids):
    return [SimpleNamespace(id=node_id) for node_id in ids]


def test_round_robin_resumes_after_last_pick():
    selector = RoundRobinSelector()
    selector.observe(["a", "b", "c"])
    a, b, c = _conns("a", "b", "c")
    assert selector.select([a, b, c]) is a
    assert selector.select([a, b, c]) is b
    # b was the last pick; with b unavailable the cursor moves on to c
    assert selector.select([a, c]) is c
    assert selector.select([a, b, c]) is a


def test_round_robin_cursor_survives_membership_change():
    selector = RoundRobinSelector()
    selector.observe(["a", "b"])
    a, b, c = _conns("a", "b", "c")
    assert selector.select([a, b]) is a
    selector.observe(["a", "b", "c"])
    assert selector.select([a, b, c]) is b


def test_random_selector_is_seedable():
    conns = _conns("a", "b", "c", "d")
    first = [RandomSelector(random.Random(7)).select(conns).id for _ in range(5)]
    second = [RandomSelector(random.Random(7)).select(conns).id for _ in range(5)]
    assert first == second


def test_custom_selector_must_pick_a_candidate():
    conns = _conns("a", "b")
    assert CustomSelector(lambda candidates: candidates[-1]).select(conns).id == "b"
    with pytest.raises(ValueError):
        CustomSelector(lambda candidates: SimpleNamespace(id="zzz")).select(conns)


def test_build_selector():
    assert isinstance(build_selector("round-robin"), RoundRobinSelector)
    assert isinstance(build_selector("random"), RandomSelector)
    assert isinstance(build_selector(lambda candidates: candidates[0]), CustomSelector)
    existing = RoundRobinSelector()
    assert build_selector(existing) is existing
    with pytest.raises(ConfigurationError):
        build_selector("fastest")
