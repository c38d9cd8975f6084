# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {"id": "fakeclock", "name": "FakeClock", "anchor": "class-fakeclock", "kind": "class"},
#     {"id": "fixtures", "name": "Fixtures", "anchor": "fixtures", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Puts ``src`` on ``sys.path`` and exposes the shared fixtures: the fake
cluster (``httpx.MockTransport`` per node), a controllable monotonic clock,
and a recording notification sink.

Async code is driven with ``asyncio.run`` inside each test.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# --- Globals ---

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
for _path in (SRC, ROOT):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))

from ClusterTransport.events import RecordingSink  # noqa: E402
from tests.fixtures.http_mocking import (  # noqa: E402,F401
    FakeCluster,
    cluster,
    http_mock,
)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# --- Fixtures ---


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
