"""Cooperative cancellation primitives shared by a call and its attempts.

A :class:`CancellationToken` is threaded through the attempt context of one
orchestrated call. The orchestrator checks it before selecting a node, the
connection checks it before issuing I/O, and an in-flight exchange races
against :meth:`CancellationToken.wait` so that firing the token forcibly
terminates the transfer. Cancellation is explicit: nothing is interrupted
except at those checkpoints.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional


class CancellationToken:
    """Cancellation token for cooperative per-call cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        """Initialize a new, uncancelled token."""
        self._is_cancelled = False
        self._reason: Optional[str] = None
        self._waiters: List[asyncio.Future] = []

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Signal that cancellation has been requested.

        Repeated calls are no-ops; the first reason wins.
        """
        if self._is_cancelled:
            return
        self._is_cancelled = True
        self._reason = reason
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._is_cancelled

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._is_cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def reset(self) -> None:
        """Reset the token to its initial state.

        This should only be used for testing or when reusing tokens
        in controlled scenarios.
        """
        self._is_cancelled = False
        self._reason = None


__all__ = ["CancellationToken"]
