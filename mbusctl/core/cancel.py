"""Cooperative cancellation for long-running bus sweeps."""

from __future__ import annotations


class CancellationToken:
    """Flag polled by scan and probe loops between bus exchanges.

    Setting it from a signal handler is safe: the loops only read it at
    iteration boundaries, so an exchange in flight always completes.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled
