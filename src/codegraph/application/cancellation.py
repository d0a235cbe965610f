"""Cooperative cancellation shared by discovery and retrieval."""

from __future__ import annotations

import threading


class CancellationToken:
    """A thread-safe cancel flag checked between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled
