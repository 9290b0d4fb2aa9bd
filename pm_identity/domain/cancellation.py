from __future__ import annotations

from typing import Protocol


class CancellationSignal(Protocol):
    """Anything exposing ``is_set()``; ``threading.Event`` satisfies it."""

    def is_set(self) -> bool: ...


class OperationCancelled(Exception):
    """Raised when a workflow observes cancellation before its next store call."""


def raise_if_cancelled(cancel: CancellationSignal | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("operation cancelled")
