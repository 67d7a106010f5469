"""
Cooperative cancellation for long-running indexing passes.
"""

from __future__ import annotations

import threading

from .errors import OperationCancelled


class CancelToken:
    """A thread-safe flag checked between units of work.

    The hierarchy builder checks it once per directory and once per file;
    the indexer checks it once per node and once per document.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "") -> None:
        """Request cancellation.  Safe to call more than once."""
        self._reason = reason or "cancelled"
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`OperationCancelled` if :meth:`cancel` was called."""
        if self.cancelled:
            raise OperationCancelled(self._reason)


def check(token: CancelToken | None) -> None:
    """Raise if *token* is set; a ``None`` token never cancels."""
    if token is not None:
        token.raise_if_cancelled()
