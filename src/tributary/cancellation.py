"""Cooperative cancellation shared by callers, hooks and the engine."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot cancellation signal.

    Once canceled a token stays canceled.  Subscribers are called once,
    synchronously, in subscription order.
    """

    def __init__(self) -> None:
        self._canceled = False
        self.reason: Any = None
        self._callbacks: list[Callable[[Any], None]] = []
        self._detach: Callable[[], None] | None = None

    @property
    def canceled(self) -> bool:
        return self._canceled

    def cancel(self, reason: Any = None) -> None:
        if self._canceled:
            return
        self._canceled = True
        self.reason = reason
        logger.debug(f"Cancellation requested: {reason}")
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    def subscribe(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Call *callback* when the token is canceled.

        Fires immediately if the token is already canceled.  Returns a
        function that removes the subscription.
        """
        if self._canceled:
            callback(self.reason)
            return lambda: None
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    @classmethod
    def linked(cls, parent: CancellationToken | None = None) -> CancellationToken:
        """Create a token that is canceled whenever *parent* is.

        The link is one-way: canceling the returned token leaves
        *parent* untouched.  A hook that cancels the engine's token is
        only visible to the caller through ``Response.status``.  Call
        :meth:`detach` once the token is no longer needed.
        """
        token = cls()
        if parent is not None:
            token._detach = parent.subscribe(token.cancel)
        return token

    def detach(self) -> None:
        """Drop the link to the parent token, if any."""
        detach = self._detach
        if detach is not None:
            self._detach = None
            detach()

    def __repr__(self) -> str:
        return f"CancellationToken(canceled={self._canceled})"
