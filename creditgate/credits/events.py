"""Balance change notifications."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable

import logfire

from creditgate.credits.types import BalanceChanged

Subscriber = Callable[[BalanceChanged], Awaitable[None] | None]


class BalanceEvents:
    """In-process fan-out of ``BalanceChanged`` events.

    Subscribers may be plain functions or coroutine functions. A failing
    subscriber is logged and never affects the mutation that published the
    event, which is already committed by then.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: BalanceChanged) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logfire.exception(
                    "balance_subscriber_failed",
                    account_id=event.account_id,
                    transaction_id=str(event.transaction_id),
                )
