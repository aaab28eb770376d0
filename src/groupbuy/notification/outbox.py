"""Notification batch: collects notifications inside a transaction.

Nothing is sent until ``flush`` is called after the UnitOfWork commits, so a
rolled-back workflow never notifies anyone. Dispatcher errors are logged and
swallowed.
"""

import structlog

logger = structlog.get_logger(__name__)


class NotificationBatch:
    def __init__(self, dispatcher) -> None:
        self.dispatcher = dispatcher
        self._pending: list[tuple[str, tuple]] = []

    def __len__(self) -> int:
        return len(self._pending)

    def order_status_changed(self, order, from_status, to_status) -> None:
        self._pending.append(("order_status_changed", (order, from_status, to_status)))

    def pool_progress(self, pool, current, target) -> None:
        self._pending.append(("pool_progress", (pool, current, target)))

    def pool_complete(self, pool) -> None:
        self._pending.append(("pool_complete", (pool,)))

    def discard(self) -> None:
        self._pending.clear()

    def flush(self) -> int:
        """Deliver queued notifications. Returns how many were delivered."""
        pending, self._pending = self._pending, []
        delivered = 0
        for method, args in pending:
            try:
                getattr(self.dispatcher, method)(*args)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "notification_failed",
                    notification=method,
                    subject_id=str(args[0].id),
                    error=str(exc),
                )
        return delivered
