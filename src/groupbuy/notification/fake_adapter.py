"""Recording notification dispatcher for development and testing.

Captures every call in ``sent`` and can be configured to fail, which lets
tests prove that dispatch failures never abort the owning transaction.
"""

from groupbuy.notification.port import NotificationDispatcher


class FakeDispatcher(NotificationDispatcher):
    """Configurable fake dispatcher."""

    def __init__(self) -> None:
        self.should_fail: bool = False
        self.failure_reason: str = "Dispatcher unavailable"
        self.sent: list[dict] = []

    def configure(self, should_fail: bool, failure_reason: str = "Dispatcher unavailable") -> None:
        """Configure dispatcher behavior at runtime."""
        self.should_fail = should_fail
        self.failure_reason = failure_reason

    def _record(self, call: dict) -> None:
        if self.should_fail:
            raise ConnectionError(self.failure_reason)
        self.sent.append(call)

    def of_kind(self, kind: str) -> list[dict]:
        return [call for call in self.sent if call["kind"] == kind]

    def order_status_changed(self, order, from_status: str, to_status: str) -> None:
        self._record(
            {
                "kind": "order_status_changed",
                "order_id": str(order.id),
                "buyer_id": order.buyer_id,
                "from_status": from_status,
                "to_status": to_status,
            }
        )

    def pool_progress(self, pool, current: int, target: int) -> None:
        self._record(
            {
                "kind": "pool_progress",
                "pool_id": str(pool.id),
                "current": current,
                "target": target,
            }
        )

    def pool_complete(self, pool) -> None:
        self._record(
            {
                "kind": "pool_complete",
                "pool_id": str(pool.id),
                "quantity": pool.current_quantity,
            }
        )
