"""Notification dispatcher port (abstract interface).

Delivery is best-effort: callers queue notifications during a transaction and
flush them after commit, logging and discarding any adapter failure.
"""

from abc import ABC, abstractmethod


class NotificationDispatcher(ABC):
    """Abstract notification dispatcher interface."""

    @abstractmethod
    def order_status_changed(self, order, from_status: str, to_status: str) -> None:
        """An order moved between lifecycle statuses."""
        ...

    @abstractmethod
    def pool_progress(self, pool, current: int, target: int) -> None:
        """A pool's quantity changed but it has not reached its target."""
        ...

    @abstractmethod
    def pool_complete(self, pool) -> None:
        """A pool reached its target and its members moved to PENDING."""
        ...
