"""Notification dispatcher factory.

``build_dispatcher`` selects an adapter by name:
- "log": writes notifications to the structured log (default)
- "fake": records notifications in memory for tests and local runs
"""

from groupbuy.notification.fake_adapter import FakeDispatcher
from groupbuy.notification.log_adapter import LogDispatcher
from groupbuy.notification.outbox import NotificationBatch
from groupbuy.notification.port import NotificationDispatcher

__all__ = ["FakeDispatcher", "LogDispatcher", "NotificationBatch", "NotificationDispatcher", "build_dispatcher"]


def build_dispatcher(adapter: str = "log") -> NotificationDispatcher:
    if adapter == "log":
        return LogDispatcher()
    if adapter == "fake":
        return FakeDispatcher()
    raise ValueError(f"Unknown notification adapter: {adapter}")
