"""Dispatcher that writes notifications to the structured log.

The default adapter when no delivery channel is configured.
"""

import structlog

from groupbuy.notification.port import NotificationDispatcher

logger = structlog.get_logger(__name__)


class LogDispatcher(NotificationDispatcher):
    def order_status_changed(self, order, from_status: str, to_status: str) -> None:
        logger.info(
            "notify_order_status_changed",
            order_id=str(order.id),
            buyer_id=order.buyer_id,
            from_status=from_status,
            to_status=to_status,
        )

    def pool_progress(self, pool, current: int, target: int) -> None:
        logger.info(
            "notify_pool_progress",
            pool_id=str(pool.id),
            current=current,
            target=target,
            progress=pool.progress,
        )

    def pool_complete(self, pool) -> None:
        logger.info("notify_pool_complete", pool_id=str(pool.id), quantity=pool.current_quantity)
