"""Repositories for the Order and OrderHistory aggregates."""

from groupbuy.domain import groupbuy
from groupbuy.order.history import OrderHistory
from groupbuy.order.order import Order, OrderStatus


@groupbuy.repository(part_of=Order)
class OrderRepository:
    def find(self, buyer_id=None, seller_id=None, status=None) -> list[Order]:
        """Orders matching every filter that is given, oldest first."""
        criteria = {}
        if buyer_id is not None:
            criteria["buyer_id"] = buyer_id
        if seller_id is not None:
            criteria["seller_id"] = seller_id
        if status is not None:
            criteria["status"] = status
        query = self._dao.query.filter(**criteria) if criteria else self._dao.query
        return query.order_by("created_at").all().items

    def find_by_pool(self, pool_id) -> list[Order]:
        """Every order attached to a pool, including cancelled ones."""
        return self._dao.query.filter(pooled_order_id=pool_id).all().items

    def find_active_by_pool(self, pool_id) -> list[Order]:
        return [
            order for order in self.find_by_pool(pool_id) if order.status != OrderStatus.CANCELLED.value
        ]


@groupbuy.repository(part_of=OrderHistory)
class OrderHistoryRepository:
    def for_order(self, order_id) -> list[OrderHistory]:
        """History rows for an order in the order they were written."""
        return self._dao.query.filter(order_id=str(order_id)).order_by("changed_at").all().items
