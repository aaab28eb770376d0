"""Repository for the PooledOrder aggregate."""

from groupbuy.domain import groupbuy
from groupbuy.pool.pool import PooledOrder


@groupbuy.repository(part_of=PooledOrder)
class PooledOrderRepository:
    def find(self, product_id=None, status=None, seller_id=None) -> list[PooledOrder]:
        criteria = {}
        if product_id is not None:
            criteria["product_id"] = product_id
        if status is not None:
            criteria["status"] = status
        if seller_id is not None:
            criteria["seller_id"] = seller_id
        query = self._dao.query.filter(**criteria) if criteria else self._dao.query
        return query.order_by("created_at").all().items

    def find_open(self, seller_id=None, product_id=None) -> list[PooledOrder]:
        """Pools still accepting members, oldest first."""
        return [pool for pool in self.find(product_id=product_id, seller_id=seller_id) if pool.is_open]
