"""PoolAggregator — the only writer of pool quantity and pool status.

Responsibilities:
    - find or lazily open the pool for a (seller, product) pair
    - attach under-minimum orders to it
    - recompute the pooled quantity from member orders on every mutation
    - complete the pool once the target is met and cascade its POOLING
      members to PENDING

Everything runs inside the caller's UnitOfWork. Each aggregate is saved once
per refresh; orders the caller already holds in memory are passed as
``known`` so their unsaved state wins over what the store returns.
"""

import threading
from contextlib import ExitStack, contextmanager
from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from groupbuy.config import Settings
from groupbuy.errors import PoolExpiredError
from groupbuy.order.history import ActorRole, record_transition
from groupbuy.order.order import Order, OrderStatus
from groupbuy.pool.pool import PooledOrder

logger = structlog.get_logger(__name__)


class PoolAggregator:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    # -------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------
    def _lock_for(self, key: str) -> threading.RLock:
        with self._registry_lock:
            return self._locks.setdefault(key, threading.RLock())

    @contextmanager
    def locked(self, keys):
        """Hold the pool locks for every product key, acquired in sorted order."""
        with ExitStack() as stack:
            for key in sorted({str(key) for key in keys}):
                stack.enter_context(self._lock_for(key))
            yield

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------
    def find_open_pool(self, seller_id, product_id, now=None) -> PooledOrder | None:
        """Oldest open, unexpired pool for the pair."""
        for pool in current_domain.repository_for(PooledOrder).find_open(seller_id=seller_id, product_id=product_id):
            if not pool.is_expired(now):
                return pool
        return None

    def expired_pools(self, now=None) -> list[PooledOrder]:
        return [pool for pool in current_domain.repository_for(PooledOrder).find_open() if pool.is_expired(now)]

    def open_pool(self, seller_id, product, expires_at=None, now=None) -> PooledOrder:
        """Create (but do not save) a pool targeting the product's minimum."""
        if expires_at is None and self.settings.pool_ttl_hours:
            expires_at = (now or datetime.now(UTC)) + timedelta(hours=self.settings.pool_ttl_hours)

        pool = PooledOrder.open(
            seller_id=seller_id,
            product_id=str(product.id),
            target_quantity=product.min_order_quantity,
            expires_at=expires_at,
        )
        logger.info(
            "pool_opened",
            pool_id=str(pool.id),
            seller_id=seller_id,
            product_id=str(product.id),
            target_quantity=pool.target_quantity,
        )
        return pool

    @staticmethod
    def pooling_product(order, products):
        """The product an order must pool on, or None if every item meets its minimum.

        Pools cover a single product; an order with more than one
        under-minimum product cannot be pooled.
        """
        under = [
            product_id
            for product_id in order.product_ids()
            if order.quantity_of(product_id) < products[product_id].min_order_quantity
        ]
        if len(under) > 1:
            raise ValidationError(
                {"items": ["Only one product per seller may be below its minimum order quantity"]}
            )
        return products[under[0]] if under else None

    # -------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------
    def route_or_update_pool(
        self,
        order,
        product,
        batch,
        actor_id=None,
        actor_role=ActorRole.SYSTEM,
        pool=None,
        now=None,
    ) -> PooledOrder:
        """Attach ``order`` to its pool and re-evaluate the threshold.

        With no explicit ``pool`` the oldest open, unexpired pool for the
        order's (seller, product) is used, or a new one is opened.
        """
        if pool is None:
            pool = self.find_open_pool(order.seller_id, product.id, now=now)
            if pool is None:
                pool = self.open_pool(order.seller_id, product, now=now)
        else:
            if not pool.is_open:
                raise ValidationError({"pool": [f"Pool {pool.id} is {pool.status} and no longer accepts orders"]})
            if pool.is_expired(now):
                raise PoolExpiredError({"pool": [f"Pool {pool.id} expired at {pool.expires_at.isoformat()}"]})
            if str(pool.seller_id) != str(order.seller_id) or str(pool.product_id) != str(product.id):
                raise ValidationError({"pool": [f"Pool {pool.id} is for a different seller or product"]})

        previous = order.join_pool(str(pool.id))
        record_transition(
            order,
            previous,
            OrderStatus.POOLING,
            batch,
            actor_id=actor_id,
            actor_role=actor_role,
            note=f"Joined pool {pool.id}",
        )

        self.refresh(pool, batch, known=[order])
        return pool

    # -------------------------------------------------------------------
    # Threshold evaluation
    # -------------------------------------------------------------------
    def _active_members(self, pool, known=()) -> list[Order]:
        members = {str(order.id): order for order in current_domain.repository_for(Order).find_by_pool(pool.id)}
        members.update({str(order.id): order for order in known})
        return [
            order
            for order in members.values()
            if str(order.pooled_order_id) == str(pool.id) and order.status != OrderStatus.CANCELLED.value
        ]

    def recompute_quantity(self, pool, known=()) -> int:
        """Sum of the pooled product across non-cancelled members, read from the store."""
        return sum(order.quantity_of(pool.product_id) for order in self._active_members(pool, known))

    def refresh(self, pool, batch, known=()) -> list[Order]:
        """Recompute quantity, complete on threshold, save. Returns promoted orders."""
        members = self._active_members(pool, known)
        quantity = sum(order.quantity_of(pool.product_id) for order in members)
        changed = pool.record_quantity(quantity)

        promoted = []
        if pool.is_open and pool.threshold_met:
            pool.complete()
            for order in members:
                if order.status != OrderStatus.POOLING.value:
                    continue
                previous = order.promote_from_pool()
                record_transition(
                    order,
                    previous,
                    OrderStatus.PENDING,
                    batch,
                    actor_role=ActorRole.SYSTEM,
                    note=f"Pool {pool.id} reached {pool.current_quantity}/{pool.target_quantity}",
                )
                promoted.append(order)
            batch.pool_complete(pool)

            logger.info(
                "pool_completed",
                pool_id=str(pool.id),
                quantity=pool.current_quantity,
                target_quantity=pool.target_quantity,
                promoted=len(promoted),
            )
        elif pool.is_open and changed:
            batch.pool_progress(pool, pool.current_quantity, pool.target_quantity)

        order_repo = current_domain.repository_for(Order)
        known_ids = set()
        for order in known:
            known_ids.add(str(order.id))
            order_repo.add(order)
        for order in promoted:
            if str(order.id) not in known_ids:
                order_repo.add(order)
        current_domain.repository_for(PooledOrder).add(pool)

        return promoted

    def reconcile(self, seller_id, product_id, batch, exclude=None) -> list[Order]:
        """Re-evaluate every open pool for the pair except ``exclude``."""
        promoted = []
        for pool in current_domain.repository_for(PooledOrder).find_open(seller_id=seller_id, product_id=product_id):
            if exclude is not None and str(pool.id) == str(exclude):
                continue
            promoted.extend(self.refresh(pool, batch))
        return promoted

    def cancel_pool(self, pool, known=(), reason="expired") -> bool:
        """Close a below-threshold pool once its members have been cancelled."""
        pool.record_quantity(self.recompute_quantity(pool, known))
        if pool.threshold_met:
            raise ValidationError({"pool": [f"Pool {pool.id} has met its target and cannot be cancelled"]})

        cancelled = pool.cancel(reason)
        current_domain.repository_for(PooledOrder).add(pool)

        logger.info("pool_cancelled", pool_id=str(pool.id), reason=reason)
        return cancelled
