"""OrderStatusMachine — validates and executes order status changes.

Every external status change goes through ``update_status``. All checks run
before anything is mutated; side effects (stock reservation and release,
sales counters, pool re-evaluation) run in the caller's UnitOfWork so a
failure anywhere rolls back the whole transition.

Permission table (keyed by target status):
    CANCELLED                                 any role (buyers only before SHIPPED)
    PROCESSING, CONFIRMED, SHIPPED, DELIVERED SELLER, ADMIN, SYSTEM
    COMPLETED, REFUNDED                       ADMIN, SYSTEM
    POOLING                                   ADMIN, SYSTEM
    PENDING                                   never requested externally
"""

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from groupbuy.errors import not_found
from groupbuy.inventory.product import Product
from groupbuy.order.history import ActorRole, record_transition
from groupbuy.order.order import Order, OrderStatus, can_transition
from groupbuy.pool.pool import PooledOrder, PoolStatus

logger = structlog.get_logger(__name__)

_FULFILLMENT_ROLES = frozenset({ActorRole.SELLER, ActorRole.ADMIN, ActorRole.SYSTEM})
_PRIVILEGED_ROLES = frozenset({ActorRole.ADMIN, ActorRole.SYSTEM})

# Pools are closed by their seller or an operator, never by a member
POOL_CANCEL_ROLES = _FULFILLMENT_ROLES

PERMISSIONS = {
    OrderStatus.CANCELLED: frozenset(ActorRole),
    OrderStatus.PROCESSING: _FULFILLMENT_ROLES,
    OrderStatus.CONFIRMED: _FULFILLMENT_ROLES,
    OrderStatus.SHIPPED: _FULFILLMENT_ROLES,
    OrderStatus.DELIVERED: _FULFILLMENT_ROLES,
    OrderStatus.COMPLETED: _PRIVILEGED_ROLES,
    OrderStatus.REFUNDED: _PRIVILEGED_ROLES,
    OrderStatus.POOLING: _PRIVILEGED_ROLES,
}

# Produced only by the pool cascade or checkout routing
INTERNAL_ONLY = frozenset({OrderStatus.PENDING, OrderStatus.DRAFT})

# Buyers lose the right to cancel once the goods are on their way
_BUYER_LOCKED_STATES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


def coerce_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).upper())
    except ValueError as exc:
        raise ValidationError({"status": [f"Unknown order status: {value}"]}) from exc


def coerce_role(value) -> ActorRole:
    if isinstance(value, ActorRole):
        return value
    try:
        return ActorRole(str(value).upper())
    except ValueError as exc:
        raise ValidationError({"actor_role": [f"Unknown actor role: {value}"]}) from exc


class OrderStatusMachine:
    def __init__(self, inventory, aggregator) -> None:
        self.inventory = inventory
        self.aggregator = aggregator

    def check(self, order, target, role) -> tuple[OrderStatus, ActorRole]:
        """Raise ValidationError unless ``role`` may move ``order`` to ``target``."""
        target = coerce_status(target)
        role = coerce_role(role)
        current = order.current_status

        if not can_transition(current, target):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target.value}"]})
        if target in INTERNAL_ONLY:
            raise ValidationError({"status": [f"{target.value} cannot be requested directly"]})
        if role not in PERMISSIONS.get(target, frozenset()):
            raise ValidationError({"actor_role": [f"{role.value} may not set status {target.value}"]})
        if role == ActorRole.BUYER and current in _BUYER_LOCKED_STATES:
            raise ValidationError({"actor_role": [f"Buyers cannot cancel an order that is {current.value}"]})
        if target == OrderStatus.SHIPPED and not order.shipping_address:
            raise ValidationError({"shipping_address": ["A shipping address is required to ship an order"]})

        return target, role

    def update_status(self, order, target, actor_id, role, batch, note=None, refresh_pool=True):
        """Apply a checked transition with its side effects and save the order.

        Returns the pool this change completed, or None when no cascade ran.
        """
        target, role = self.check(order, target, role)

        if target == OrderStatus.POOLING:
            product = self._pooling_product(order)
            pool = self.aggregator.route_or_update_pool(order, product, batch, actor_id=actor_id, actor_role=role)
            return pool if pool.status == PoolStatus.COMPLETED.value else None

        if target == OrderStatus.PROCESSING and not order.stock_reserved:
            self.inventory.reserve_all(order)
            order.mark_stock_reserved()
        elif target == OrderStatus.CANCELLED and order.stock_reserved:
            self.inventory.release_all(order)
            order.mark_stock_released()
        elif target == OrderStatus.DELIVERED:
            self.inventory.record_sale(order)

        previous = order.transition_to(target)
        record_transition(order, previous, target, batch, actor_id=actor_id, actor_role=role, note=note)

        logger.info(
            "order_status_changed",
            order_id=str(order.id),
            from_status=previous.value,
            to_status=target.value,
            actor_role=role.value,
        )

        if refresh_pool and target == OrderStatus.CANCELLED and order.pooled_order_id:
            pool = current_domain.repository_for(PooledOrder).get(order.pooled_order_id)
            # refresh saves the order together with the pool
            self.aggregator.refresh(pool, batch, known=[order])
        else:
            current_domain.repository_for(Order).add(order)
        return None

    def _pooling_product(self, order) -> Product:
        repo = current_domain.repository_for(Product)
        products = {}
        for product_id in order.product_ids():
            try:
                products[product_id] = repo.get(product_id)
            except ObjectNotFoundError as exc:
                raise not_found("product", product_id) from exc

        product = self.aggregator.pooling_product(order, products)
        if product is None:
            raise ValidationError({"status": ["Every item meets its minimum quantity, the order does not need a pool"]})
        return product
