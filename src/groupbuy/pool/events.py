"""Domain events for the PooledOrder aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from groupbuy.domain import groupbuy


@groupbuy.event(part_of="PooledOrder")
class PoolOpened:
    """The first under-minimum order for a seller/product pair opened a pool."""

    __version__ = 1

    pool_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    product_id = Identifier(required=True)
    target_quantity = Integer(required=True)
    expires_at = DateTime()
    opened_at = DateTime(required=True)


@groupbuy.event(part_of="PooledOrder")
class PoolQuantityUpdated:
    """The pooled quantity was recomputed from its member orders."""

    __version__ = 1

    pool_id = Identifier(required=True)
    previous_quantity = Integer(required=True)
    current_quantity = Integer(required=True)
    target_quantity = Integer(required=True)
    updated_at = DateTime(required=True)


@groupbuy.event(part_of="PooledOrder")
class PoolCompleted:
    """The pool reached its target and its members were released for fulfillment."""

    __version__ = 1

    pool_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    product_id = Identifier(required=True)
    final_quantity = Integer(required=True)
    completed_at = DateTime(required=True)


@groupbuy.event(part_of="PooledOrder")
class PoolCancelled:
    """The pool was closed without reaching its target."""

    __version__ = 1

    pool_id = Identifier(required=True)
    reason = String(required=True)
    cancelled_at = DateTime(required=True)
