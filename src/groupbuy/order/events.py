"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from groupbuy.domain import groupbuy


@groupbuy.event(part_of="Order")
class OrderPlaced:
    """A buyer checkout produced an order for one seller."""

    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    item_count = Integer(required=True)
    subtotal = Float(required=True)
    placed_at = DateTime(required=True)


@groupbuy.event(part_of="Order")
class OrderStatusChanged:
    """The order moved from one lifecycle status to another."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    pooled_order_id = Identifier()
    changed_at = DateTime(required=True)
