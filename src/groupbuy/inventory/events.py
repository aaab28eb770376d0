"""Domain events for the Product aggregate: stock movements."""

from protean.fields import DateTime, Identifier, Integer, String

from groupbuy.domain import groupbuy


@groupbuy.event(part_of="Product")
class StockReserved:
    """Stock was earmarked for an order entering processing."""

    __version__ = 1

    product_id = Identifier(required=True)
    order_id = Identifier()
    quantity = Integer(required=True)
    new_stock = Integer(required=True)
    new_reserved = Integer(required=True)
    reserved_at = DateTime(required=True)


@groupbuy.event(part_of="Product")
class StockReleased:
    """A reservation was returned to available stock."""

    __version__ = 1

    product_id = Identifier(required=True)
    order_id = Identifier()
    quantity = Integer(required=True)
    new_stock = Integer(required=True)
    new_reserved = Integer(required=True)
    released_at = DateTime(required=True)


@groupbuy.event(part_of="Product")
class StockAdjusted:
    """Stock was changed deliberately: restock, manual adjustment or customer return."""

    __version__ = 1

    product_id = Identifier(required=True)
    reason_code = String(required=True)
    delta = Integer(required=True)
    previous_stock = Integer(required=True)
    new_stock = Integer(required=True)
    adjusted_at = DateTime(required=True)


@groupbuy.event(part_of="Product")
class LowStockDetected:
    """Stock dropped to or below the low-stock threshold."""

    __version__ = 1

    product_id = Identifier(required=True)
    inventory_status = String(required=True)
    current_stock = Integer(required=True)
    low_stock_threshold = Integer(required=True)
    detected_at = DateTime(required=True)
