"""Order aggregate (CQRS) — one buyer's purchase from one seller.

State Machine:
    DRAFT → POOLING → PENDING → PROCESSING → CONFIRMED → SHIPPED →
    DELIVERED → COMPLETED
    CANCELLED from every non-terminal state
    REFUNDED from DELIVERED or COMPLETED

Orders whose items already meet every product minimum skip the pool and are
placed straight into PENDING at checkout; everything else waits in POOLING
until the pool crosses its threshold.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from groupbuy.domain import groupbuy
from groupbuy.order.events import OrderPlaced, OrderStatusChanged


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    DRAFT = "DRAFT"
    POOLING = "POOLING"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# State machine transition map
VALID_TRANSITIONS = {
    OrderStatus.DRAFT: {OrderStatus.POOLING, OrderStatus.CANCELLED},
    OrderStatus.POOLING: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED, OrderStatus.REFUNDED},
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

TERMINAL_STATES = {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@groupbuy.value_object(part_of="Order")
class ShippingAddress:
    """Delivery address captured at checkout."""

    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@groupbuy.entity(part_of="Order")
class OrderItem:
    """A line item; the unit price is the product price at the time of ordering."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    total_price = Float(required=True, min_value=0.0)


def _build_item(data) -> OrderItem:
    quantity = int(data["quantity"])
    unit_price = float(data["unit_price"])
    return OrderItem(
        product_id=data["product_id"],
        quantity=quantity,
        unit_price=unit_price,
        total_price=round(quantity * unit_price, 2),
    )


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@groupbuy.aggregate
class Order:
    buyer_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    items = HasMany(OrderItem)
    status = String(
        choices=OrderStatus,
        default=OrderStatus.DRAFT.value,
    )
    shipping_address = ValueObject(ShippingAddress)
    subtotal = Float(default=0.0)
    tax_rate = Float(default=0.0)
    tax_amount = Float(default=0.0)
    tax_jurisdiction = String(max_length=10)
    is_exempt = Boolean(default=False)
    exemption_number = String(max_length=50)
    pooled_order_id = Identifier()
    stock_reserved = Boolean(default=False)
    created_at = DateTime()
    updated_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()

    @classmethod
    def create(
        cls,
        buyer_id,
        seller_id,
        items_data,
        shipping_address=None,
        is_exempt=False,
        exemption_number=None,
    ):
        """Create a DRAFT order. Pricing comes from the item snapshots; tax is applied separately."""
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})

        now = datetime.now(UTC)
        items = [_build_item(data) for data in items_data]
        order = cls(
            buyer_id=buyer_id,
            seller_id=seller_id,
            items=items,
            shipping_address=(
                ShippingAddress(**shipping_address) if isinstance(shipping_address, dict) else shipping_address
            ),
            subtotal=round(sum(item.total_price for item in items), 2),
            is_exempt=is_exempt,
            exemption_number=exemption_number,
            created_at=now,
            updated_at=now,
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                buyer_id=buyer_id,
                seller_id=seller_id,
                item_count=len(items),
                subtotal=order.subtotal,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATES

    @property
    def total(self) -> float:
        return round(self.subtotal + self.tax_amount, 2)

    def quantity_of(self, product_id) -> int:
        return sum(item.quantity for item in self.items if str(item.product_id) == str(product_id))

    def product_ids(self) -> list[str]:
        seen = []
        for item in self.items:
            if str(item.product_id) not in seen:
                seen.append(str(item.product_id))
        return seen

    # -------------------------------------------------------------------
    # Pricing
    # -------------------------------------------------------------------
    def apply_tax(self, breakdown) -> None:
        self.tax_rate = breakdown.rate
        self.tax_amount = breakdown.amount
        self.tax_jurisdiction = breakdown.jurisdiction
        self.updated_at = datetime.now(UTC)

    def replace_items(self, items_data) -> None:
        """Swap the line items of a draft and recompute the subtotal."""
        if self.current_status != OrderStatus.DRAFT:
            raise ValidationError({"items": ["Items can only be changed while the order is a draft"]})
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})

        self.remove_items(list(self.items))
        items = [_build_item(data) for data in items_data]
        self.add_items(items)
        self.subtotal = round(sum(item.total_price for item in items), 2)
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = self.current_status
        if not can_transition(current, target_status):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def _move_to(self, target_status: OrderStatus) -> OrderStatus:
        previous = self.current_status
        now = datetime.now(UTC)
        self.status = target_status.value
        self.updated_at = now
        if target_status == OrderStatus.COMPLETED:
            self.completed_at = now
        elif target_status == OrderStatus.CANCELLED:
            self.cancelled_at = now

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                from_status=previous.value,
                to_status=target_status.value,
                pooled_order_id=self.pooled_order_id,
                changed_at=now,
            )
        )
        return previous

    def transition_to(self, target_status: OrderStatus) -> OrderStatus:
        """Move along the transition table. Returns the status the order left."""
        self._assert_can_transition(target_status)
        return self._move_to(target_status)

    def place(self) -> OrderStatus:
        """Route a fully-sized draft straight to PENDING at checkout."""
        if self.current_status != OrderStatus.DRAFT:
            raise ValidationError({"status": [f"Only draft orders can be placed, order is {self.status}"]})
        return self._move_to(OrderStatus.PENDING)

    def join_pool(self, pool_id) -> OrderStatus:
        self._assert_can_transition(OrderStatus.POOLING)
        self.pooled_order_id = pool_id
        return self._move_to(OrderStatus.POOLING)

    def promote_from_pool(self) -> OrderStatus:
        if self.current_status != OrderStatus.POOLING:
            raise ValidationError({"status": [f"Only pooling orders can be promoted, order is {self.status}"]})
        return self._move_to(OrderStatus.PENDING)

    def mark_stock_reserved(self) -> None:
        self.stock_reserved = True

    def mark_stock_released(self) -> None:
        self.stock_reserved = False
