"""Product aggregate (CQRS) — a seller's listing and its stock counters.

Stock Level Model:
    current_stock:  units available to sell
    reserved_stock: units held for orders in processing

reserve/release move units between the two counters and conserve their sum;
restock, adjustment and return change current_stock deliberately and never
touch reserved_stock.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from groupbuy.domain import groupbuy
from groupbuy.errors import InsufficientStockError
from groupbuy.inventory.events import LowStockDetected, StockAdjusted, StockReleased, StockReserved


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class InventoryStatus(Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class LogType(Enum):
    RESTOCK = "RESTOCK"
    SALE = "SALE"
    ADJUSTMENT = "ADJUSTMENT"
    RETURN = "RETURN"
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"


ADJUSTMENT_REASONS = {LogType.RESTOCK, LogType.ADJUSTMENT, LogType.RETURN}


def stock_status(stock: int, low_stock_threshold: int) -> InventoryStatus:
    if stock <= 0:
        return InventoryStatus.OUT_OF_STOCK
    if stock <= low_stock_threshold:
        return InventoryStatus.LOW_STOCK
    return InventoryStatus.IN_STOCK


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@groupbuy.aggregate
class Product:
    seller_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    unit_price = Float(required=True, min_value=0.0)
    min_order_quantity = Integer(default=1, min_value=1)
    current_stock = Integer(default=0)
    reserved_stock = Integer(default=0)
    low_stock_threshold = Integer(default=10, min_value=0)
    reorder_point = Integer(default=0, min_value=0)
    reorder_quantity = Integer(default=0, min_value=0)
    inventory_status = String(
        choices=InventoryStatus,
        default=InventoryStatus.OUT_OF_STOCK.value,
    )
    total_sales = Integer(default=0)
    last_restock_date = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def stock_counters_cannot_be_negative(self):
        if self.current_stock is not None and self.current_stock < 0:
            raise ValidationError({"current_stock": ["Stock cannot be negative"]})
        if self.reserved_stock is not None and self.reserved_stock < 0:
            raise ValidationError({"reserved_stock": ["Reserved stock cannot be negative"]})

    @classmethod
    def create(
        cls,
        seller_id,
        name,
        unit_price,
        min_order_quantity=1,
        current_stock=0,
        low_stock_threshold=10,
        reorder_point=0,
        reorder_quantity=0,
    ):
        now = datetime.now(UTC)
        return cls(
            seller_id=seller_id,
            name=name,
            unit_price=unit_price,
            min_order_quantity=min_order_quantity,
            current_stock=current_stock,
            low_stock_threshold=low_stock_threshold,
            reorder_point=reorder_point,
            reorder_quantity=reorder_quantity,
            inventory_status=stock_status(current_stock, low_stock_threshold).value,
            created_at=now,
            updated_at=now,
        )

    @property
    def needs_reorder(self) -> bool:
        return self.current_stock <= self.reorder_point

    # -------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------
    def reserve(self, quantity, order_id=None):
        """Earmark stock for an order."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if self.current_stock - quantity < 0:
            raise InsufficientStockError(
                {
                    "quantity": [
                        f"Insufficient stock for product {self.id}: requested {quantity}, "
                        f"available {self.current_stock}"
                    ]
                }
            )

        self.current_stock -= quantity
        self.reserved_stock += quantity
        self.updated_at = datetime.now(UTC)
        self.raise_(
            StockReserved(
                product_id=str(self.id),
                order_id=order_id,
                quantity=quantity,
                new_stock=self.current_stock,
                new_reserved=self.reserved_stock,
                reserved_at=self.updated_at,
            )
        )
        self._refresh_status()

    def release(self, quantity, order_id=None):
        """Return previously reserved stock to the available pool."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if self.reserved_stock - quantity < 0:
            raise InsufficientStockError(
                {
                    "quantity": [
                        f"Cannot release {quantity} units of product {self.id}: only {self.reserved_stock} reserved"
                    ]
                }
            )

        self.reserved_stock -= quantity
        self.current_stock += quantity
        self.updated_at = datetime.now(UTC)
        self.raise_(
            StockReleased(
                product_id=str(self.id),
                order_id=order_id,
                quantity=quantity,
                new_stock=self.current_stock,
                new_reserved=self.reserved_stock,
                released_at=self.updated_at,
            )
        )
        self._refresh_status()

    # -------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------
    def adjust(self, delta, reason_code):
        """Apply a deliberate stock change. Returns the stock level before the change."""
        if reason_code not in {r.value for r in ADJUSTMENT_REASONS}:
            raise ValidationError({"reason_code": [f"{reason_code} is not a stock adjustment reason"]})
        reason = LogType(reason_code)
        if delta == 0:
            raise ValidationError({"delta": ["Adjustment cannot be zero"]})
        if reason in (LogType.RESTOCK, LogType.RETURN) and delta < 0:
            raise ValidationError({"delta": [f"{reason.value} quantity must be positive"]})

        previous = self.current_stock
        if previous + delta < 0:
            raise InsufficientStockError(
                {"delta": [f"Adjustment of {delta} would leave product {self.id} with negative stock"]}
            )

        now = datetime.now(UTC)
        self.current_stock = previous + delta
        self.updated_at = now
        if reason == LogType.RESTOCK:
            self.last_restock_date = now

        self.raise_(
            StockAdjusted(
                product_id=str(self.id),
                reason_code=reason.value,
                delta=delta,
                previous_stock=previous,
                new_stock=self.current_stock,
                adjusted_at=now,
            )
        )
        self._refresh_status()
        return previous

    def record_sale(self, quantity):
        self.total_sales = (self.total_sales or 0) + quantity
        self.updated_at = datetime.now(UTC)

    def update_settings(self, low_stock_threshold=None, reorder_point=None, reorder_quantity=None):
        """Change alert and reorder thresholds; stock status follows the new threshold."""
        changes = {
            "low_stock_threshold": low_stock_threshold,
            "reorder_point": reorder_point,
            "reorder_quantity": reorder_quantity,
        }
        changes = {field: value for field, value in changes.items() if value is not None}
        if not changes:
            raise ValidationError({"settings": ["Nothing to update"]})
        for field, value in changes.items():
            if value < 0:
                raise ValidationError({field: [f"{field} cannot be negative"]})

        for field, value in changes.items():
            setattr(self, field, value)
        self.updated_at = datetime.now(UTC)
        self._refresh_status()

    def _refresh_status(self):
        """Recompute inventory_status; raise LowStockDetected when it degrades."""
        previous = self.inventory_status
        status = stock_status(self.current_stock, self.low_stock_threshold)
        self.inventory_status = status.value

        if status != InventoryStatus.IN_STOCK and previous != status.value:
            self.raise_(
                LowStockDetected(
                    product_id=str(self.id),
                    inventory_status=status.value,
                    current_stock=self.current_stock,
                    low_stock_threshold=self.low_stock_threshold,
                    detected_at=datetime.now(UTC),
                )
            )


@groupbuy.aggregate
class InventoryLog:
    """Append-only record of a single stock movement."""

    product_id = Identifier(required=True)
    log_type = String(choices=LogType, required=True)
    quantity = Integer(required=True)
    previous_stock = Integer(required=True)
    new_stock = Integer(required=True)
    order_id = Identifier()
    notes = Text()
    created_at = DateTime()

    @classmethod
    def entry(cls, product, log_type, quantity, previous_stock, order_id=None, notes=None):
        return cls(
            product_id=str(product.id),
            log_type=log_type.value,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=product.current_stock,
            order_id=order_id,
            notes=notes,
            created_at=datetime.now(UTC),
        )
