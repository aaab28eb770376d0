"""Pydantic request/response schemas for the groupbuy API.

These are external contracts, kept separate from the Protean aggregates.
Quantities are not range-checked here; the domain rejects them with a
structured ValidationError.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    street: str
    city: str
    state: str | None = None
    postal_code: str
    country: str


class ItemRequest(BaseModel):
    product_id: str
    quantity: int


class TaxDetails(BaseModel):
    shipping_address: AddressSchema | None = None
    is_exempt: bool = False
    exemption_number: str | None = None
    jurisdiction: str | None = None

    def checkout_kwargs(self) -> dict:
        return {
            "shipping_address": self.shipping_address.model_dump() if self.shipping_address else None,
            "is_exempt": self.is_exempt,
            "exemption_number": self.exemption_number,
            "jurisdiction": self.jurisdiction,
        }


# ---------------------------------------------------------------------------
# Order Request Schemas
# ---------------------------------------------------------------------------
class CreateOrderRequest(TaxDetails):
    buyer_id: str
    items: list[ItemRequest]
    draft: bool = False

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "buyer_id": "buyer-001",
                    "items": [{"product_id": "prod-001", "quantity": 40}],
                    "shipping_address": {
                        "street": "1 Market St",
                        "city": "San Francisco",
                        "state": "CA",
                        "postal_code": "94105",
                        "country": "US",
                    },
                }
            ]
        }
    }


class UpdateOrderRequest(BaseModel):
    status: str | None = None
    items: list[ItemRequest] | None = None
    actor_id: str | None = None
    actor_role: str = "BUYER"
    note: str | None = None


class UpdateStatusRequest(BaseModel):
    status: str
    actor_id: str
    actor_role: str
    note: str | None = None


class SubmitOrderRequest(BaseModel):
    actor_id: str | None = None


# ---------------------------------------------------------------------------
# Pool Request Schemas
# ---------------------------------------------------------------------------
class CreatePoolRequest(TaxDetails):
    buyer_id: str
    product_id: str
    quantity: int
    expires_at: datetime | None = None


class JoinPoolRequest(TaxDetails):
    buyer_id: str
    quantity: int


class CancelPoolRequest(BaseModel):
    actor_id: str
    actor_role: str
    reason: str | None = Field(default=None, max_length=255)



# ---------------------------------------------------------------------------
# Product Request Schemas
# ---------------------------------------------------------------------------
class CreateProductRequest(BaseModel):
    seller_id: str
    name: str
    unit_price: float = Field(ge=0)
    min_order_quantity: int = Field(ge=1, default=1)
    current_stock: int = Field(ge=0, default=0)
    low_stock_threshold: int = Field(ge=0, default=10)
    reorder_point: int = Field(ge=0, default=0)
    reorder_quantity: int = Field(ge=0, default=0)


class StockAdjustmentRequest(BaseModel):
    delta: int
    reason_code: str
    notes: str | None = None


class InventorySettingsRequest(BaseModel):
    low_stock_threshold: int | None = None
    reorder_point: int | None = None
    reorder_quantity: int | None = None



# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class OrderItemResponse(BaseModel):
    id: str
    product_id: str
    quantity: int
    unit_price: float
    total_price: float


class OrderResponse(BaseModel):
    id: str
    buyer_id: str
    seller_id: str
    status: str
    items: list[OrderItemResponse]
    shipping_address: AddressSchema | None = None
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    is_exempt: bool
    pooled_order_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        address = order.shipping_address
        return cls(
            id=str(order.id),
            buyer_id=str(order.buyer_id),
            seller_id=str(order.seller_id),
            status=order.status,
            items=[
                OrderItemResponse(
                    id=str(item.id),
                    product_id=str(item.product_id),
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
                for item in order.items
            ],
            shipping_address=AddressSchema(**address.to_dict()) if address else None,
            subtotal=order.subtotal,
            tax_rate=order.tax_rate,
            tax_amount=order.tax_amount,
            total=order.total,
            is_exempt=order.is_exempt,
            pooled_order_id=str(order.pooled_order_id) if order.pooled_order_id else None,
            created_at=order.created_at,
            updated_at=order.updated_at,
            completed_at=order.completed_at,
            cancelled_at=order.cancelled_at,
        )


class OrdersResponse(BaseModel):
    orders: list[OrderResponse]


class HistoryEntryResponse(BaseModel):
    from_status: str | None = None
    to_status: str
    actor_id: str | None = None
    actor_role: str | None = None
    note: str | None = None
    changed_at: datetime | None = None


class PoolResponse(BaseModel):
    id: str
    seller_id: str
    product_id: str
    status: str
    current_quantity: int
    target_quantity: int
    remaining_quantity: int
    progress: float
    expires_at: datetime | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_pool(cls, pool) -> "PoolResponse":
        return cls(
            id=str(pool.id),
            seller_id=str(pool.seller_id),
            product_id=str(pool.product_id),
            status=pool.status,
            current_quantity=pool.current_quantity,
            target_quantity=pool.target_quantity,
            remaining_quantity=pool.remaining_quantity,
            progress=pool.progress,
            expires_at=pool.expires_at,
            created_at=pool.created_at,
            completed_at=pool.completed_at,
        )


class CreatePoolResponse(BaseModel):
    pool: PoolResponse
    order: OrderResponse


class SweepResponse(BaseModel):
    expired_pool_ids: list[str]
    promoted_order_ids: list[str]


class ProductResponse(BaseModel):
    id: str
    seller_id: str
    name: str
    unit_price: float
    min_order_quantity: int
    current_stock: int
    reserved_stock: int
    inventory_status: str
    low_stock_threshold: int
    reorder_point: int
    reorder_quantity: int
    total_sales: int

    @classmethod
    def from_product(cls, product) -> "ProductResponse":
        return cls(
            id=str(product.id),
            seller_id=str(product.seller_id),
            name=product.name,
            unit_price=product.unit_price,
            min_order_quantity=product.min_order_quantity,
            current_stock=product.current_stock,
            reserved_stock=product.reserved_stock,
            inventory_status=product.inventory_status,
            low_stock_threshold=product.low_stock_threshold,
            reorder_point=product.reorder_point,
            reorder_quantity=product.reorder_quantity,
            total_sales=product.total_sales,
        )


class ReorderSuggestionResponse(BaseModel):
    product_id: str
    name: str
    seller_id: str
    current_stock: int
    reorder_point: int
    suggested_quantity: int


class StockLogResponse(BaseModel):
    log_type: str
    quantity: int
    previous_stock: int
    new_stock: int
    order_id: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
