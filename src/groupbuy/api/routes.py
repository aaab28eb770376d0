"""FastAPI routes for the groupbuy service: orders, pools and product stock.

Routes are thin: they translate request bodies into OrderLifecycleService
calls and aggregates into response schemas. Errors propagate to the
exception handlers registered in ``groupbuy.api.app``.
"""

from fastapi import APIRouter, Depends, Request, Response

from groupbuy.api.schemas import (
    CancelPoolRequest,
    CreateOrderRequest,
    CreatePoolRequest,
    CreatePoolResponse,
    CreateProductRequest,
    HistoryEntryResponse,
    InventorySettingsRequest,
    JoinPoolRequest,
    OrderResponse,
    OrdersResponse,
    PoolResponse,
    ProductResponse,
    ReorderSuggestionResponse,
    StockAdjustmentRequest,
    StockLogResponse,
    SubmitOrderRequest,
    SweepResponse,
    UpdateOrderRequest,
    UpdateStatusRequest,
)
from groupbuy.lifecycle.service import OrderLifecycleService


def get_service(request: Request) -> OrderLifecycleService:
    return request.app.state.service


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrdersResponse)
async def create_order(
    body: CreateOrderRequest, service: OrderLifecycleService = Depends(get_service)
) -> OrdersResponse:
    """Check out a cart: one order per seller, pooled where under the minimum."""
    orders = service.create_order(
        buyer_id=body.buyer_id,
        items=[item.model_dump() for item in body.items],
        draft=body.draft,
        **body.checkout_kwargs(),
    )
    return OrdersResponse(orders=[OrderResponse.from_order(order) for order in orders])


@order_router.get("", response_model=OrdersResponse)
async def list_orders(
    buyer_id: str | None = None,
    seller_id: str | None = None,
    status: str | None = None,
    service: OrderLifecycleService = Depends(get_service),
) -> OrdersResponse:
    orders = service.list_orders(buyer_id=buyer_id, seller_id=seller_id, status=status)
    return OrdersResponse(orders=[OrderResponse.from_order(order) for order in orders])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, service: OrderLifecycleService = Depends(get_service)) -> OrderResponse:
    return OrderResponse.from_order(service.get_order(order_id))


@order_router.put("/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: str, body: UpdateOrderRequest, service: OrderLifecycleService = Depends(get_service)
) -> OrderResponse:
    order = service.update_order(
        order_id,
        status=body.status,
        items=[item.model_dump() for item in body.items] if body.items is not None else None,
        actor_id=body.actor_id,
        actor_role=body.actor_role,
        note=body.note,
    )
    return OrderResponse.from_order(order)


@order_router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str, body: UpdateStatusRequest, service: OrderLifecycleService = Depends(get_service)
) -> OrderResponse:
    order = service.update_order_status(
        order_id,
        body.status,
        actor_id=body.actor_id,
        actor_role=body.actor_role,
        note=body.note,
    )
    return OrderResponse.from_order(order)


@order_router.post("/{order_id}/submit", response_model=OrderResponse)
async def submit_order(
    order_id: str, body: SubmitOrderRequest, service: OrderLifecycleService = Depends(get_service)
) -> OrderResponse:
    return OrderResponse.from_order(service.submit_order(order_id, actor_id=body.actor_id))


@order_router.delete("/{order_id}", status_code=204)
async def delete_order(order_id: str, service: OrderLifecycleService = Depends(get_service)) -> Response:
    service.delete_order(order_id)
    return Response(status_code=204)


@order_router.get("/{order_id}/history", response_model=list[HistoryEntryResponse])
async def order_history(
    order_id: str, service: OrderLifecycleService = Depends(get_service)
) -> list[HistoryEntryResponse]:
    return [
        HistoryEntryResponse(
            from_status=entry.from_status,
            to_status=entry.to_status,
            actor_id=str(entry.actor_id) if entry.actor_id else None,
            actor_role=entry.actor_role,
            note=entry.note,
            changed_at=entry.changed_at,
        )
        for entry in service.order_history(order_id)
    ]


# ---------------------------------------------------------------------------
# Pool Router
# ---------------------------------------------------------------------------
pool_router = APIRouter(prefix="/pools", tags=["pools"])


@pool_router.get("", response_model=list[PoolResponse])
async def list_pools(
    product_id: str | None = None,
    status: str | None = None,
    seller_id: str | None = None,
    service: OrderLifecycleService = Depends(get_service),
) -> list[PoolResponse]:
    pools = service.list_pools(product_id=product_id, status=status, seller_id=seller_id)
    return [PoolResponse.from_pool(pool) for pool in pools]


@pool_router.post("", status_code=201, response_model=CreatePoolResponse)
async def create_pool(
    body: CreatePoolRequest, service: OrderLifecycleService = Depends(get_service)
) -> CreatePoolResponse:
    pool, order = service.create_pool(
        buyer_id=body.buyer_id,
        product_id=body.product_id,
        quantity=body.quantity,
        expires_at=body.expires_at,
        **body.checkout_kwargs(),
    )
    return CreatePoolResponse(pool=PoolResponse.from_pool(pool), order=OrderResponse.from_order(order))


@pool_router.post("/sweep", response_model=SweepResponse)
async def sweep_pools(service: OrderLifecycleService = Depends(get_service)) -> SweepResponse:
    """Cancel expired pools, then re-evaluate the open ones.

    Meant to be triggered by an external scheduler.
    """
    expired = service.expire_pools()
    promoted = service.reconcile_pools()
    return SweepResponse(
        expired_pool_ids=[str(pool.id) for pool in expired],
        promoted_order_ids=[str(order.id) for order in promoted],
    )


@pool_router.get("/{pool_id}", response_model=PoolResponse)
async def get_pool(pool_id: str, service: OrderLifecycleService = Depends(get_service)) -> PoolResponse:
    return PoolResponse.from_pool(service.get_pool(pool_id))


@pool_router.post("/{pool_id}/join", status_code=201, response_model=OrderResponse)
async def join_pool(
    pool_id: str, body: JoinPoolRequest, service: OrderLifecycleService = Depends(get_service)
) -> OrderResponse:
    order = service.join_pool(pool_id, buyer_id=body.buyer_id, quantity=body.quantity, **body.checkout_kwargs())
    return OrderResponse.from_order(order)


@pool_router.post("/{pool_id}/cancel", response_model=PoolResponse)
async def cancel_pool(
    pool_id: str, body: CancelPoolRequest, service: OrderLifecycleService = Depends(get_service)
) -> PoolResponse:
    """Close an open pool and cancel its waiting members."""
    pool = service.cancel_pool(pool_id, body.actor_id, body.actor_role, reason=body.reason)
    return PoolResponse.from_pool(pool)


# ---------------------------------------------------------------------------
# Product Router
# ---------------------------------------------------------------------------
product_router = APIRouter(prefix="/products", tags=["products"])


@product_router.post("", status_code=201, response_model=ProductResponse)
async def create_product(
    body: CreateProductRequest, service: OrderLifecycleService = Depends(get_service)
) -> ProductResponse:
    return ProductResponse.from_product(service.add_product(**body.model_dump()))


@product_router.get("/reorder-suggestions", response_model=list[ReorderSuggestionResponse])
async def reorder_suggestions(
    service: OrderLifecycleService = Depends(get_service),
) -> list[ReorderSuggestionResponse]:
    return [ReorderSuggestionResponse(**suggestion) for suggestion in service.reorder_suggestions()]


@product_router.get("/low-stock", response_model=list[ProductResponse])
async def low_stock_products(
    seller_id: str, service: OrderLifecycleService = Depends(get_service)
) -> list[ProductResponse]:
    return [ProductResponse.from_product(product) for product in service.low_stock_products(seller_id)]


@product_router.get("/{product_id}", response_model=ProductResponse)

async def get_product(product_id: str, service: OrderLifecycleService = Depends(get_service)) -> ProductResponse:
    return ProductResponse.from_product(service.get_product(product_id))


@product_router.post("/{product_id}/stock", response_model=ProductResponse)
async def adjust_stock(
    product_id: str, body: StockAdjustmentRequest, service: OrderLifecycleService = Depends(get_service)
) -> ProductResponse:
    product = service.adjust_stock(product_id, body.delta, body.reason_code, notes=body.notes)
    return ProductResponse.from_product(product)


@product_router.put("/{product_id}/settings", response_model=ProductResponse)
async def update_inventory_settings(
    product_id: str, body: InventorySettingsRequest, service: OrderLifecycleService = Depends(get_service)
) -> ProductResponse:
    product = service.update_inventory_settings(product_id, **body.model_dump())
    return ProductResponse.from_product(product)


@product_router.get("/{product_id}/stock-history"
, response_model=list[StockLogResponse])
async def stock_history(
    product_id: str, limit: int = 10, service: OrderLifecycleService = Depends(get_service)
) -> list[StockLogResponse]:
    return [
        StockLogResponse(
            log_type=entry.log_type,
            quantity=entry.quantity,
            previous_stock=entry.previous_stock,
            new_stock=entry.new_stock,
            order_id=str(entry.order_id) if entry.order_id else None,
            notes=entry.notes,
            created_at=entry.created_at,
        )
        for entry in service.stock_history(product_id, limit=limit)
    ]
