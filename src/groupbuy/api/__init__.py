from groupbuy.api.routes import order_router, pool_router, product_router

__all__ = ["order_router", "pool_router", "product_router"]
