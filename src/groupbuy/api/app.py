"""Groupbuy FastAPI application.

``create_app`` wires an OrderLifecycleService into a FastAPI app; every
request runs inside the groupbuy domain context.

Usage:
    uvicorn groupbuy.api.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from groupbuy.api.routes import order_router, pool_router, product_router
from groupbuy.domain import groupbuy
from groupbuy.errors import (
    InsufficientInventoryError,
    InsufficientStockError,
    InternalError,
    NotFoundError,
    PoolExpiredError,
    ValidationError,
)
from groupbuy.lifecycle.service import OrderLifecycleService
from groupbuy.utils.logging import add_context, clear_context, configure_logging

_STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    InsufficientStockError: 409,
    InsufficientInventoryError: 409,
    PoolExpiredError: 409,
    InternalError: 500,
}


def _error_body(exc):
    """Protean's ValidationError carries `messages`; other exceptions keep them in args."""
    messages = getattr(exc, "messages", None)
    if messages is None:
        messages = exc.args[0] if exc.args else str(exc)
    return {"error": messages}


def _error_response(status_code: int):
    async def handler(request: Request, exc) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=_error_body(exc))

    return handler


def register_groupbuy_exception_handlers(app: FastAPI) -> None:
    """Protean's handlers cover its other exceptions; groupbuy errors get explicit codes."""
    register_exception_handlers(app)
    for exc_class, status_code in _STATUS_CODES.items():
        app.add_exception_handler(exc_class, _error_response(status_code))


def create_app(service: OrderLifecycleService) -> FastAPI:
    app = FastAPI(
        title="Groupbuy API",
        description="Pooled purchase orders: checkout, pools, fulfillment status and stock",
    )
    app.state.service = service

    @app.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        """Push the groupbuy domain context and bind request log context."""
        add_context(method=request.method, path=request.url.path)
        try:
            with groupbuy.domain_context():
                response = await call_next(request)
        finally:
            clear_context()
        return response

    app.include_router(order_router)
    app.include_router(pool_router)
    app.include_router(product_router)
    register_groupbuy_exception_handlers(app)

    @app.get("/health")
    async def health():
        return JSONResponse(content={"status": "ok", "domain": groupbuy.name})

    return app


def app_factory() -> FastAPI:
    """Initialize the domain and logging, and build the app from environment settings."""
    configure_logging()
    groupbuy.init()
    with groupbuy.domain_context():
        service = OrderLifecycleService.from_settings()
    return create_app(service)
