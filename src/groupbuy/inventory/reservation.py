"""InventoryReservation — the only writer of Product stock counters.

Every method runs inside the caller's UnitOfWork: products are loaded and
saved through the repository, so an exception anywhere later in the same
workflow rolls the stock change back with everything else.
"""

from collections import OrderedDict

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from groupbuy.errors import InsufficientInventoryError, not_found
from groupbuy.inventory.product import InventoryLog, LogType, Product

logger = structlog.get_logger(__name__)


def _quantities_by_product(order) -> "OrderedDict[str, int]":
    totals = OrderedDict()
    for item in order.items:
        key = str(item.product_id)
        totals[key] = totals.get(key, 0) + item.quantity
    return totals


class InventoryReservation:
    def _load(self, product_id) -> Product:
        try:
            return current_domain.repository_for(Product).get(str(product_id))
        except ObjectNotFoundError as exc:
            raise not_found("product", product_id) from exc

    def _save(self, product, log_type, quantity, previous_stock, order_id=None, notes=None):
        current_domain.repository_for(Product).add(product)
        current_domain.repository_for(InventoryLog).add(
            InventoryLog.entry(product, log_type, quantity, previous_stock, order_id=order_id, notes=notes)
        )

    # -------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------
    def reserve(self, product_id, quantity, order_id=None) -> Product:
        product = self._load(product_id)
        previous = product.current_stock
        product.reserve(quantity, order_id=order_id)
        self._save(product, LogType.RESERVE, -quantity, previous, order_id=order_id)

        logger.info("stock_reserved", product_id=str(product_id), quantity=quantity, order_id=order_id)
        return product

    def release(self, product_id, quantity, order_id=None) -> Product:
        product = self._load(product_id)
        previous = product.current_stock
        product.release(quantity, order_id=order_id)
        self._save(product, LogType.RELEASE, quantity, previous, order_id=order_id)

        logger.info("stock_released", product_id=str(product_id), quantity=quantity, order_id=order_id)
        return product

    def reserve_all(self, order) -> list[Product]:
        """Reserve every line of an order, or nothing at all.

        All lines are checked before the first write, so a short product
        aborts the whole reservation without touching the others.
        """
        order_id = str(order.id)
        wanted = _quantities_by_product(order)
        products = {product_id: self._load(product_id) for product_id in wanted}

        for product_id, quantity in wanted.items():
            # Raises InsufficientStockError before anything is written
            products[product_id].reserve(quantity, order_id=order_id)

        for product_id, quantity in wanted.items():
            product = products[product_id]
            self._save(product, LogType.RESERVE, -quantity, product.current_stock + quantity, order_id=order_id)

        logger.info("order_stock_reserved", order_id=order_id, products=len(products))
        return list(products.values())

    def release_all(self, order) -> list[Product]:
        order_id = str(order.id)
        released = [
            self.release(product_id, quantity, order_id=order_id)
            for product_id, quantity in _quantities_by_product(order).items()
        ]
        return released

    # -------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------
    def adjust(self, product_id, delta, reason_code, notes=None) -> Product:
        """Restock, adjust or return stock. Reserved stock is never touched."""
        product = self._load(product_id)
        previous = product.adjust(delta, reason_code)
        self._save(product, LogType(reason_code), delta, previous, notes=notes)

        logger.info(
            "stock_adjusted",
            product_id=str(product_id),
            delta=delta,
            reason_code=reason_code,
            new_stock=product.current_stock,
            inventory_status=product.inventory_status,
        )
        return product

    def update_settings(self, product_id, low_stock_threshold=None, reorder_point=None, reorder_quantity=None):
        product = self._load(product_id)
        product.update_settings(
            low_stock_threshold=low_stock_threshold,
            reorder_point=reorder_point,
            reorder_quantity=reorder_quantity,
        )
        current_domain.repository_for(Product).add(product)

        logger.info(
            "inventory_settings_updated",
            product_id=str(product_id),
            low_stock_threshold=product.low_stock_threshold,
            reorder_point=product.reorder_point,
            reorder_quantity=product.reorder_quantity,
        )
        return product

    def record_sale(self, order) -> None:
        """Bump per-product sales counters for a delivered order.

        Analytics only: a product that has disappeared is logged and skipped.
        """
        for product_id, quantity in _quantities_by_product(order).items():
            try:
                product = current_domain.repository_for(Product).get(product_id)
            except ObjectNotFoundError:
                logger.warning("sale_product_missing", product_id=product_id, order_id=str(order.id))
                continue

            product.record_sale(quantity)
            self._save(product, LogType.SALE, quantity, product.current_stock, order_id=str(order.id))

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def check_availability(self, product, quantity) -> None:
        if quantity > product.current_stock:
            raise InsufficientInventoryError(
                {
                    "quantity": [
                        f"Requested {quantity} units of {product.name}, only {product.current_stock} available"
                    ]
                }
            )

    def reorder_suggestions(self) -> list[dict]:
        return [
            {
                "product_id": str(product.id),
                "name": product.name,
                "seller_id": product.seller_id,
                "current_stock": product.current_stock,
                "reorder_point": product.reorder_point,
                "suggested_quantity": product.reorder_quantity,
            }
            for product in current_domain.repository_for(Product).needing_reorder()
        ]

    def low_stock_products(self, seller_id) -> list[Product]:
        return current_domain.repository_for(Product).low_stock(seller_id)

    def stock_history(self, product_id, limit=10) -> list[InventoryLog]:
        self._load(product_id)
        return current_domain.repository_for(InventoryLog).recent_for_product(product_id, limit=limit)
