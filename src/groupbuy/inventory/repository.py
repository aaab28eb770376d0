"""Repositories for Product and InventoryLog."""

from groupbuy.domain import groupbuy
from groupbuy.inventory.product import InventoryLog, InventoryStatus, Product


@groupbuy.repository(part_of=Product)
class ProductRepository:
    def low_stock(self, seller_id) -> list[Product]:
        """A seller's LOW_STOCK and OUT_OF_STOCK products, emptiest first."""
        flagged = {InventoryStatus.LOW_STOCK.value, InventoryStatus.OUT_OF_STOCK.value}
        products = self._dao.query.filter(seller_id=seller_id).order_by("current_stock").all().items
        return [product for product in products if product.inventory_status in flagged]

    def needing_reorder(self) -> list[Product]:
        """Products whose stock is at or below their reorder point."""
        return [product for product in self._dao.query.all().items if product.needs_reorder]


@groupbuy.repository(part_of=InventoryLog)
class InventoryLogRepository:
    def recent_for_product(self, product_id, limit=10) -> list[InventoryLog]:
        """Newest movements first."""
        entries = self._dao.query.filter(product_id=str(product_id)).order_by("-created_at").all().items
        return entries[:limit]
