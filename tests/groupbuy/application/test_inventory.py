"""Stock adjustments, movement logs and reorder suggestions."""

import pytest
from groupbuy.errors import InsufficientStockError, NotFoundError
from groupbuy.inventory.product import InventoryStatus
from protean.exceptions import ValidationError


class TestAdjustStock:
    def test_restock(self, service, rice):
        product = service.adjust_stock(rice.id, 100, "RESTOCK", notes="Container arrived")
        assert product.current_stock == 600
        assert product.last_restock_date is not None

    def test_adjustment_can_lower_stock(self, service, rice):
        product = service.adjust_stock(rice.id, -495, "ADJUSTMENT")
        assert product.current_stock == 5
        assert product.inventory_status == InventoryStatus.LOW_STOCK.value

    def test_cannot_go_negative(self, service, rice):
        with pytest.raises(InsufficientStockError):
            service.adjust_stock(rice.id, -501, "ADJUSTMENT")
        assert service.get_product(rice.id).current_stock == 500

    def test_reason_must_be_an_adjustment(self, service, rice):
        with pytest.raises(ValidationError) as exc:
            service.adjust_stock(rice.id, 5, "RESERVE")
        assert "reason_code" in exc.value.messages

    def test_unknown_product(self, service):
        with pytest.raises(NotFoundError):
            service.adjust_stock("missing", 5, "RESTOCK")

    def test_reserved_stock_untouched(self, service, make_product):
        product = make_product(min_order_quantity=1)
        [order] = service.create_order("buyer-001", [{"product_id": str(product.id), "quantity": 5}])
        service.update_order_status(order.id, "PROCESSING", "seller-001", "SELLER")

        product = service.adjust_stock(product.id, 10, "RETURN")
        assert product.current_stock == 505
        assert product.reserved_stock == 5


class TestStockHistory:
    def test_movements_are_logged_newest_first(self, service, make_product):
        product = make_product(min_order_quantity=1)
        service.adjust_stock(product.id, 20, "RESTOCK")
        [order] = service.create_order("buyer-001", [{"product_id": str(product.id), "quantity": 5}])
        service.update_order_status(order.id, "PROCESSING", "seller-001", "SELLER")
        service.update_order_status(order.id, "CANCELLED", "buyer-001", "BUYER")

        history = service.stock_history(product.id)
        assert [entry.log_type for entry in history] == ["RELEASE", "RESERVE", "RESTOCK"]
        release, reserve, restock = history
        assert (restock.previous_stock, restock.new_stock) == (500, 520)
        assert (reserve.quantity, reserve.new_stock) == (-5, 515)
        assert str(reserve.order_id) == str(order.id)
        assert (release.quantity, release.new_stock) == (5, 520)

    def test_limit(self, service, rice):
        for _ in range(4):
            service.adjust_stock(rice.id, 1, "RESTOCK")
        assert len(service.stock_history(rice.id, limit=3)) == 3

    def test_unknown_product(self, service):
        with pytest.raises(NotFoundError):
            service.stock_history("missing")


class TestReorderSuggestions:
    def test_products_at_reorder_point(self, service, make_product):
        low = make_product(name="Sesame Oil", current_stock=15, reorder_point=20, reorder_quantity=200)
        make_product(name="Soy Sauce", current_stock=300, reorder_point=20)

        [suggestion] = service.reorder_suggestions()
        assert suggestion["product_id"] == str(low.id)
        assert suggestion["suggested_quantity"] == 200
        assert suggestion["current_stock"] == 15

    def test_add_product(self, service):
        product = service.add_product("seller-007", "Green Tea", 4.0, min_order_quantity=20, current_stock=8)
        assert service.get_product(product.id).inventory_status == InventoryStatus.LOW_STOCK.value


class TestInventorySettings:
    def test_update_thresholds(self, service, rice):
        product = service.update_inventory_settings(rice.id, reorder_point=50, reorder_quantity=400)
        assert (product.reorder_point, product.reorder_quantity) == (50, 400)
        assert product.low_stock_threshold == 10

        stored = service.get_product(rice.id)
        assert (stored.reorder_point, stored.reorder_quantity) == (50, 400)

    def test_raising_threshold_flags_low_stock(self, service, rice):
        product = service.update_inventory_settings(rice.id, low_stock_threshold=600)
        assert product.inventory_status == InventoryStatus.LOW_STOCK.value
        assert [p.id for p in service.low_stock_products("seller-001")] == [rice.id]

    def test_negative_values_rejected(self, service, rice):
        with pytest.raises(ValidationError) as exc:
            service.update_inventory_settings(rice.id, reorder_point=-1)
        assert "reorder_point" in exc.value.messages

    def test_unknown_product(self, service):
        with pytest.raises(NotFoundError):
            service.update_inventory_settings("missing", reorder_point=5)


class TestLowStockProducts:
    def test_lists_sellers_low_and_empty_products_emptiest_first(self, service, make_product):
        low = make_product(name="Sesame Oil", current_stock=8)
        empty = make_product(name="Soy Sauce", current_stock=0)
        make_product(name="Rice Vinegar", current_stock=300)
        make_product(seller_id="seller-002", name="Fish Sauce", current_stock=3)

        assert [p.id for p in service.low_stock_products("seller-001")] == [empty.id, low.id]

    def test_none_when_everything_is_stocked(self, service, rice):
        assert service.low_stock_products("seller-001") == []
