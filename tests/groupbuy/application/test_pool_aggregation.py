"""Pool aggregation: joining, threshold completion and promotion."""

from datetime import UTC, datetime, timedelta

import pytest
from groupbuy.errors import NotFoundError, PoolExpiredError
from groupbuy.order.history import ActorRole
from groupbuy.order.order import Order, OrderStatus
from groupbuy.pool.pool import PooledOrder, PoolStatus
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain


def _buy(service, product, quantity, buyer_id="buyer-001"):
    [order] = service.create_order(buyer_id, [{"product_id": str(product.id), "quantity": quantity}])
    return order


class TestThreshold:
    def test_two_buyers_complete_the_pool(self, service, rice):
        first = _buy(service, rice, 40, buyer_id="buyer-001")
        second = _buy(service, rice, 70, buyer_id="buyer-002")

        assert first.pooled_order_id == second.pooled_order_id
        pool = service.get_pool(first.pooled_order_id)
        assert pool.status == PoolStatus.COMPLETED.value
        assert pool.current_quantity == 110
        assert pool.completed_at is not None

        assert service.get_order(first.id).status == OrderStatus.PENDING.value
        assert service.get_order(second.id).status == OrderStatus.PENDING.value

    def test_quantity_matches_member_sum(self, service, rice):
        orders = [_buy(service, rice, quantity, buyer_id=f"buyer-{quantity}") for quantity in (10, 25, 30)]
        pool = service.get_pool(orders[0].pooled_order_id)
        assert pool.current_quantity == 65
        assert pool.current_quantity == service.aggregator.recompute_quantity(pool)

    def test_promotion_is_recorded_as_system(self, service, rice):
        first = _buy(service, rice, 40)
        _buy(service, rice, 60, buyer_id="buyer-002")

        last = service.order_history(first.id)[-1]
        assert (last.from_status, last.to_status) == ("POOLING", "PENDING")
        assert last.actor_role == ActorRole.SYSTEM.value

    def test_completed_pool_is_not_reused(self, service, rice):
        first = _buy(service, rice, 40)
        _buy(service, rice, 60, buyer_id="buyer-002")
        third = _buy(service, rice, 10, buyer_id="buyer-003")

        assert third.pooled_order_id != first.pooled_order_id
        assert service.get_pool(third.pooled_order_id).current_quantity == 10

    def test_pool_completes_once(self, service, rice, dispatcher):
        first = _buy(service, rice, 40)
        _buy(service, rice, 70, buyer_id="buyer-002")

        pool = service.get_pool(first.pooled_order_id)
        assert service.aggregator.refresh(pool, batch=_NullBatch()) == []
        assert len(dispatcher.of_kind("pool_complete")) == 1

    def test_pools_are_per_product(self, service, rice, make_product):
        oats = make_product(name="Rolled Oats")
        a = _buy(service, rice, 40)
        b = _buy(service, oats, 40)
        assert a.pooled_order_id != b.pooled_order_id


class TestJoinPool:
    def test_join_open_pool(self, service, rice):
        pool, _ = service.create_pool("buyer-001", str(rice.id), 30)
        order = service.join_pool(pool.id, "buyer-002", 20)

        assert order.status == OrderStatus.POOLING.value
        assert str(order.pooled_order_id) == str(pool.id)
        assert service.get_pool(pool.id).current_quantity == 50

    def test_join_completing_pool_promotes_everyone(self, service, rice):
        pool, founder = service.create_pool("buyer-001", str(rice.id), 30)
        order = service.join_pool(pool.id, "buyer-002", 70)

        assert order.status == OrderStatus.PENDING.value
        assert service.get_order(founder.id).status == OrderStatus.PENDING.value

    def test_join_completed_pool_rejected(self, service, rice):
        pool, _ = service.create_pool("buyer-001", str(rice.id), 30)
        service.join_pool(pool.id, "buyer-002", 70)

        with pytest.raises(ValidationError) as exc:
            service.join_pool(pool.id, "buyer-003", 5)
        assert not isinstance(exc.value, PoolExpiredError)
        assert service.get_pool(pool.id).current_quantity == 100

    def test_join_expired_pool_rejected(self, service, rice):
        expires_at = datetime.now(UTC) + timedelta(hours=1)
        pool, _ = service.create_pool("buyer-001", str(rice.id), 30, expires_at=expires_at)

        with pytest.raises(PoolExpiredError):
            service.join_pool(pool.id, "buyer-002", 5, now=expires_at + timedelta(minutes=1))
        assert service.get_pool(pool.id).current_quantity == 30

    def test_join_unknown_pool(self, service):
        with pytest.raises(NotFoundError):
            service.join_pool("missing", "buyer-002", 5)

    def test_checkout_skips_expired_pool(self, service, rice):
        expires_at = datetime.now(UTC) + timedelta(hours=1)
        pool, _ = service.create_pool("buyer-001", str(rice.id), 30, expires_at=expires_at)

        later = expires_at + timedelta(minutes=5)
        assert service.aggregator.find_open_pool(rice.seller_id, rice.id, now=later) is None
        assert service.aggregator.find_open_pool(rice.seller_id, rice.id) is not None


class TestCreatePool:
    def test_second_open_pool_rejected(self, service, rice):
        service.create_pool("buyer-001", str(rice.id), 30)
        with pytest.raises(ValidationError):
            service.create_pool("buyer-002", str(rice.id), 30)

    def test_past_expiry_rejected(self, service, rice):
        with pytest.raises(ValidationError) as exc:
            service.create_pool("buyer-001", str(rice.id), 30, expires_at=datetime.now(UTC) - timedelta(hours=1))
        assert "expires_at" in exc.value.messages

    def test_pool_ttl_from_settings(self, tax_calculator, dispatcher, rice):
        from groupbuy.config import Settings
        from groupbuy.lifecycle.service import OrderLifecycleService

        service = OrderLifecycleService(tax_calculator, dispatcher, settings=Settings(pool_ttl_hours=24))
        before = datetime.now(UTC)
        order = _buy(service, rice, 40)
        pool = service.get_pool(order.pooled_order_id)
        assert pool.expires_at is not None
        assert pool.expires_at.replace(tzinfo=UTC) >= before + timedelta(hours=24)

    def test_list_pools_by_status(self, service, rice):
        service.create_pool("buyer-001", str(rice.id), 30)
        assert len(service.list_pools(status="pooling")) == 1
        assert service.list_pools(status="COMPLETED") == []
        with pytest.raises(ValidationError):
            service.list_pools(status="FROZEN")


class TestMemberCancellation:
    def test_cancelling_member_reduces_quantity(self, service, rice):
        first = _buy(service, rice, 40)
        second = _buy(service, rice, 30, buyer_id="buyer-002")

        service.update_order_status(second.id, "CANCELLED", "buyer-002", "BUYER")

        pool = service.get_pool(first.pooled_order_id)
        assert pool.current_quantity == 40
        assert pool.status == PoolStatus.POOLING.value
        assert service.aggregator.recompute_quantity(pool) == 40

    def test_cancelling_after_completion_keeps_pool_completed(self, service, rice):
        first = _buy(service, rice, 40)
        _buy(service, rice, 70, buyer_id="buyer-002")

        service.update_order_status(first.id, "CANCELLED", "buyer-001", "BUYER")

        pool = service.get_pool(first.pooled_order_id)
        assert pool.status == PoolStatus.COMPLETED.value
        assert pool.current_quantity == 70


class TestSiblingPools:
    def test_completion_re_evaluates_sibling_pools(self, service, rice):
        # An expired-but-open pool whose stored quantity has drifted from its members
        stale = PooledOrder.open(
            seller_id=str(rice.seller_id),
            product_id=str(rice.id),
            target_quantity=100,
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )
        current_domain.repository_for(PooledOrder).add(stale)
        member = Order.create(
            buyer_id="buyer-009",
            seller_id=str(rice.seller_id),
            items_data=[{"product_id": str(rice.id), "quantity": 100, "unit_price": 2.5}],
        )
        member.join_pool(str(stale.id))
        current_domain.repository_for(Order).add(member)

        pool, _ = service.create_pool("buyer-001", str(rice.id), 60)
        [draft] = service.create_order("buyer-002", [{"product_id": str(rice.id), "quantity": 40}], draft=True)

        service.update_order_status(draft.id, "POOLING", "admin-001", "ADMIN")

        assert service.get_pool(pool.id).status == PoolStatus.COMPLETED.value
        assert service.get_pool(stale.id).status == PoolStatus.COMPLETED.value
        assert service.get_order(member.id).status == OrderStatus.PENDING.value


class TestNotifications:
    def test_progress_and_completion_are_notified(self, service, rice, dispatcher):
        first = _buy(service, rice, 40)
        _buy(service, rice, 70, buyer_id="buyer-002")

        progress = dispatcher.of_kind("pool_progress")
        assert [(n["current"], n["target"]) for n in progress] == [(40, 100)]
        [complete] = dispatcher.of_kind("pool_complete")
        assert complete["pool_id"] == str(first.pooled_order_id)
        assert complete["quantity"] == 110

    def test_status_changes_are_notified(self, service, rice, dispatcher):
        order = _buy(service, rice, 40)
        changes = [n for n in dispatcher.of_kind("order_status_changed") if n["order_id"] == str(order.id)]
        assert [(n["from_status"], n["to_status"]) for n in changes] == [("DRAFT", "POOLING")]

    def test_failed_transaction_sends_nothing(self, service, rice, make_product, dispatcher):
        oats = make_product(name="Rolled Oats", min_order_quantity=50)
        with pytest.raises(ValidationError):
            service.create_order(
                "buyer-001",
                [{"product_id": str(rice.id), "quantity": 10}, {"product_id": str(oats.id), "quantity": 10}],
            )
        assert dispatcher.sent == []


class _NullBatch:
    def order_status_changed(self, *args):
        pass

    def pool_progress(self, *args):
        pass

    def pool_complete(self, *args):
        pass
