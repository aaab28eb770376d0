"""Tests for OrderStatusMachine.check: role permissions and preconditions."""

import pytest
from groupbuy.order.history import ActorRole
from groupbuy.order.order import Order, OrderStatus
from groupbuy.workflow.state_machine import OrderStatusMachine
from protean.exceptions import ValidationError


@pytest.fixture()
def machine():
    return OrderStatusMachine(inventory=None, aggregator=None)


def _order_at(status, with_address=True):
    order = Order.create(
        buyer_id="buyer-001",
        seller_id="seller-001",
        items_data=[{"product_id": "prod-001", "quantity": 2, "unit_price": 10.0}],
        shipping_address=(
            {"street": "1 St", "city": "C", "state": "CA", "postal_code": "94105", "country": "US"}
            if with_address
            else None
        ),
    )
    order.status = status.value
    return order


class TestRolePermissions:
    @pytest.mark.parametrize("role", list(ActorRole), ids=lambda r: r.value)
    def test_anyone_may_cancel_a_pending_order(self, machine, role):
        assert machine.check(_order_at(OrderStatus.PENDING), OrderStatus.CANCELLED, role) == (
            OrderStatus.CANCELLED,
            role,
        )

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderStatus.CONFIRMED),
            (OrderStatus.CONFIRMED, OrderStatus.SHIPPED),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        ],
    )
    def test_seller_drives_fulfillment(self, machine, current, target):
        machine.check(_order_at(current), target, ActorRole.SELLER)

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.PROCESSING),
            (OrderStatus.CONFIRMED, OrderStatus.SHIPPED),
            (OrderStatus.DELIVERED, OrderStatus.COMPLETED),
        ],
    )
    def test_buyer_may_only_cancel(self, machine, current, target):
        with pytest.raises(ValidationError) as exc:
            machine.check(_order_at(current), target, ActorRole.BUYER)
        assert "actor_role" in exc.value.messages

    @pytest.mark.parametrize("target", [OrderStatus.COMPLETED, OrderStatus.REFUNDED])
    def test_seller_cannot_complete_or_refund(self, machine, target):
        with pytest.raises(ValidationError):
            machine.check(_order_at(OrderStatus.DELIVERED), target, ActorRole.SELLER)

    @pytest.mark.parametrize("role", [ActorRole.ADMIN, ActorRole.SYSTEM])
    def test_admin_and_system_complete_and_refund(self, machine, role):
        machine.check(_order_at(OrderStatus.DELIVERED), OrderStatus.COMPLETED, role)
        machine.check(_order_at(OrderStatus.COMPLETED), OrderStatus.REFUNDED, role)

    def test_buyer_cannot_cancel_once_shipped(self, machine):
        with pytest.raises(ValidationError):
            machine.check(_order_at(OrderStatus.SHIPPED), OrderStatus.CANCELLED, ActorRole.BUYER)

    def test_seller_can_cancel_shipped(self, machine):
        machine.check(_order_at(OrderStatus.SHIPPED), OrderStatus.CANCELLED, ActorRole.SELLER)

    def test_roles_and_statuses_accept_strings(self, machine):
        assert machine.check(_order_at(OrderStatus.PENDING), "processing", "seller") == (
            OrderStatus.PROCESSING,
            ActorRole.SELLER,
        )

    def test_unknown_role(self, machine):
        with pytest.raises(ValidationError) as exc:
            machine.check(_order_at(OrderStatus.PENDING), OrderStatus.CANCELLED, "GUEST")
        assert "actor_role" in exc.value.messages


class TestInternalTransitions:
    @pytest.mark.parametrize("role", list(ActorRole), ids=lambda r: r.value)
    def test_pooling_to_pending_never_accepted_externally(self, machine, role):
        order = _order_at(OrderStatus.POOLING)
        with pytest.raises(ValidationError):
            machine.check(order, OrderStatus.PENDING, role)
        assert order.status == OrderStatus.POOLING.value

    def test_buyer_cannot_request_pooling(self, machine):
        with pytest.raises(ValidationError):
            machine.check(_order_at(OrderStatus.DRAFT), OrderStatus.POOLING, ActorRole.BUYER)

    def test_transition_outside_table_rejected_before_permissions(self, machine):
        with pytest.raises(ValidationError) as exc:
            machine.check(_order_at(OrderStatus.PENDING), OrderStatus.SHIPPED, ActorRole.ADMIN)
        assert "status" in exc.value.messages


class TestShippingPrecondition:
    def test_shipping_requires_address(self, machine):
        order = _order_at(OrderStatus.CONFIRMED, with_address=False)
        with pytest.raises(ValidationError) as exc:
            machine.check(order, OrderStatus.SHIPPED, ActorRole.SELLER)
        assert "shipping_address" in exc.value.messages
        assert order.status == OrderStatus.CONFIRMED.value
