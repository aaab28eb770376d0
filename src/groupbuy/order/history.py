"""OrderHistory aggregate — append-only audit trail of status changes.

One row is written for every successful transition, including the internal
ones produced by pool routing and promotion. Rows are never updated or
deleted.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from groupbuy.domain import groupbuy


class ActorRole(Enum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


@groupbuy.aggregate
class OrderHistory:
    order_id = Identifier(required=True)
    from_status = String(max_length=20)  # None for the creation row
    to_status = String(required=True, max_length=20)
    actor_id = Identifier()
    actor_role = String(choices=ActorRole, default=ActorRole.SYSTEM.value)
    note = Text()
    changed_at = DateTime()

    @classmethod
    def entry(cls, order_id, from_status, to_status, actor_id=None, actor_role=ActorRole.SYSTEM, note=None):
        return cls(
            order_id=str(order_id),
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            actor_role=actor_role.value,
            note=note,
            changed_at=datetime.now(UTC),
        )


def record_transition(order, from_status, to_status, batch, actor_id=None, actor_role=ActorRole.SYSTEM, note=None):
    """Append a history row and queue the status notification.

    ``from_status``/``to_status`` accept OrderStatus members or raw values;
    a ``from_status`` of None marks the creation row and is not notified.
    """
    previous = getattr(from_status, "value", from_status)
    target = getattr(to_status, "value", to_status)

    current_domain.repository_for(OrderHistory).add(
        OrderHistory.entry(order.id, previous, target, actor_id=actor_id, actor_role=actor_role, note=note)
    )
    if previous is not None:
        batch.order_status_changed(order, previous, target)
