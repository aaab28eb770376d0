"""PooledOrder aggregate (CQRS) — partial orders for one seller/product pair.

A pool collects POOLING orders until their combined quantity reaches the
product's minimum order quantity (frozen as ``target_quantity`` when the pool
opens). The quantity is always recomputed from member orders by the
PoolAggregator; the aggregate only records it.

Status:
    POOLING → COMPLETED (threshold crossed, exactly once, never reopens)
    POOLING → CANCELLED (expired below threshold)
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String

from groupbuy.domain import groupbuy
from groupbuy.pool.events import PoolCancelled, PoolCompleted, PoolOpened, PoolQuantityUpdated


class PoolStatus(Enum):
    POOLING = "POOLING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


OPEN_STATES = {PoolStatus.POOLING, PoolStatus.PROCESSING}


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@groupbuy.aggregate
class PooledOrder:
    seller_id = Identifier(required=True)
    product_id = Identifier(required=True)
    status = String(
        choices=PoolStatus,
        default=PoolStatus.POOLING.value,
    )
    current_quantity = Integer(default=0, min_value=0)
    target_quantity = Integer(required=True, min_value=1)
    expires_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()

    @classmethod
    def open(cls, seller_id, product_id, target_quantity, expires_at=None):
        now = datetime.now(UTC)
        pool = cls(
            seller_id=seller_id,
            product_id=product_id,
            target_quantity=target_quantity,
            expires_at=as_utc(expires_at),
            created_at=now,
            updated_at=now,
        )
        pool.raise_(
            PoolOpened(
                pool_id=str(pool.id),
                seller_id=seller_id,
                product_id=product_id,
                target_quantity=target_quantity,
                expires_at=pool.expires_at,
                opened_at=now,
            )
        )
        return pool

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return PoolStatus(self.status) in OPEN_STATES

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= as_utc(now or datetime.now(UTC))

    @property
    def threshold_met(self) -> bool:
        return self.current_quantity >= self.target_quantity

    @property
    def progress(self) -> float:
        return round(min(100.0, self.current_quantity / self.target_quantity * 100), 2)

    @property
    def remaining_quantity(self) -> int:
        return max(0, self.target_quantity - self.current_quantity)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def record_quantity(self, quantity) -> bool:
        """Store a recomputed quantity. Returns True when the value changed.

        A completed pool ignores increases; its membership is closed.
        """
        previous = self.current_quantity
        if quantity == previous:
            return False
        if PoolStatus(self.status) == PoolStatus.COMPLETED and quantity > previous:
            return False

        self.current_quantity = quantity
        self.updated_at = datetime.now(UTC)
        self.raise_(
            PoolQuantityUpdated(
                pool_id=str(self.id),
                previous_quantity=previous,
                current_quantity=quantity,
                target_quantity=self.target_quantity,
                updated_at=self.updated_at,
            )
        )
        return True

    def complete(self) -> bool:
        """Mark the pool COMPLETED. Returns False if it already was."""
        status = PoolStatus(self.status)
        if status == PoolStatus.COMPLETED:
            return False
        if status == PoolStatus.CANCELLED:
            raise ValidationError({"status": ["A cancelled pool cannot be completed"]})

        now = datetime.now(UTC)
        self.status = PoolStatus.COMPLETED.value
        self.completed_at = now
        self.updated_at = now
        self.raise_(
            PoolCompleted(
                pool_id=str(self.id),
                seller_id=self.seller_id,
                product_id=self.product_id,
                final_quantity=self.current_quantity,
                completed_at=now,
            )
        )
        return True

    def cancel(self, reason="expired") -> bool:
        """Close the pool without fulfilling it. Returns False if it already was."""
        status = PoolStatus(self.status)
        if status == PoolStatus.CANCELLED:
            return False
        if status == PoolStatus.COMPLETED:
            raise ValidationError({"status": ["A completed pool cannot be cancelled"]})

        now = datetime.now(UTC)
        self.status = PoolStatus.CANCELLED.value
        self.cancelled_at = now
        self.updated_at = now
        self.raise_(PoolCancelled(pool_id=str(self.id), reason=reason, cancelled_at=now))
        return True
