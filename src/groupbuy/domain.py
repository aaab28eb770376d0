"""Groupbuy bounded context — pooled purchase orders for a group-buying marketplace.

Handles the order lifecycle (status state machine), aggregation of partial
orders into seller pools, and the inventory reservations that accompany
fulfillment.
"""

import structlog
from protean.domain import Domain

groupbuy = Domain(name="groupbuy")

logger = structlog.get_logger(__name__)
