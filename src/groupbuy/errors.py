"""Error taxonomy for the groupbuy domain.

Built on Protean's exceptions so the FastAPI integration can map the base
classes; the subclasses below get their own status codes in ``groupbuy.api``.
Messages use Protean's ``{field: [message, ...]}`` shape.
"""

from protean.exceptions import ObjectNotFoundError, ProteanException, ValidationError

__all__ = [
    "InsufficientInventoryError",
    "InsufficientStockError",
    "InternalError",
    "NotFoundError",
    "PoolExpiredError",
    "ValidationError",
]


class NotFoundError(ObjectNotFoundError):
    """An order, product or pool id did not resolve."""


class InsufficientStockError(ValidationError):
    """A reservation or adjustment would drive stock below zero."""


class InsufficientInventoryError(ValidationError):
    """Requested quantity exceeds the stock available when the order is placed."""


class PoolExpiredError(ValidationError):
    """A join was attempted on a pool whose expiry has passed."""


class InternalError(ProteanException):
    """The store failed in a way the caller cannot correct (e.g. retries exhausted)."""


def not_found(kind: str, identifier) -> NotFoundError:
    return NotFoundError({kind: [f"{kind.capitalize()} {identifier} does not exist"]})
