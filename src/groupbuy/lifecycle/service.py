"""OrderLifecycleService — the entry point for every order, pool and stock operation.

Each public mutation is a transaction script: it takes the pool locks for the
products involved, opens a UnitOfWork, reads what it needs, validates, writes
and commits as one unit. Optimistic version conflicts are retried; once the
retries run out the caller gets an InternalError. Notifications queued during
the work are sent only after the commit succeeds.
"""

from collections import OrderedDict
from datetime import UTC, datetime

import structlog
from protean import UnitOfWork
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from groupbuy.config import Settings
from groupbuy.errors import InternalError, not_found
from groupbuy.inventory.product import InventoryStatus, Product
from groupbuy.inventory.reservation import InventoryReservation
from groupbuy.notification import NotificationBatch, build_dispatcher
from groupbuy.order.history import ActorRole, OrderHistory, record_transition
from groupbuy.order.order import Order, OrderStatus
from groupbuy.pool.aggregator import PoolAggregator
from groupbuy.pool.pool import PooledOrder, PoolStatus, as_utc
from groupbuy.tax import build_tax_calculator, validate_exemption_number
from groupbuy.workflow.state_machine import POOL_CANCEL_ROLES, OrderStatusMachine, coerce_role, coerce_status

logger = structlog.get_logger(__name__)


def _normalize_items(items) -> list[tuple[str, int]]:
    """Validate raw line items into (product_id, quantity) pairs."""
    if not items:
        raise ValidationError({"items": ["At least one item is required"]})

    lines = []
    for index, item in enumerate(items):
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not product_id:
            raise ValidationError({"items": [f"Item {index} is missing a product_id"]})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError({"items": [f"Item {index} must have a positive integer quantity"]})
        lines.append((str(product_id), quantity))
    return lines


def _totals(lines) -> "OrderedDict[str, int]":
    totals = OrderedDict()
    for product_id, quantity in lines:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def _coerce_pool_status(value) -> str:
    try:
        return PoolStatus(str(value).upper()).value
    except ValueError as exc:
        raise ValidationError({"status": [f"Unknown pool status: {value}"]}) from exc


class OrderLifecycleService:
    def __init__(
        self,
        tax_calculator,
        dispatcher,
        settings: Settings | None = None,
        inventory: InventoryReservation | None = None,
        aggregator: PoolAggregator | None = None,
        machine: OrderStatusMachine | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.tax_calculator = tax_calculator
        self.dispatcher = dispatcher
        self.inventory = inventory or InventoryReservation()
        self.aggregator = aggregator or PoolAggregator(self.settings)
        self.machine = machine or OrderStatusMachine(self.inventory, self.aggregator)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OrderLifecycleService":
        """Build a service with the adapters named in the settings."""
        settings = settings or Settings.from_env()
        return cls(
            tax_calculator=build_tax_calculator(settings.tax_adapter),
            dispatcher=build_dispatcher(settings.notification_adapter),
            settings=settings,
        )

    # -------------------------------------------------------------------
    # Transaction script runner
    # -------------------------------------------------------------------
    def _run(self, work, lock_keys=()):
        attempts = max(1, self.settings.pool_join_retries)
        batch = NotificationBatch(self.dispatcher)
        for attempt in range(1, attempts + 1):
            try:
                with self.aggregator.locked(lock_keys):
                    with UnitOfWork():
                        result = work(batch)
            except ExpectedVersionError as exc:
                # Notifications queued by the rolled-back attempt are stale
                batch.discard()
                logger.warning("write_conflict_retry", attempt=attempt, attempts=attempts, error=str(exc))
                continue

            batch.flush()
            return result

        logger.error("write_conflict_exhausted", attempts=attempts)
        raise InternalError({"store": [f"Concurrent updates conflicted {attempts} times, try again"]})

    # -------------------------------------------------------------------
    # Loading helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _load(aggregate_cls, kind, identifier):
        try:
            return current_domain.repository_for(aggregate_cls).get(str(identifier))
        except ObjectNotFoundError as exc:
            raise not_found(kind, identifier) from exc

    def _load_products(self, product_ids) -> dict:
        return {product_id: self._load(Product, "product", product_id) for product_id in product_ids}

    def _check_availability(self, lines, products) -> None:
        for product_id, quantity in _totals(lines).items():
            self.inventory.check_availability(products[product_id], quantity)

    def _resolve_jurisdiction(self, jurisdiction, shipping_address) -> str:
        if jurisdiction:
            return jurisdiction.upper()
        state = None
        if isinstance(shipping_address, dict):
            state = shipping_address.get("state")
        elif shipping_address is not None:
            state = shipping_address.state
        return (state or self.settings.default_jurisdiction).upper()

    @staticmethod
    def _check_exemption(is_exempt, exemption_number) -> None:
        if is_exempt and not validate_exemption_number(exemption_number):
            raise ValidationError(
                {"exemption_number": ["Tax-exempt orders need an exemption number of at least 6 letters or digits"]}
            )

    def _price(self, order, jurisdiction) -> None:
        exemption = order.exemption_number if order.is_exempt else None
        order.apply_tax(self.tax_calculator.calculate_tax(order.subtotal, jurisdiction, exemption=exemption))

    def _new_order(
        self,
        buyer_id,
        seller_id,
        lines,
        products,
        batch,
        shipping_address=None,
        is_exempt=False,
        exemption_number=None,
        jurisdiction=None,
    ) -> Order:
        order = Order.create(
            buyer_id=buyer_id,
            seller_id=seller_id,
            items_data=[
                {"product_id": product_id, "quantity": quantity, "unit_price": products[product_id].unit_price}
                for product_id, quantity in lines
            ],
            shipping_address=shipping_address,
            is_exempt=is_exempt,
            exemption_number=exemption_number,
        )
        self._price(order, jurisdiction)
        record_transition(
            order, None, OrderStatus.DRAFT, batch, actor_id=buyer_id, actor_role=ActorRole.BUYER, note="Order created"
        )
        return order

    def _route(self, order, products, batch, actor_id=None, actor_role=ActorRole.BUYER) -> PooledOrder | None:
        """Send a draft to PENDING, or into its pool when an item is under its minimum."""
        product = self.aggregator.pooling_product(order, products)
        if product is not None:
            return self.aggregator.route_or_update_pool(order, product, batch, actor_id=actor_id, actor_role=actor_role)

        previous = order.place()
        record_transition(
            order,
            previous,
            OrderStatus.PENDING,
            batch,
            actor_id=actor_id,
            actor_role=actor_role,
            note="All items meet their minimum order quantity",
        )
        current_domain.repository_for(Order).add(order)
        return None

    # -------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------
    def create_order(
        self,
        buyer_id,
        items,
        shipping_address=None,
        is_exempt=False,
        exemption_number=None,
        jurisdiction=None,
        draft=False,
    ) -> list[Order]:
        """Check out ``items`` for a buyer: one order per seller, priced, taxed and routed.

        Raises ValidationError for empty or malformed items, NotFoundError for an
        unknown product and InsufficientInventoryError when stock is short.
        """
        lines = _normalize_items(items)
        self._check_exemption(is_exempt, exemption_number)
        jurisdiction = self._resolve_jurisdiction(jurisdiction, shipping_address)
        product_ids = list(_totals(lines))

        def work(batch):
            products = self._load_products(product_ids)
            self._check_availability(lines, products)

            groups = OrderedDict()
            for product_id, quantity in lines:
                groups.setdefault(str(products[product_id].seller_id), []).append((product_id, quantity))

            orders = []
            for seller_id, seller_lines in groups.items():
                order = self._new_order(
                    buyer_id,
                    seller_id,
                    seller_lines,
                    products,
                    batch,
                    shipping_address=shipping_address,
                    is_exempt=is_exempt,
                    exemption_number=exemption_number,
                    jurisdiction=jurisdiction,
                )
                if draft:
                    current_domain.repository_for(Order).add(order)
                else:
                    self._route(order, products, batch, actor_id=buyer_id)
                orders.append(order)
            return orders

        orders = self._run(work, lock_keys=product_ids)
        logger.info(
            "orders_created",
            buyer_id=buyer_id,
            order_ids=[str(order.id) for order in orders],
            statuses=[order.status for order in orders],
        )
        return orders

    def submit_order(self, order_id, actor_id=None) -> Order:
        """Route a draft exactly as checkout would have."""
        order = self.get_order(order_id)

        def work(batch):
            order = self._load(Order, "order", order_id)
            if order.current_status != OrderStatus.DRAFT:
                raise ValidationError({"status": [f"Only draft orders can be submitted, order is {order.status}"]})
            products = self._load_products(order.product_ids())
            self._check_availability([(str(item.product_id), item.quantity) for item in order.items], products)
            self._route(order, products, batch, actor_id=actor_id or order.buyer_id)
            return order

        return self._run(work, lock_keys=order.product_ids())

    def _change_status(self, order, status, actor_id, actor_role, batch, note=None) -> None:
        completed_pool = self.machine.update_status(order, status, actor_id, actor_role, batch, note=note)
        if completed_pool is not None:
            promoted = self.aggregator.reconcile(
                completed_pool.seller_id, completed_pool.product_id, batch, exclude=completed_pool.id
            )
            if promoted:
                logger.info("sibling_pools_promoted", pool_id=str(completed_pool.id), promoted=len(promoted))

    def update_order_status(self, order_id, status, actor_id, actor_role, note=None) -> Order:
        """Move an order through the state machine on behalf of an actor.

        A change that completes a pool also re-evaluates the other open pools
        for the same seller and product.
        """
        order = self.get_order(order_id)

        def work(batch):
            order = self._load(Order, "order", order_id)
            self._change_status(order, status, actor_id, actor_role, batch, note=note)
            return order

        return self._run(work, lock_keys=order.product_ids())

    def update_order(self, order_id, status=None, items=None, actor_id=None, actor_role=ActorRole.BUYER, note=None):
        """Replace a draft's items and/or change its status in one transaction."""
        if status is None and items is None:
            raise ValidationError({"order": ["Nothing to update: provide status and/or items"]})
        lines = _normalize_items(items) if items is not None else []
        order = self.get_order(order_id)

        def work(batch):
            order = self._load(Order, "order", order_id)
            if items is not None:
                products = self._load_products(list(_totals(lines)))
                foreign = [pid for pid, product in products.items() if str(product.seller_id) != str(order.seller_id)]
                if foreign:
                    raise ValidationError({"items": [f"Products {', '.join(foreign)} belong to a different seller"]})
                self._check_availability(lines, products)
                order.replace_items(
                    [
                        {"product_id": product_id, "quantity": quantity, "unit_price": products[product_id].unit_price}
                        for product_id, quantity in lines
                    ]
                )
                self._price(order, order.tax_jurisdiction or self.settings.default_jurisdiction)

            if status is not None:
                self._change_status(order, status, actor_id, actor_role, batch, note=note)
            else:
                current_domain.repository_for(Order).add(order)
            return order

        return self._run(work, lock_keys=set(order.product_ids()) | {pid for pid, _ in lines})

    def delete_order(self, order_id) -> None:
        """Remove a draft. Anything past DRAFT has to be cancelled instead."""

        def work(batch):
            order = self._load(Order, "order", order_id)
            if order.current_status != OrderStatus.DRAFT:
                raise ValidationError(
                    {"status": [f"Only draft orders can be deleted, order is {order.status}; cancel it instead"]}
                )
            current_domain.repository_for(Order)._dao.delete(order)
            return order

        order = self._run(work)
        logger.info(
            "order_deleted",
            order_id=str(order_id),
            buyer_id=str(order.buyer_id),
            seller_id=str(order.seller_id),
            subtotal=order.subtotal,
        )

    def get_order(self, order_id) -> Order:
        return self._load(Order, "order", order_id)

    def list_orders(self, buyer_id=None, seller_id=None, status=None) -> list[Order]:
        status = coerce_status(status).value if status is not None else None
        return current_domain.repository_for(Order).find(buyer_id=buyer_id, seller_id=seller_id, status=status)

    def order_history(self, order_id) -> list[OrderHistory]:
        self.get_order(order_id)
        return current_domain.repository_for(OrderHistory).for_order(order_id)

    # -------------------------------------------------------------------
    # Pools
    # -------------------------------------------------------------------
    def get_pool(self, pool_id) -> PooledOrder:
        return self._load(PooledOrder, "pool", pool_id)

    def list_pools(self, product_id=None, status=None, seller_id=None) -> list[PooledOrder]:
        status = _coerce_pool_status(status) if status is not None else None
        return current_domain.repository_for(PooledOrder).find(product_id=product_id, status=status, seller_id=seller_id)

    def join_pool(
        self,
        pool_id,
        buyer_id,
        quantity,
        shipping_address=None,
        is_exempt=False,
        exemption_number=None,
        jurisdiction=None,
        now=None,
    ) -> Order:
        """Place a one-item order straight into an existing pool.

        Raises PoolExpiredError for an expired pool and ValidationError for one
        that is no longer open.
        """
        pool = self.get_pool(pool_id)
        lines = _normalize_items([{"product_id": pool.product_id, "quantity": quantity}])
        self._check_exemption(is_exempt, exemption_number)
        jurisdiction = self._resolve_jurisdiction(jurisdiction, shipping_address)

        def work(batch):
            pool = self._load(PooledOrder, "pool", pool_id)
            products = self._load_products([str(pool.product_id)])
            self._check_availability(lines, products)
            order = self._new_order(
                buyer_id,
                str(pool.seller_id),
                lines,
                products,
                batch,
                shipping_address=shipping_address,
                is_exempt=is_exempt,
                exemption_number=exemption_number,
                jurisdiction=jurisdiction,
            )
            self.aggregator.route_or_update_pool(
                order,
                products[str(pool.product_id)],
                batch,
                actor_id=buyer_id,
                actor_role=ActorRole.BUYER,
                pool=pool,
                now=now,
            )
            return order

        order = self._run(work, lock_keys=[pool.product_id])
        logger.info("pool_joined", pool_id=str(pool_id), order_id=str(order.id), quantity=quantity)
        return order

    def create_pool(
        self,
        buyer_id,
        product_id,
        quantity,
        expires_at=None,
        shipping_address=None,
        is_exempt=False,
        exemption_number=None,
        jurisdiction=None,
    ) -> tuple[PooledOrder, Order]:
        """Open a pool for a product with the buyer's order as its first member."""
        lines = _normalize_items([{"product_id": product_id, "quantity": quantity}])
        self._check_exemption(is_exempt, exemption_number)
        jurisdiction = self._resolve_jurisdiction(jurisdiction, shipping_address)
        expires_at = as_utc(expires_at)
        if expires_at is not None and expires_at <= datetime.now(UTC):
            raise ValidationError({"expires_at": ["Pool expiry must be in the future"]})

        def work(batch):
            products = self._load_products([str(product_id)])
            product = products[str(product_id)]
            if self.aggregator.find_open_pool(product.seller_id, product.id) is not None:
                raise ValidationError({"pool": [f"An open pool already exists for product {product_id}"]})
            self._check_availability(lines, products)

            pool = self.aggregator.open_pool(str(product.seller_id), product, expires_at=expires_at)
            order = self._new_order(
                buyer_id,
                str(product.seller_id),
                lines,
                products,
                batch,
                shipping_address=shipping_address,
                is_exempt=is_exempt,
                exemption_number=exemption_number,
                jurisdiction=jurisdiction,
            )
            self.aggregator.route_or_update_pool(
                order, product, batch, actor_id=buyer_id, actor_role=ActorRole.BUYER, pool=pool
            )
            return pool, order

        return self._run(work, lock_keys=[product_id])

    def _close_pool(self, pool, batch, actor_id, actor_role, note, reason) -> list[Order]:
        """Cancel the POOLING members of ``pool``, then the pool itself."""
        cancelled = []
        for order in current_domain.repository_for(Order).find_by_pool(pool.id):
            if order.status != OrderStatus.POOLING.value:
                continue
            self.machine.update_status(
                order, OrderStatus.CANCELLED, actor_id, actor_role, batch, note=note, refresh_pool=False
            )
            cancelled.append(order)

        self.aggregator.cancel_pool(pool, known=cancelled, reason=reason)
        return cancelled

    def cancel_pool(self, pool_id, actor_id, actor_role, reason=None) -> PooledOrder:
        """Close an open pool on behalf of its seller or an admin.

        Every POOLING member is cancelled through the status machine, exactly
        as the expiry sweep does. Buyers may not cancel pools, and a seller may
        only cancel their own.
        """
        role = coerce_role(actor_role)
        if role not in POOL_CANCEL_ROLES:
            raise ValidationError({"actor_role": [f"{role.value} may not cancel a pool"]})
        pool = self.get_pool(pool_id)

        def work(batch):
            pool = self._load(PooledOrder, "pool", pool_id)
            if not pool.is_open:
                raise ValidationError({"pool": [f"Pool {pool.id} is {pool.status} and cannot be cancelled"]})
            if role == ActorRole.SELLER and str(actor_id) != str(pool.seller_id):
                raise ValidationError({"actor_id": [f"Pool {pool.id} belongs to a different seller"]})

            self._close_pool(
                pool,
                batch,
                actor_id=actor_id,
                actor_role=role,
                note=reason or f"Pool {pool.id} cancelled by {role.value.lower()}",
                reason=reason or "cancelled",
            )
            return pool

        pool = self._run(work, lock_keys=[pool.product_id])
        logger.info("pool_cancelled_by_actor", pool_id=str(pool_id), actor_role=role.value)
        return pool

    def expire_pools(self, now=None) -> list[PooledOrder]:
        """Cancel every open pool past its expiry, together with its POOLING members."""
        now = as_utc(now) or datetime.now(UTC)
        expired = []

        for candidate in self.aggregator.expired_pools(now):

            def work(batch, pool_id=candidate.id):
                pool = self._load(PooledOrder, "pool", pool_id)
                if not pool.is_open or not pool.is_expired(now):
                    return None

                self._close_pool(
                    pool,
                    batch,
                    actor_id=None,
                    actor_role=ActorRole.SYSTEM,
                    note=f"Pool {pool.id} expired before reaching its target",
                    reason="expired",
                )
                return pool

            pool = self._run(work, lock_keys=[candidate.product_id])
            if pool is not None:
                expired.append(pool)

        if expired:
            logger.info("pools_expired", pool_ids=[str(pool.id) for pool in expired])
        return expired

    def reconcile_pools(self) -> list[Order]:
        """Re-evaluate every open pool; returns orders promoted by the sweep."""
        promoted = []
        for candidate in current_domain.repository_for(PooledOrder).find_open():

            def work(batch, pool_id=candidate.id):
                pool = self._load(PooledOrder, "pool", pool_id)
                if not pool.is_open:
                    return []
                return self.aggregator.refresh(pool, batch)

            promoted.extend(self._run(work, lock_keys=[candidate.product_id]))

        if promoted:
            logger.info("reconcile_promoted_orders", order_ids=[str(order.id) for order in promoted])
        return promoted

    # -------------------------------------------------------------------
    # Products and stock
    # -------------------------------------------------------------------
    def add_product(
        self,
        seller_id,
        name,
        unit_price,
        min_order_quantity=1,
        current_stock=0,
        low_stock_threshold=10,
        reorder_point=0,
        reorder_quantity=0,
    ) -> Product:
        product = Product.create(
            seller_id=seller_id,
            name=name,
            unit_price=unit_price,
            min_order_quantity=min_order_quantity,
            current_stock=current_stock,
            low_stock_threshold=low_stock_threshold,
            reorder_point=reorder_point,
            reorder_quantity=reorder_quantity,
        )

        def work(batch):
            current_domain.repository_for(Product).add(product)
            return product

        return self._run(work)

    def get_product(self, product_id) -> Product:
        return self._load(Product, "product", product_id)

    def adjust_stock(self, product_id, delta, reason_code, notes=None) -> Product:
        def work(batch):
            return self.inventory.adjust(product_id, delta, reason_code, notes=notes)

        product = self._run(work, lock_keys=[product_id])
        if product.inventory_status != InventoryStatus.IN_STOCK.value:
            logger.warning(
                "low_stock",
                product_id=str(product_id),
                inventory_status=product.inventory_status,
                current_stock=product.current_stock,
            )
        return product

    def update_inventory_settings(
        self, product_id, low_stock_threshold=None, reorder_point=None, reorder_quantity=None
    ) -> Product:
        def work(batch):
            return self.inventory.update_settings(
                product_id,
                low_stock_threshold=low_stock_threshold,
                reorder_point=reorder_point,
                reorder_quantity=reorder_quantity,
            )

        return self._run(work, lock_keys=[product_id])

    def low_stock_products(self, seller_id) -> list[Product]:
        return self.inventory.low_stock_products(seller_id)

    def reorder_suggestions(self) -> list[dict]:
        return self.inventory.reorder_suggestions()

    def stock_history(self, product_id, limit=10):
        return self.inventory.stock_history(product_id, limit=limit)
