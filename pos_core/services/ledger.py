"""
Order Ledger

Owns the order and order-item lifecycle:

    create_order  -> opens a dine-in order (binding the table) or a takeaway ticket
    add_item      -> prices a product, consumes stock, recomputes totals
    update_item   -> changes quantity, moves stock by the delta, recomputes totals
    remove_item   -> cancels the line, returns its stock, recomputes totals
    update_order  -> guest count / notes on an open order
    cancel_order  -> admin/moderator only, returns all stock, frees the table

Each operation is one transaction holding the order (or table) row lock,
so stock decrements and totals recomputation for the same order are never
interleaved. State checks run after the lock is taken. Audit events are
emitted once the transaction has committed.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pos_core.core.actors import Actor, Capability, PermissionPolicy, RolePolicy
from pos_core.core.clock import utcnow
from pos_core.core.config import get_settings
from pos_core.core.errors import BadRequest, Conflict, Forbidden, NotFound
from pos_core.database import atomic, get_for_update
from pos_core.models import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    Payment,
    RestaurantTable,
    TableStatus,
)
from pos_core.services.audit import AuditEvent, BaseAuditSink, emit, get_audit_sink
from pos_core.services.catalog import CatalogGate
from pos_core.services.tables import TableLockManager, load_table_for_update
from pos_core.services.totals import (
    OrderTotals,
    calculate_totals,
    ensure_within_limit,
    generate_ticket_number,
    to_money,
)

logger = logging.getLogger(__name__)

MAX_QUANTITY = 999


# =============================================================================
# ORDER STATE MACHINE
# =============================================================================

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.OPEN: frozenset({
        OrderStatus.SERVED,
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
        OrderStatus.VOID,
    }),
    OrderStatus.SERVED: frozenset({
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
        OrderStatus.VOID,
    }),
    OrderStatus.PAID: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.VOID: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if not targets)


def transition_order(order: Order, target: OrderStatus) -> None:
    """Move ``order`` to ``target`` or raise BadRequest."""
    if target not in ORDER_TRANSITIONS[order.status]:
        raise BadRequest(
            f"Cannot move order from {order.status.value} to {target.value}"
        )
    order.status = target


@dataclass
class ItemChange:
    """Order and line touched by an item mutation."""
    order: Order
    item: OrderItem


@dataclass
class OrderDetail:
    """Read model of an order with its lines and settlement."""
    order: Order
    items: list[OrderItem]
    payment: Optional[Payment] = None


class OrderLedger:
    """Order + item lifecycle and totals integrity."""

    def __init__(
        self,
        catalog: Optional[CatalogGate] = None,
        locks: Optional[TableLockManager] = None,
        audit_sink: Optional[BaseAuditSink] = None,
        policy: Optional[PermissionPolicy] = None,
        tax_rate: Optional[Decimal] = None,
        order_number_prefix: Optional[str] = None,
    ):
        settings = get_settings()
        self.audit_sink = audit_sink or get_audit_sink()
        self.policy = policy or RolePolicy()
        self.catalog = catalog or CatalogGate()
        self.locks = locks or TableLockManager(audit_sink=self.audit_sink, policy=self.policy)
        self.tax_rate = tax_rate if tax_rate is not None else settings.tax_rate
        self.order_number_prefix = order_number_prefix or settings.order_number_prefix

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load_order_for_update(self, session: AsyncSession, order_id: int) -> Order:
        order = await get_for_update(session, Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    def _ensure_modifiable(self, order: Order, actor: Actor) -> None:
        if order.status != OrderStatus.OPEN:
            raise BadRequest("Cannot modify a closed order")
        if order.server_id != actor.id and not self.policy.allows(actor, Capability.ORDER_MODIFY_ANY):
            raise Forbidden("You can only modify your own orders")

    async def _load_item(self, session: AsyncSession, order: Order, item_id: int) -> OrderItem:
        result = await session.execute(
            select(OrderItem)
            .where(OrderItem.id == item_id, OrderItem.order_id == order.id)
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFound("Order item not found")
        return item

    async def _items(self, session: AsyncSession, order_id: int) -> list[OrderItem]:
        result = await session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.added_at, OrderItem.id)
        )
        return list(result.scalars().all())

    async def recalculate_totals(self, session: AsyncSession, order: Order) -> OrderTotals:
        """
        Recompute and store the order's derived money columns.

        Must run inside the transaction that mutated the items.
        """
        await session.flush()
        items = await self._items(session, order.id)
        totals = calculate_totals(items, order.discount_amount, self.tax_rate)
        ensure_within_limit(totals.subtotal, "order subtotal")
        ensure_within_limit(totals.total_amount, "order total")
        order.subtotal = totals.subtotal
        order.tax_amount = totals.tax_amount
        order.total_amount = totals.total_amount
        return totals

    async def release_table_for(self, session: AsyncSession, order: Order) -> None:
        """
        Return the order's table to available, detach it and clear its lock.

        Only touches the table if it still points at ``order``.
        """
        if order.table_id is None:
            return
        table = await get_for_update(session, RestaurantTable, order.table_id)
        if table is None or table.current_order_id != order.id:
            return
        table.status = TableStatus.AVAILABLE
        table.current_order_id = None
        self.locks.clear(table)
        logger.debug(f"Table {table.table_number} released by order {order.order_number}")

    async def _emit(self, actor: Actor, action: str, entity_type: str, entity_id: int,
                    before: Optional[dict], after: Optional[dict]) -> None:
        await emit(self.audit_sink, AuditEvent(
            actor_id=actor.id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
        ))

    # =========================================================================
    # ORDER OPERATIONS
    # =========================================================================

    async def create_order(
        self,
        session: AsyncSession,
        actor: Actor,
        table_id: Optional[int] = None,
        guest_count: int = 1,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Open a new order.

        With ``table_id`` the table row is locked, checked and bound to the
        new order (status occupied, lock granted to the creator). Without it
        a takeaway ticket is opened and no table is touched.

        Raises:
            Forbidden: actor may not open orders
            BadRequest: invalid guest count, table under maintenance
            NotFound: table missing or deactivated
            Conflict: table already has an active order, is locked by another
                actor, or the generated order number collided (retry)
        """
        if not self.policy.allows(actor, Capability.ORDER_CREATE):
            raise Forbidden("You are not allowed to create orders")
        if guest_count is None or int(guest_count) < 1:
            raise BadRequest("Guest count must be at least 1")

        async with atomic(session):
            table = None
            now = utcnow()

            if table_id is not None:
                table = await load_table_for_update(session, table_id)

                if table.status == TableStatus.OCCUPIED and table.current_order_id is not None:
                    raise Conflict("Table already has an active order")
                if table.status == TableStatus.MAINTENANCE:
                    raise BadRequest("Table is under maintenance")
                self.locks.ensure_available(table, actor.id, now)

            order = Order(
                order_number=generate_ticket_number(self.order_number_prefix, now),
                table_id=table_id,
                server_id=actor.id,
                status=OrderStatus.OPEN,
                subtotal=Decimal("0.00"),
                tax_amount=Decimal("0.00"),
                discount_amount=Decimal("0.00"),
                total_amount=Decimal("0.00"),
                guest_count=int(guest_count),
                notes=notes,
                opened_at=now,
            )
            session.add(order)
            try:
                await session.flush()
            except IntegrityError as e:
                raise Conflict("Duplicate order number, please retry") from e

            if table is not None:
                table.status = TableStatus.OCCUPIED
                table.current_order_id = order.id
                self.locks.grant(table, actor.id, now)

        await self._emit(actor, "ORDER_CREATED", "order", order.id, None, {
            "order_number": order.order_number,
            "table_id": table_id,
            "guest_count": order.guest_count,
            "takeaway": table_id is None,
        })
        where = f"for table {table.table_number}" if table is not None else "as takeaway"
        logger.info(f"Order {order.order_number} created {where} by {actor}")
        return order

    async def update_order(
        self,
        session: AsyncSession,
        order_id: int,
        actor: Actor,
        guest_count: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Change guest count and/or notes of an open order."""
        if guest_count is not None and int(guest_count) < 1:
            raise BadRequest("Guest count must be at least 1")

        async with atomic(session):
            order = await self._load_order_for_update(session, order_id)
            self._ensure_modifiable(order, actor)

            before = order.snapshot()
            if guest_count is not None:
                order.guest_count = int(guest_count)
            if notes is not None:
                order.notes = notes
            after = order.snapshot()

        await self._emit(actor, "ORDER_UPDATED", "order", order.id, before, after)
        logger.info(f"Order {order.order_number} updated by {actor}")
        return order

    async def cancel_order(
        self,
        session: AsyncSession,
        order_id: int,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Cancel an unpaid order.

        Every live item is cancelled and its tracked stock restored; the
        table, if any, goes back to available with its lock cleared.

        Raises:
            NotFound: order missing
            BadRequest: order paid (refund instead), already cancelled or void
            Forbidden: actor is not admin/moderator
        """
        async with atomic(session):
            order = await self._load_order_for_update(session, order_id)

            if order.status == OrderStatus.PAID:
                raise BadRequest("Cannot cancel a paid order. Use refund instead.")
            if order.status in TERMINAL_STATUSES:
                raise BadRequest("Order is already cancelled")
            if not self.policy.allows(actor, Capability.ORDER_CANCEL):
                raise Forbidden("Only administrators can cancel orders")

            before = order.snapshot()
            live_items = [
                item for item in await self._items(session, order.id)
                if item.status != OrderItemStatus.CANCELLED
            ]
            # Product rows are locked in id order so concurrent cancels cannot deadlock
            for item in sorted(live_items, key=lambda i: i.product_id):
                product = await self.catalog.get_product(session, item.product_id, include_inactive=True)
                self.catalog.adjust_stock(product, item.quantity)
                item.status = OrderItemStatus.CANCELLED

            now = utcnow()
            transition_order(order, OrderStatus.CANCELLED)
            order.notes = f"{order.notes or ''} | Cancelled: {reason or 'No reason provided'}"
            order.closed_at = now
            await self.recalculate_totals(session, order)
            await self.release_table_for(session, order)
            after = order.snapshot()

        await self._emit(actor, "ORDER_CANCELLED", "order", order.id, before, {
            **after,
            "reason": reason,
            "cancelled_items": len(live_items),
        })
        logger.info(f"Order {order.order_number} cancelled by {actor}. Reason: {reason}")
        return order

    async def get_order(self, session: AsyncSession, order_id: int) -> OrderDetail:
        """Read an order with its items and payment, if settled."""
        async with atomic(session):
            order = await session.get(Order, order_id, populate_existing=True)
            if order is None:
                raise NotFound("Order not found")
            items = await self._items(session, order.id)
            result = await session.execute(select(Payment).where(Payment.order_id == order.id))
            payment = result.scalar_one_or_none()
        return OrderDetail(order=order, items=items, payment=payment)

    # =========================================================================
    # ITEM OPERATIONS
    # =========================================================================

    async def add_item(
        self,
        session: AsyncSession,
        order_id: int,
        actor: Actor,
        product_id: int,
        quantity: int,
        notes: Optional[str] = None,
        unit_price: Optional[Any] = None,
    ) -> ItemChange:
        """
        Add a product line to an open order.

        Raises:
            NotFound: order or product missing / product inactive
            BadRequest: order not open, product unavailable, insufficient
                stock, invalid quantity or variable price
            Forbidden: actor neither owns the order nor is admin/moderator
        """
        quantity = _validate_quantity(quantity)

        async with atomic(session):
            order = await self._load_order_for_update(session, order_id)
            self._ensure_modifiable(order, actor)

            product = await self.catalog.get_product(session, product_id)
            self.catalog.ensure_orderable(product)
            self.catalog.ensure_stock(product, quantity)
            price = self.catalog.resolve_unit_price(product, unit_price)
            line_total = ensure_within_limit(to_money(price * quantity), "item subtotal")

            item = OrderItem(
                order_id=order.id,
                product_id=product.id,
                quantity=quantity,
                unit_price=price,
                subtotal=line_total,
                discount_amount=Decimal("0.00"),
                notes=notes,
                status=OrderItemStatus.PENDING,
                added_by_user_id=actor.id,
                added_at=utcnow(),
            )
            session.add(item)
            self.catalog.adjust_stock(product, -quantity)
            await self.recalculate_totals(session, order)

        await self._emit(actor, "ORDER_ITEM_ADDED", "order_item", item.id, None, {
            "order_id": order.id,
            **item.snapshot(),
            "order_total": str(order.total_amount),
        })
        logger.info(f"Item \"{product.name}\" x{quantity} added to order {order.order_number} by {actor}")
        return ItemChange(order=order, item=item)

    async def update_item(
        self,
        session: AsyncSession,
        order_id: int,
        item_id: int,
        actor: Actor,
        quantity: int,
        notes: Optional[str] = None,
    ) -> ItemChange:
        """
        Change the quantity (and optionally notes) of a live line.

        Stock moves by the quantity delta; the line keeps its original
        unit price.
        """
        quantity = _validate_quantity(quantity)

        async with atomic(session):
            order = await self._load_order_for_update(session, order_id)
            self._ensure_modifiable(order, actor)

            item = await self._load_item(session, order, item_id)
            if item.status == OrderItemStatus.CANCELLED:
                raise BadRequest("Cannot modify cancelled item")

            product = await self.catalog.get_product(session, item.product_id, include_inactive=True)
            delta = quantity - item.quantity
            if delta > 0:
                self.catalog.ensure_stock(product, delta)

            before = item.snapshot()
            self.catalog.adjust_stock(product, -delta)
            item.quantity = quantity
            item.subtotal = ensure_within_limit(
                to_money(to_money(item.unit_price) * quantity), "item subtotal"
            )
            if notes is not None:
                item.notes = notes
            await self.recalculate_totals(session, order)
            after = item.snapshot()

        await self._emit(actor, "ORDER_ITEM_UPDATED", "order_item", item.id, before, {
            "order_id": order.id,
            **after,
            "order_total": str(order.total_amount),
        })
        logger.info(f"Order item {item.id} updated in order {order.order_number} by {actor}")
        return ItemChange(order=order, item=item)

    async def remove_item(
        self,
        session: AsyncSession,
        order_id: int,
        item_id: int,
        actor: Actor,
    ) -> ItemChange:
        """Cancel a line (never deleted) and return its full quantity to stock."""
        async with atomic(session):
            order = await self._load_order_for_update(session, order_id)
            self._ensure_modifiable(order, actor)

            item = await self._load_item(session, order, item_id)
            if item.status == OrderItemStatus.CANCELLED:
                raise BadRequest("Order item is already cancelled")

            product = await self.catalog.get_product(session, item.product_id, include_inactive=True)
            before = item.snapshot()
            item.status = OrderItemStatus.CANCELLED
            self.catalog.adjust_stock(product, item.quantity)
            await self.recalculate_totals(session, order)
            after = item.snapshot()

        await self._emit(actor, "ORDER_ITEM_REMOVED", "order_item", item.id, before, {
            "order_id": order.id,
            **after,
            "order_total": str(order.total_amount),
        })
        logger.info(f"Order item {item.id} removed from order {order.order_number} by {actor}")
        return ItemChange(order=order, item=item)


def _validate_quantity(quantity: Any) -> int:
    try:
        value = int(quantity)
    except (TypeError, ValueError):
        raise BadRequest("Quantity must be a whole number")
    if value != quantity:
        raise BadRequest("Quantity must be a whole number")
    if value < 1:
        raise BadRequest("Quantity must be at least 1")
    if value > MAX_QUANTITY:
        raise BadRequest(f"Quantity must be at most {MAX_QUANTITY}")
    return value
