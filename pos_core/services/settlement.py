"""
Settlement Engine

Converts an open or served order into a paid one exactly once.

The order row lock is the single serialization point: of two concurrent
payments for the same order the second one waits, then sees the order as
paid and is rejected. The unique ``payments.order_id`` constraint backs
this up at the store level.
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
    PaymentMethod,
    PaymentStatus,
)
from pos_core.services.audit import AuditEvent, BaseAuditSink, emit, get_audit_sink
from pos_core.services.ledger import TERMINAL_STATUSES, OrderLedger, transition_order
from pos_core.services.totals import generate_ticket_number, parse_amount, to_money

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    """
    Outcome of a successful payment.

    Attributes:
        payment: The stored payment row
        order: The order, now paid
        change: Amount handed back to the customer
    """
    payment: Payment
    order: Order
    change: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment.id,
            "payment_number": self.payment.payment_number,
            "order_id": self.order.id,
            "order_number": self.order.order_number,
            "amount_due": str(self.payment.amount_due),
            "amount_paid": str(self.payment.amount_paid),
            "tip_amount": str(self.payment.tip_amount),
            "change": str(self.change),
        }


class SettlementEngine:
    """Single-shot order payment."""

    def __init__(
        self,
        ledger: Optional[OrderLedger] = None,
        audit_sink: Optional[BaseAuditSink] = None,
        policy: Optional[PermissionPolicy] = None,
        payment_number_prefix: Optional[str] = None,
    ):
        self.audit_sink = audit_sink or get_audit_sink()
        self.policy = policy or RolePolicy()
        self.ledger = ledger or OrderLedger(audit_sink=self.audit_sink, policy=self.policy)
        self.payment_number_prefix = payment_number_prefix or get_settings().payment_number_prefix

    async def _load_method(self, session: AsyncSession, method_id: int) -> PaymentMethod:
        method = await session.get(PaymentMethod, method_id)
        if method is None or not method.is_active:
            raise BadRequest("Invalid payment method")
        return method

    async def process_payment(
        self,
        session: AsyncSession,
        order_id: int,
        actor: Actor,
        payment_method_id: int,
        amount_paid: Any,
        tip_amount: Any = 0,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SettlementResult:
        """
        Settle ``order_id`` in full.

        The amount required is the order total plus the tip; any excess is
        returned as change. On success the order is paid and closed, every
        live item is marked served and a bound table is freed, all in the
        same transaction as the payment row.

        Raises:
            Forbidden: actor may not take payments
            NotFound: order missing
            BadRequest: order already paid, cancelled or void; payment method
                missing or inactive; amounts invalid or insufficient
            Conflict: the store rejected a duplicate payment (retry)
        """
        if not self.policy.allows(actor, Capability.PAYMENT_PROCESS):
            raise Forbidden("You are not allowed to process payments")

        paid = parse_amount(amount_paid, "amount paid")
        tip = parse_amount(tip_amount if tip_amount is not None else 0, "tip amount")

        async with atomic(session):
            order = await get_for_update(session, Order, order_id)
            if order is None:
                raise NotFound("Order not found")

            if order.status == OrderStatus.PAID:
                raise BadRequest("Order is already paid")
            if order.status in TERMINAL_STATUSES:
                raise BadRequest("Cannot pay for a cancelled/void order")

            method = await self._load_method(session, payment_method_id)

            due = to_money(order.total_amount)
            required = to_money(due + tip)
            if paid < required:
                raise BadRequest(
                    f"Insufficient payment. Required: {required}, Received: {paid}",
                    details={"required": str(required), "received": str(paid)},
                )
            change = to_money(paid - required)
            now = utcnow()

            payment = Payment(
                payment_number=generate_ticket_number(self.payment_number_prefix, now),
                order_id=order.id,
                payment_method_id=method.id,
                cashier_id=actor.id,
                amount_due=due,
                amount_paid=paid,
                change_amount=change,
                tip_amount=tip,
                status=PaymentStatus.COMPLETED,
                reference_number=reference_number,
                notes=notes,
                paid_at=now,
            )
            session.add(payment)
            try:
                await session.flush()
            except IntegrityError as e:
                raise Conflict("Duplicate payment, please retry") from e

            before = order.snapshot()
            transition_order(order, OrderStatus.PAID)
            order.closed_at = now

            result = await session.execute(
                select(OrderItem).where(
                    OrderItem.order_id == order.id,
                    OrderItem.status != OrderItemStatus.CANCELLED,
                )
            )
            for item in result.scalars():
                item.status = OrderItemStatus.SERVED
                item.served_at = item.served_at or now

            await self.ledger.release_table_for(session, order)
            after = order.snapshot()

        await emit(self.audit_sink, AuditEvent(
            actor_id=actor.id,
            action="PAYMENT_PROCESSED",
            entity_type="payment",
            entity_id=payment.id,
            before=before,
            after={
                **payment.snapshot(),
                "order_status": after["status"],
                "payment_method": method.name,
            },
        ))
        logger.info(
            f"Payment {payment.payment_number} processed for order {order.order_number}: "
            f"due {due}, paid {paid}, tip {tip}, change {change} by {actor}"
        )
        return SettlementResult(payment=payment, order=order, change=change)
