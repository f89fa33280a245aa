"""
SQLAlchemy Database Models

Tables, products, orders, order items, payment methods and payments for
the restaurant POS core.

Nothing with financial or audit significance is ever physically deleted:
tables and products carry ``is_active``, items and orders carry status
enums whose terminal values (cancelled, void, paid) are the soft delete.
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.sql import func

from pos_core.core.clock import utcnow
from pos_core.database import Base

MONEY = Numeric(12, 2)


class TableStatus(str, enum.Enum):
    """Physical table status."""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class OrderStatus(str, enum.Enum):
    """
    Order status workflow.

    open -> served -> paid is the happy path; cancelled and void are
    reachable from open/served only. Terminal states never transition.
    """
    OPEN = "open"
    SERVED = "served"
    PAID = "paid"
    CANCELLED = "cancelled"
    VOID = "void"


class OrderItemStatus(str, enum.Enum):
    """Kitchen status of a single order line."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    VOID = "void"


class RestaurantTable(Base):
    """
    Physical seating unit.

    ``current_order_id`` is set iff status is occupied. ``locked_by_user_id``
    and ``locked_at`` record which actor currently works the table.
    """
    __tablename__ = "restaurant_tables"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    table_number = Column(Integer, nullable=False, unique=True)
    capacity = Column(Integer, nullable=False, default=4)
    section = Column(String(50), nullable=True)

    status = Column(
        Enum(TableStatus),
        default=TableStatus.AVAILABLE,
        nullable=False,
        index=True
    )
    # No FK: orders already references tables, and the pair would form a cycle
    current_order_id = Column(Integer, nullable=True)

    locked_by_user_id = Column(Integer, nullable=True, index=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def snapshot(self) -> dict:
        return {
            "status": self.status.value if self.status else None,
            "current_order_id": self.current_order_id,
            "locked_by_user_id": self.locked_by_user_id,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Table {self.table_number} - {self.status.value}>"


class Product(Base):
    """Catalog product. Read by the core, stock mutated only under an order lock."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    price = Column(MONEY, nullable=False)

    is_available = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    track_stock = Column(Boolean, default=False, nullable=False)
    stock_quantity = Column(Integer, nullable=True)
    variable_price = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Product #{self.id} - {self.name}>"


class Order(Base):
    """
    Dine-in or takeaway order.

    ``table_id`` is null for takeaway tickets. Money columns are derived by
    the ledger after every item mutation and never edited by hand.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(32), nullable=False, unique=True)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id"), nullable=True, index=True)
    server_id = Column(Integer, nullable=False, index=True)

    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.OPEN,
        nullable=False,
        index=True
    )

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(MONEY, nullable=False, default=0)
    tax_amount = Column(MONEY, nullable=False, default=0)
    discount_amount = Column(MONEY, nullable=False, default=0)
    total_amount = Column(MONEY, nullable=False, default=0)

    guest_count = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    opened_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_takeaway(self) -> bool:
        return self.table_id is None

    def snapshot(self) -> dict:
        return {
            "status": self.status.value if self.status else None,
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "discount_amount": str(self.discount_amount),
            "total_amount": str(self.total_amount),
            "guest_count": self.guest_count,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<Order {self.order_number} - {self.status.value}>"


class OrderItem(Base):
    """
    One line of an order.

    ``unit_price`` is captured when the line is added; later catalog price
    changes never alter it. ``subtotal`` is unit_price x quantity, the line
    discount is subtracted when the order totals are computed.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(MONEY, nullable=False)
    subtotal = Column(MONEY, nullable=False)
    discount_amount = Column(MONEY, nullable=False, default=0)
    notes = Column(String(500), nullable=True)

    status = Column(
        Enum(OrderItemStatus),
        default=OrderItemStatus.PENDING,
        nullable=False,
        index=True
    )
    added_by_user_id = Column(Integer, nullable=False)

    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    served_at = Column(DateTime(timezone=True), nullable=True)

    def snapshot(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "subtotal": str(self.subtotal),
            "notes": self.notes,
            "status": self.status.value if self.status else None,
        }

    def __repr__(self):
        return f"<OrderItem #{self.id} x{self.quantity} - {self.status.value}>"


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<PaymentMethod {self.name}>"


class Payment(Base):
    """
    Settlement record, created exactly once when an order is paid.

    Immutable after creation. ``order_id`` is unique so a second payment
    row for the same order cannot be stored.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    payment_number = Column(String(32), nullable=False, unique=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=False)
    cashier_id = Column(Integer, nullable=False, index=True)

    amount_due = Column(MONEY, nullable=False)
    amount_paid = Column(MONEY, nullable=False)
    change_amount = Column(MONEY, nullable=False, default=0)
    tip_amount = Column(MONEY, nullable=False, default=0)

    status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.COMPLETED,
        nullable=False,
        index=True
    )
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def snapshot(self) -> dict:
        return {
            "payment_number": self.payment_number,
            "order_id": self.order_id,
            "payment_method_id": self.payment_method_id,
            "amount_due": str(self.amount_due),
            "amount_paid": str(self.amount_paid),
            "change_amount": str(self.change_amount),
            "tip_amount": str(self.tip_amount),
        }

    def __repr__(self):
        return f"<Payment {self.payment_number} - {self.amount_paid}>"
