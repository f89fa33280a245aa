"""
Pydantic Schemas for Request/Response Validation

Request bodies for the table, order and payment endpoints, and the
response shapes the API returns. Money is carried as Decimal and
serialized as a string, never as float.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from pos_core.models import OrderItemStatus, OrderStatus, PaymentStatus, TableStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class TableUnlockRequest(BaseModel):
    """Optional body of the unlock endpoint."""
    admin_override: Optional[bool] = Field(
        None,
        description="Force-release another actor's lock; ignored unless the actor may override locks",
    )


class TableStatusUpdate(BaseModel):
    status: TableStatus = Field(..., examples=["maintenance"])


class OrderCreate(BaseModel):
    """Request schema for opening an order. Omit ``table_id`` for takeaway."""
    table_id: Optional[int] = Field(None, ge=1, examples=[4])
    guest_count: int = Field(default=1, ge=1, le=99, examples=[2])
    notes: Optional[str] = Field(None, max_length=500)


class OrderUpdate(BaseModel):
    guest_count: Optional[int] = Field(None, ge=1, le=99)
    notes: Optional[str] = Field(None, max_length=500)


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=255, examples=["Customer left"])


class OrderItemCreate(BaseModel):
    """Single product line added to an order."""
    product_id: int = Field(..., ge=1, examples=[12])
    quantity: int = Field(..., ge=1, le=999, examples=[2])
    notes: Optional[str] = Field(None, max_length=500, examples=["No onions"])
    unit_price: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=12,
        decimal_places=2,
        description="Only honoured for variable-price products",
    )


class OrderItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, le=999, examples=[3])
    notes: Optional[str] = Field(None, max_length=500)


class PaymentCreate(BaseModel):
    """Request schema for settling an order."""
    order_id: int = Field(..., ge=1)
    payment_method_id: int = Field(..., ge=1)
    amount_paid: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2, examples=["50.00"])
    tip_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2, examples=["5.00"])
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class TableResponse(BaseModel):
    """Response schema for a single table."""
    id: int
    table_number: int
    capacity: int
    section: Optional[str]
    status: TableStatus
    current_order_id: Optional[int]
    locked_by_user_id: Optional[int]
    locked_at: Optional[datetime]
    is_active: bool

    class Config:
        from_attributes = True


class OrderItemResponse(BaseModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    notes: Optional[str]
    status: OrderItemStatus
    added_by_user_id: int
    added_at: datetime
    served_at: Optional[datetime]

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: int
    payment_number: str
    order_id: int
    payment_method_id: int
    cashier_id: int
    amount_due: Decimal
    amount_paid: Decimal
    change_amount: Decimal
    tip_amount: Decimal
    status: PaymentStatus
    reference_number: Optional[str]
    paid_at: datetime

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order (without lines)."""
    id: int
    order_number: str
    table_id: Optional[int]
    server_id: int
    status: OrderStatus
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    guest_count: int
    notes: Optional[str]
    opened_at: datetime
    closed_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderDetailResponse(BaseModel):
    """Order with its lines and settlement, if any."""
    order: OrderResponse
    items: List[OrderItemResponse]
    payment: Optional[PaymentResponse] = None


class ItemChangeResponse(BaseModel):
    """Response after an item mutation: the line and the recomputed order."""
    success: bool = True
    item: OrderItemResponse
    order: OrderResponse


class SettlementResponse(BaseModel):
    success: bool = True
    message: str
    change: Decimal
    payment: PaymentResponse
    order: OrderResponse


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    code: str
    details: Optional[dict] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    audit_sink: str
    timestamp: datetime
