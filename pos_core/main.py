"""
FastAPI Application Entry Point

Restaurant POS Core - thin HTTP adapter over the table, order and
settlement services. Authentication happens upstream: the gateway forwards
the authenticated staff member in the ``X-Actor-Id`` / ``X-Actor-Role``
headers.

Endpoints:
    - POST   /api/tables/{table_id}/lock: Acquire a table lock
    - POST   /api/tables/{table_id}/unlock: Release a table lock
    - PATCH  /api/tables/{table_id}/status: Set table status (managers)
    - DELETE /api/tables/{table_id}: Deactivate a table (managers)
    - POST   /api/orders: Open an order (dine-in or takeaway)
    - GET    /api/orders/{order_id}: Order with items and payment
    - PATCH  /api/orders/{order_id}: Guest count / notes
    - POST   /api/orders/{order_id}/items: Add an item
    - PATCH  /api/orders/{order_id}/items/{item_id}: Update an item
    - DELETE /api/orders/{order_id}/items/{item_id}: Remove an item
    - POST   /api/orders/{order_id}/cancel: Cancel an order
    - POST   /api/payments: Settle an order
    - GET    /health: System health check
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from pos_core.core.actors import Actor, Role
from pos_core.core.clock import utcnow
from pos_core.core.config import get_settings, setup_logging
from pos_core.core.errors import PosError
from pos_core.database import get_db, get_engine, init_db
from pos_core.schemas import (
    ErrorResponse,
    HealthResponse,
    ItemChangeResponse,
    OrderCancel,
    OrderCreate,
    OrderDetailResponse,
    OrderItemCreate,
    OrderItemResponse,
    OrderItemUpdate,
    OrderResponse,
    OrderUpdate,
    PaymentCreate,
    PaymentResponse,
    SettlementResponse,
    TableResponse,
    TableStatusUpdate,
    TableUnlockRequest,
)
from pos_core.services import (
    OrderLedger,
    SettlementEngine,
    TableAdmin,
    TableLockManager,
    get_order_ledger,
    get_settlement_engine,
    get_table_admin,
    get_table_lock_manager,
)
from pos_core.services.audit import get_audit_sink
from pos_core.services.ledger import ItemChange

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info(f"   Tax rate: {settings.tax_rate}")
    logger.info(f"   Table lock stale after: {settings.lock_stale_minutes} min")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    audit_sink = get_audit_sink()
    logger.info(f"✅ Audit Sink: {audit_sink.provider_name}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await get_engine().dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant point-of-sale core: table locks, order ledger and "
        "settlement with strict concurrency guarantees."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_actor(
    x_actor_id: Optional[int] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
) -> Actor:
    """Build the authenticated actor forwarded by the gateway."""
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor headers")
    try:
        role = Role(x_actor_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_actor_role}")
    return Actor(id=x_actor_id, role=role)


def _item_change(change: ItemChange) -> ItemChangeResponse:
    return ItemChangeResponse(
        item=OrderItemResponse.model_validate(change.item),
        order=OrderResponse.model_validate(change.order),
    )


# =============================================================================
# HEALTH ENDPOINT
# =============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify the database and the audit sink are reachable."""

    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    audit_sink = get_audit_sink()
    audit_status = "healthy" if await audit_sink.health_check() else "unhealthy"

    overall = "operational" if db_status == "healthy" and audit_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        audit_sink=audit_status,
        timestamp=utcnow(),
    )


# =============================================================================
# TABLE ENDPOINTS
# =============================================================================

@app.post(
    "/api/tables/{table_id}/lock",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def lock_table(
    table_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    locks: TableLockManager = Depends(get_table_lock_manager),
) -> TableResponse:
    table = await locks.acquire(db, table_id, actor)
    return TableResponse.model_validate(table)


@app.post(
    "/api/tables/{table_id}/unlock",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def unlock_table(
    table_id: int,
    body: Optional[TableUnlockRequest] = Body(None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    locks: TableLockManager = Depends(get_table_lock_manager),
) -> TableResponse:
    admin_override = body.admin_override if body else None
    table = await locks.release(db, table_id, actor, admin_override=admin_override)
    return TableResponse.model_validate(table)


@app.patch(
    "/api/tables/{table_id}/status",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def update_table_status(
    table_id: int,
    body: TableStatusUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    admin: TableAdmin = Depends(get_table_admin),
) -> TableResponse:
    table = await admin.set_status(db, table_id, actor, body.status)
    return TableResponse.model_validate(table)


@app.delete(
    "/api/tables/{table_id}",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def deactivate_table(
    table_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    admin: TableAdmin = Depends(get_table_admin),
) -> TableResponse:
    table = await admin.deactivate(db, table_id, actor)
    return TableResponse.model_validate(table)


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Open Order",
)
async def create_order(
    body: OrderCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> OrderResponse:
    """
    Open a dine-in order on ``table_id`` or, without it, a takeaway ticket.
    """
    order = await ledger.create_order(
        db,
        actor,
        table_id=body.table_id,
        guest_count=body.guest_count,
        notes=body.notes,
    )
    return OrderResponse.model_validate(order)


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderDetailResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> OrderDetailResponse:
    """Get a specific order with its lines and payment."""
    detail = await ledger.get_order(db, order_id)
    return OrderDetailResponse(
        order=OrderResponse.model_validate(detail.order),
        items=[OrderItemResponse.model_validate(item) for item in detail.items],
        payment=PaymentResponse.model_validate(detail.payment) if detail.payment else None,
    )


@app.patch(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def update_order(
    order_id: int,
    body: OrderUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> OrderResponse:
    order = await ledger.update_order(
        db, order_id, actor, guest_count=body.guest_count, notes=body.notes
    )
    return OrderResponse.model_validate(order)


@app.post(
    "/api/orders/{order_id}/items",
    response_model=ItemChangeResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
)
async def add_order_item(
    order_id: int,
    body: OrderItemCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> ItemChangeResponse:
    change = await ledger.add_item(
        db,
        order_id,
        actor,
        product_id=body.product_id,
        quantity=body.quantity,
        notes=body.notes,
        unit_price=body.unit_price,
    )
    return _item_change(change)


@app.patch(
    "/api/orders/{order_id}/items/{item_id}",
    response_model=ItemChangeResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
)
async def update_order_item(
    order_id: int,
    item_id: int,
    body: OrderItemUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> ItemChangeResponse:
    change = await ledger.update_item(
        db, order_id, item_id, actor, quantity=body.quantity, notes=body.notes
    )
    return _item_change(change)


@app.delete(
    "/api/orders/{order_id}/items/{item_id}",
    response_model=ItemChangeResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
)
async def remove_order_item(
    order_id: int,
    item_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> ItemChangeResponse:
    change = await ledger.remove_item(db, order_id, item_id, actor)
    return _item_change(change)


@app.post(
    "/api/orders/{order_id}/cancel",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def cancel_order(
    order_id: int,
    body: Optional[OrderCancel] = Body(None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> OrderResponse:
    order = await ledger.cancel_order(db, order_id, actor, reason=body.reason if body else None)
    return OrderResponse.model_validate(order)


# =============================================================================
# PAYMENT ENDPOINTS
# =============================================================================

@app.post(
    "/api/payments",
    response_model=SettlementResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Payments"],
    summary="Settle Order",
)
async def process_payment(
    body: PaymentCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> SettlementResponse:
    """
    Settle an order in full. ``amount_paid`` must cover total plus tip.
    """
    result = await engine.process_payment(
        db,
        body.order_id,
        actor,
        payment_method_id=body.payment_method_id,
        amount_paid=body.amount_paid,
        tip_amount=body.tip_amount,
        reference_number=body.reference_number,
        notes=body.notes,
    )
    return SettlementResponse(
        message="Payment processed successfully",
        change=result.change,
        payment=PaymentResponse.model_validate(result.payment),
        order=OrderResponse.model_validate(result.order),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(PosError)
async def pos_error_handler(request: Request, exc: PosError) -> JSONResponse:
    """Map domain errors onto their HTTP status."""
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pos_core.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
