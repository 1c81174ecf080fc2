"""
FastAPI Application Entry Point

TENZAI Storefront back-office API.

Endpoints:
    - POST /api/staff/auth/pin: Staff PIN login (rate limited)
    - GET  /api/staff/auth/me: Staff session check
    - POST /api/staff/auth/logout: Clear staff session
    - GET  /api/staff/orders: Orders waiting on the kitchen
    - POST /api/staff/orders/update-status: approved -> ready -> picked_up
    - POST /api/admin/security/revoke-sessions: Revoke every staff session
    - PUT  /api/admin/security/staff-pin: Change the staff PIN
    - GET  /api/admin/settings: PromptPay id, LINE recipients, PIN version
    - POST /api/admin/settings: Partial settings update
    - POST /api/admin/orders/{id}/resend-notifications: Requeue customer LINE push
    - GET  /api/public/promptpay: Store PromptPay id
    - GET  /api/public/promptpay/qr: PromptPay QR payload for an amount
    - GET  /health: System health check

Author: Khalil_Bannouri
Version: 3.0.0
"""

import asyncio
import contextlib
import hmac
import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Optional
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, HTTPException, Depends, Query, Request, Header
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from storefront.core.config import get_settings, setup_logging
from storefront.database import get_db, init_db, engine
from storefront.models import AdminSettings, Order, OrderStatus
from storefront.schemas import (
    AdminSettingsResponse,
    AdminSettingsUpdate,
    ErrorResponse,
    HealthResponse,
    OkResponse,
    PinLoginRequest,
    PromptPayIdResponse,
    PromptPayQrResponse,
    ResendNotificationResponse,
    RevokeSessionsResponse,
    StaffMeResponse,
    StaffOrderListResponse,
    StaffOrderResponse,
    StaffPinUpdate,
    SuccessResponse,
    UpdateStatusRequest,
    UpdateStatusResponse,
)
from storefront.services.notifications import (
    BaseNotificationService,
    NotificationError,
    build_customer_status_message,
    get_notification_service,
)
from storefront.services.order_status import (
    Notifier,
    OrderStatusGuard,
    OrderStatusStore,
    SqlOrderStatusStore,
    TransitionOutcome,
)
from storefront.services.promptpay import format_amount, generate_payload, qr_image_url
from storefront.services.rate_limiter import LoginRateLimiter, client_identifier
from storefront.services.staff_session import (
    SessionVersionStore,
    SqlSessionVersionStore,
    StaffSessionAuthority,
    hash_pin,
    verify_pin,
)
from storefront.tasks import push_line_message

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

OUTCOME_STATUS_CODES = {
    TransitionOutcome.INVALID_STATUS: 400,
    TransitionOutcome.INVALID_TRANSITION: 400,
    TransitionOutcome.NOT_FOUND: 404,
    TransitionOutcome.CONFLICT: 409,
}


def build_rate_limiter() -> LoginRateLimiter:
    """Login limiter configured from settings."""
    return LoginRateLimiter(
        max_attempts=settings.rate_limit_max_attempts,
        window_seconds=settings.rate_limit_window_seconds,
        lockout_seconds=settings.rate_limit_lockout_seconds,
    )


async def sweep_rate_limiter(limiter: LoginRateLimiter, interval: float) -> None:
    """Periodically evict stale limiter entries."""
    while True:
        await asyncio.sleep(interval)
        limiter.sweep()


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
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    notification_service = get_notification_service()
    logger.info(f"✅ Notification Service: {notification_service.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    sweeper = asyncio.create_task(
        sweep_rate_limiter(app.state.rate_limiter, settings.rate_limit_sweep_interval_seconds)
    )

    logger.info("✅ Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Staff, admin and payment endpoints for the TENZAI pickup storefront.",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Process-wide login limiter; every worker process has its own
app.state.rate_limiter = build_rate_limiter()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_rate_limiter(request: Request) -> LoginRateLimiter:
    return request.app.state.rate_limiter


def get_session_store(db: AsyncSession = Depends(get_db)) -> SessionVersionStore:
    return SqlSessionVersionStore(db)


def get_session_authority(
    store: SessionVersionStore = Depends(get_session_store),
) -> StaffSessionAuthority:
    return StaffSessionAuthority(store)


def get_order_status_store(db: AsyncSession = Depends(get_db)) -> OrderStatusStore:
    return SqlOrderStatusStore(db)


def get_notifier_service() -> BaseNotificationService:
    return get_notification_service()


async def require_staff(
    request: Request,
    authority: StaffSessionAuthority = Depends(get_session_authority),
) -> None:
    """Reject requests without a current staff session cookie."""
    token = request.cookies.get(settings.staff_cookie_name)
    if not await authority.authorize(token):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(
    x_admin_key: Optional[str] = Header(None, alias="x-admin-key"),
) -> None:
    """Reject requests without the configured X-Admin-Key."""
    expected = settings.admin_api_key
    if not expected or not x_admin_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def error_response(
    status_code: int,
    code: str,
    message_th: str,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Staff-facing error body: machine code plus Thai message."""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message_th": message_th}},
        headers=headers,
    )


def set_staff_cookie(response: JSONResponse, token: str) -> None:
    response.set_cookie(
        key=settings.staff_cookie_name,
        value=token,
        max_age=settings.staff_session_ttl_seconds,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def build_customer_notifier(db: AsyncSession, service: BaseNotificationService) -> Notifier:
    """Notifier that looks the order up and pushes the customer message."""

    async def notify(order_id: int, status: OrderStatus) -> bool:
        result = await db.execute(
            select(Order.order_number, Order.customer_line_user_id).where(Order.id == order_id)
        )
        row = result.first()
        if row is None:
            raise NotificationError(f"Order #{order_id} disappeared before notification")
        sent = await service.send_customer_status(
            row.order_number, row.customer_line_user_id, status
        )
        return sent.success

    return notify


async def load_promptpay_id(db: AsyncSession) -> str:
    """Configured PromptPay id, or the fallback when unset or unreadable."""
    try:
        result = await db.execute(
            select(AdminSettings.promptpay_id).order_by(AdminSettings.id).limit(1)
        )
        promptpay_id = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch PromptPay id: {e}")
        return settings.promptpay_fallback_id
    return promptpay_id or settings.promptpay_fallback_id


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    notifier: BaseNotificationService = Depends(get_notifier_service),
) -> HealthResponse:
    """Verify all system components are operational."""

    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    notification_status = "healthy" if await notifier.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        notification_service=notification_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# STAFF AUTH ENDPOINTS
# =============================================================================

@app.post(
    "/api/staff/auth/pin",
    response_model=OkResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    tags=["Staff Auth"],
    summary="Staff PIN Login",
)
async def staff_pin_login(
    request: Request,
    body: PinLoginRequest,
    limiter: LoginRateLimiter = Depends(get_rate_limiter),
    store: SessionVersionStore = Depends(get_session_store),
) -> JSONResponse:
    """
    Exchange the staff PIN for a session cookie.

    Failed attempts are counted per client address; after too many the
    address is locked out and receives 429 with Retry-After.
    """
    rate_key = f"staff:{client_identifier(request.headers)}"

    limit = limiter.check(rate_key)
    if not limit.allowed:
        retry_after = math.ceil(limit.retry_after or 0)
        return error_response(
            429,
            "RATE_LIMITED",
            f"เข้าสู่ระบบล้มเหลวหลายครั้ง กรุณารอ {retry_after} วินาที",
            headers={"Retry-After": str(retry_after)},
        )

    pin = body.pin
    if not isinstance(pin, str) or not pin:
        return error_response(400, "INVALID_INPUT", "กรุณากรอก PIN")

    try:
        stored_hash = await store.get_pin_hash()
    except SQLAlchemyError as e:
        logger.error(f"Staff PIN lookup failed: {e}")
        return error_response(500, "SERVER_ERROR", "เกิดข้อผิดพลาด กรุณาลองใหม่อีกครั้ง")

    if stored_hash:
        pin_valid = await run_in_threadpool(verify_pin, stored_hash, pin)
    elif settings.staff_pin:
        pin_valid = hmac.compare_digest(pin.encode("utf-8"), settings.staff_pin.encode("utf-8"))
    else:
        logger.error("No staff PIN configured (database or STAFF_PIN)")
        return error_response(500, "SERVER_ERROR", "ระบบยังไม่ได้ตั้งค่า PIN")

    if not pin_valid:
        limiter.record_failed_attempt(rate_key)
        logger.warning(f"Invalid staff PIN from {rate_key}")
        return error_response(401, "INVALID_PIN", "PIN ไม่ถูกต้อง")

    limiter.clear(rate_key)
    token = await StaffSessionAuthority(store).issue()

    response = JSONResponse(content={"ok": True})
    set_staff_cookie(response, token)
    logger.info(f"Staff session issued for {rate_key}")
    return response


@app.get("/api/staff/auth/me", response_model=StaffMeResponse, tags=["Staff Auth"])
async def staff_me(
    request: Request,
    authority: StaffSessionAuthority = Depends(get_session_authority),
):
    """Report whether the caller holds a current staff session."""
    if not await authority.authorize(request.cookies.get(settings.staff_cookie_name)):
        return JSONResponse(status_code=401, content={"ok": False})
    return StaffMeResponse(ok=True, role="staff")


@app.post("/api/staff/auth/logout", response_model=OkResponse, tags=["Staff Auth"])
async def staff_logout() -> JSONResponse:
    """Expire the staff session cookie on this device."""
    response = JSONResponse(content={"ok": True})
    response.delete_cookie(
        key=settings.staff_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


# =============================================================================
# STAFF ORDER ENDPOINTS
# =============================================================================

@app.get(
    "/api/staff/orders",
    response_model=StaffOrderListResponse,
    dependencies=[Depends(require_staff)],
    tags=["Staff Orders"],
)
async def list_staff_orders(db: AsyncSession = Depends(get_db)) -> StaffOrderListResponse:
    """Orders the kitchen still has to finish or hand over, oldest first."""
    result = await db.execute(
        select(Order)
        .where(Order.status.in_([OrderStatus.APPROVED, OrderStatus.READY]))
        .order_by(Order.created_at.asc(), Order.id.asc())
    )
    orders = result.scalars().all()
    return StaffOrderListResponse(
        orders=[StaffOrderResponse.model_validate(order) for order in orders],
    )


@app.post(
    "/api/staff/orders/update-status",
    response_model=UpdateStatusResponse,
    dependencies=[Depends(require_staff)],
    tags=["Staff Orders"],
    summary="Advance Order Status",
)
async def update_order_status(
    body: UpdateStatusRequest,
    db: AsyncSession = Depends(get_db),
    store: OrderStatusStore = Depends(get_order_status_store),
    notifier: BaseNotificationService = Depends(get_notifier_service),
) -> UpdateStatusResponse:
    """
    Move an order to ``ready`` or ``picked_up``.

    Returns 400 for unknown statuses and illegal transitions, 404 for
    unknown orders and 409 when another device changed the order first.
    """
    guard = OrderStatusGuard(store, notifier=build_customer_notifier(db, notifier))

    try:
        result = await guard.apply_transition(body.order_id, body.new_status)
    except SQLAlchemyError as e:
        logger.error(f"Order #{body.order_id} status update failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to update order")

    if not result.success:
        raise HTTPException(
            status_code=OUTCOME_STATUS_CODES[result.outcome],
            detail=result.message,
        )

    return UpdateStatusResponse(success=True, notified=result.notified)


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@app.post(
    "/api/admin/security/revoke-sessions",
    response_model=RevokeSessionsResponse,
    dependencies=[Depends(require_admin)],
    tags=["Admin Security"],
)
async def revoke_staff_sessions(
    authority: StaffSessionAuthority = Depends(get_session_authority),
) -> RevokeSessionsResponse:
    """Log every staff device out."""
    try:
        version = await authority.revoke_all()
    except SQLAlchemyError as e:
        logger.error(f"Staff session revocation failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to revoke sessions")
    return RevokeSessionsResponse(success=True, staff_session_version=version)


@app.put(
    "/api/admin/security/staff-pin",
    response_model=RevokeSessionsResponse,
    dependencies=[Depends(require_admin)],
    tags=["Admin Security"],
)
async def change_staff_pin(
    body: StaffPinUpdate,
    store: SessionVersionStore = Depends(get_session_store),
) -> RevokeSessionsResponse:
    """Store a new staff PIN and revoke the sessions issued under the old one."""
    pin_hash = await run_in_threadpool(hash_pin, body.pin)
    try:
        await store.set_pin_hash(pin_hash)
        version = await StaffSessionAuthority(store).revoke_all()
    except SQLAlchemyError as e:
        logger.error(f"Staff PIN change failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to change PIN")

    logger.info("Staff PIN changed")
    return RevokeSessionsResponse(success=True, staff_session_version=version)


@app.get(
    "/api/admin/settings",
    response_model=AdminSettingsResponse,
    dependencies=[Depends(require_admin)],
    tags=["Admin Settings"],
)
async def get_admin_settings(db: AsyncSession = Depends(get_db)) -> AdminSettingsResponse:
    """PromptPay id, LINE recipients and PIN version."""
    try:
        result = await db.execute(select(AdminSettings).order_by(AdminSettings.id).limit(1))
        row = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch admin settings: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch settings")

    if row is None:
        return AdminSettingsResponse(
            line_approver_id=settings.line_approver_id or "",
            line_staff_id=settings.line_staff_id or "",
        )

    return AdminSettingsResponse(
        promptpay_id=row.promptpay_id or "",
        line_approver_id=row.line_approver_id or "",
        line_staff_id=row.line_staff_id or "",
        pin_version=row.pin_version or 1,
    )


@app.post(
    "/api/admin/settings",
    response_model=SuccessResponse,
    dependencies=[Depends(require_admin)],
    tags=["Admin Settings"],
)
async def update_admin_settings(
    body: AdminSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    store: SessionVersionStore = Depends(get_session_store),
) -> SuccessResponse:
    """
    Update only the fields present in the body.

    A new staff PIN is hashed, bumps ``pin_version`` and revokes every
    staff session.
    """
    fields = {
        name: getattr(body, name) or ""
        for name in ("promptpay_id", "line_approver_id", "line_staff_id")
        if name in body.model_fields_set
    }
    new_pin = body.new_staff_pin or None

    if not fields and new_pin is None:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        if fields:
            result = await db.execute(
                update(AdminSettings)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.add(AdminSettings(**fields))
            await db.commit()

        if new_pin is not None:
            pin_hash = await run_in_threadpool(hash_pin, new_pin)
            await store.set_pin_hash(pin_hash)
            await StaffSessionAuthority(store).revoke_all()
    except SQLAlchemyError as e:
        logger.error(f"Admin settings update failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to update settings")

    logger.info(
        f"Admin settings updated: {sorted(fields) + (['staff_pin'] if new_pin else [])}"
    )
    return SuccessResponse(success=True)


@app.post(
    "/api/admin/orders/{order_id}/resend-notifications",
    response_model=ResendNotificationResponse,
    dependencies=[Depends(require_admin)],
    tags=["Admin Orders"],
)
async def resend_order_notifications(
    order_id: int,
    db: AsyncSession = Depends(get_db),
) -> ResendNotificationResponse:
    """Queue the customer status message again for a ready/picked-up order."""
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()

    if not order:
        raise HTTPException(status_code=404, detail=f"Order #{order_id} not found")

    if order.status not in (OrderStatus.READY, OrderStatus.PICKED_UP):
        raise HTTPException(
            status_code=400,
            detail=f"No customer notification for status {order.status.value}",
        )

    if not order.customer_line_user_id:
        raise HTTPException(status_code=400, detail="Order has no customer LINE user ID")

    message = build_customer_status_message(
        order.order_number, order.status, settings.restaurant_name
    )
    task = push_line_message.delay(order.customer_line_user_id, message)
    logger.info(f"Order #{order_id}: customer notification queued ({task.id})")

    return ResendNotificationResponse(success=True, status=order.status.value, task_id=task.id)


# =============================================================================
# PUBLIC PROMPTPAY ENDPOINTS
# =============================================================================

@app.get("/api/public/promptpay", response_model=PromptPayIdResponse, tags=["PromptPay"])
async def get_promptpay_id(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """The store's PromptPay id (never any other admin setting)."""
    promptpay_id = await load_promptpay_id(db)
    return JSONResponse(
        content={"promptpay_id": promptpay_id},
        headers={"Cache-Control": "no-store"},
    )


@app.get("/api/public/promptpay/qr", response_model=PromptPayQrResponse, tags=["PromptPay"])
async def get_promptpay_qr(
    amount: Decimal = Query(..., gt=0, le=Decimal("9999999.99")),
    db: AsyncSession = Depends(get_db),
) -> PromptPayQrResponse:
    """PromptPay payload and renderer URL for ``amount`` baht."""
    promptpay_id = await load_promptpay_id(db)
    rounded = amount.quantize(Decimal("0.01"))
    payload = generate_payload(promptpay_id, rounded, settings.promptpay_country_code)

    return PromptPayQrResponse(
        promptpay_id=promptpay_id,
        amount=format_amount(rounded),
        payload=payload,
        qr_image_url=qr_image_url(payload, renderer_url=settings.qr_renderer_url),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

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
