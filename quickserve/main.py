"""
FastAPI Application Entry Point

QuickServe ordering backend: menu catalog, user profiles and the order
lifecycle, plus a WebSocket refresh feed for staff and client screens.

Endpoints:
    - GET  /api/menu, POST /api/menu: Menu catalog
    - GET  /api/users/{user_id}, POST /api/users: Profiles
    - GET  /api/orders, POST /api/orders: List / submit orders
    - GET  /api/orders/{id}, GET /api/orders/token/{token}: Lookups
    - PATCH /api/orders/{id}/status: Advance an order one step
    - POST /api/orders/{id}/cancel: Administrative cancel
    - WS   /ws/orders: Refresh signals for a site or a user
    - GET  /health: System health check
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, List, Optional
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quickserve.core.config import get_settings, setup_logging
from quickserve.core.exceptions import (
    ConflictError,
    NotFoundError,
    QuickServeError,
    StoreError,
    ValidationError,
)
from quickserve.database import dispose_engine, get_db, init_db
from quickserve.models import MenuItem, OrderStatus, Site, UserProfile, UserRole
from quickserve.schemas import (
    ErrorResponse,
    HealthResponse,
    MenuItemCreate,
    MenuItemResponse,
    OrderCreate,
    OrderResponse,
    OrderStatusUpdate,
    UserProfileResponse,
    UserProfileUpsert,
)
from quickserve.services.lifecycle import OrderLifecycleEngine, get_order_engine
from quickserve.services.orders import OrderFilter
from quickserve.services.sync import OrderPredicate, Subscription, get_change_feed

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
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
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    engine = get_order_engine()
    feed = get_change_feed()
    await feed.start()
    logger.info(f"Order Store: {engine.store.provider_name}")
    logger.info(f"Change Feed: {feed.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    try:
        await feed.stop()
    finally:
        await dispose_engine()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Two-site cafeteria ordering: menu, checkout with pickup tokens, "
        "and a staff-driven order status pipeline."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _order_response(order) -> OrderResponse:
    return OrderResponse.model_validate(order)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": "QuickServe Backend Running",
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
    engine: OrderLifecycleEngine = Depends(get_order_engine),
) -> HealthResponse:
    """Verify all system components are operational."""

    db_status = "healthy"
    try:
        await db.execute(select(func.count(MenuItem.id)))
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {e.__class__.__name__}"
        logger.error(f"Database health check failed: {e}")

    store_status = "healthy" if await engine.store.health_check() else "unhealthy"
    feed_status = "healthy" if await get_change_feed().health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, store_status, feed_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        order_store=store_status,
        change_feed=feed_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get(
    "/api/menu",
    response_model=List[MenuItemResponse],
    tags=["Menu"],
    summary="List Available Menu Items",
)
async def list_menu(
    location: Optional[Site] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[MenuItemResponse]:
    """Available items, optionally for one site."""
    query = select(MenuItem).where(MenuItem.available.is_(True)).order_by(MenuItem.id)
    if location is not None:
        query = query.where(MenuItem.location == location)

    try:
        result = await db.execute(query)
    except SQLAlchemyError as e:
        logger.exception("Menu query failed")
        raise StoreError("Could not load menu") from e

    return [MenuItemResponse.model_validate(item) for item in result.scalars().all()]


@app.post(
    "/api/menu",
    response_model=MenuItemResponse,
    responses=ERROR_RESPONSES,
    tags=["Menu"],
    summary="Create Menu Item (Admin/Seed)",
)
async def create_menu_item(
    item_data: MenuItemCreate,
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    item = MenuItem(**item_data.model_dump())
    try:
        db.add(item)
        await db.commit()
        await db.refresh(item)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception(f"Error creating menu item {item_data.name}")
        raise StoreError("Error creating menu item") from e

    logger.info(f"Menu item #{item.id} created: {item.name} ({item.location.value})")
    return MenuItemResponse.model_validate(item)


# =============================================================================
# USER PROFILE ENDPOINTS
# =============================================================================

@app.get(
    "/api/users/{user_id}",
    response_model=UserProfileResponse,
    responses=ERROR_RESPONSES,
    tags=["Users"],
)
async def get_profile(
    user_id: str,
    db: AsyncSession = Depends(get_db),
) -> UserProfileResponse:
    """Get a profile by identity-provider user id."""
    try:
        result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    except SQLAlchemyError as e:
        raise StoreError("Could not load profile") from e

    profile = result.scalar_one_or_none()
    if not profile:
        raise NotFoundError("User not found")
    return UserProfileResponse.model_validate(profile)


@app.post(
    "/api/users",
    response_model=UserProfileResponse,
    responses=ERROR_RESPONSES,
    tags=["Users"],
    summary="Create or Update Profile",
)
async def upsert_profile(
    profile_data: UserProfileUpsert,
    db: AsyncSession = Depends(get_db),
) -> UserProfileResponse:
    """Insert a new profile or overwrite the supplied fields of an existing one."""
    try:
        result = await db.execute(
            select(UserProfile).where(UserProfile.user_id == profile_data.user_id)
        )
        profile = result.scalar_one_or_none()

        if profile is None:
            if not profile_data.email or not profile_data.name:
                raise ValidationError("email and name are required for a new profile")
            profile = UserProfile(
                user_id=profile_data.user_id,
                email=profile_data.email,
                name=profile_data.name,
                role=profile_data.role or UserRole.CLIENT,
                phone=profile_data.phone,
                location=profile_data.location,
            )
            db.add(profile)
        else:
            updates = profile_data.model_dump(exclude={"user_id"}, exclude_none=True)
            for field, value in updates.items():
                setattr(profile, field, value)

        await db.commit()
        await db.refresh(profile)
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("A profile with this email already exists") from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception(f"Error saving profile {profile_data.user_id}")
        raise StoreError("Could not save profile") from e

    return UserProfileResponse.model_validate(profile)


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.get(
    "/api/orders",
    response_model=List[OrderResponse],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    location: Optional[Site] = Query(None),
    user_id: Optional[str] = Query(None),
    status: Optional[List[OrderStatus]] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    engine: OrderLifecycleEngine = Depends(get_order_engine),
) -> List[OrderResponse]:
    """Orders newest first; ``status`` may be repeated."""
    orders = await engine.query(OrderFilter(
        location=location,
        owner_id=user_id,
        statuses=tuple(status or ()),
        limit=limit,
    ))
    return [_order_response(o) for o in orders]


@app.post(
    "/api/orders",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Submit Order",
)
async def create_order(
    order_data: OrderCreate,
    engine: OrderLifecycleEngine = Depends(get_order_engine),
) -> OrderResponse:
    """Check out a cart: computes the total and pickup token, status pending."""
    logger.info(f"Creating order for: {order_data.client_name} ({order_data.location.value})")
    order = await engine.create(
        lines=[line.to_line() for line in order_data.items],
        location=order_data.location,
        client_name=order_data.client_name,
        client_phone=order_data.client_phone,
        table_number=order_data.table_number,
        owner_id=order_data.user_id,
    )
    return _order_response(order)


@app.get(
    "/api/orders/token/{token}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order_by_token(
    token: str,
    location: Optional[Site] = Query(None),
    engine: OrderLifecycleEngine = Depends(get_order_engine),
) -> OrderResponse:
    """Most recent order holding a pickup token."""
    return _order_response(await engine.find_by_token(token, location))


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    engine: OrderLifecycleEngine = Depends(get_order_engine),
) -> OrderResponse:
    """Get a specific order by ID."""
    return _order_response(await engine.get(order_id))


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Advance Order Status",
)
async def update_order_status(
    order_id: int,
    update: OrderStatusUpdate,
    engine: OrderLifecycleEngine = Depends(get_order_engine),
) -> OrderResponse:
    """Only the immediate successor of the current status is accepted."""
    return _order_response(await engine.advance(order_id, update.status))


@app.post(
    "/api/orders/{order_id}/cancel",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Cancel Order (Admin)",
)
async def cancel_order(
    order_id: int,
    engine: OrderLifecycleEngine = Depends(get_order_engine),
) -> OrderResponse:
    return _order_response(await engine.cancel(order_id))


# =============================================================================
# PUSH CHANNEL
# =============================================================================

async def _forward_refreshes(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json({
            "type": "refresh",
            "order_id": event.order_id,
            "status": event.status.value,
        })


@app.websocket("/ws/orders")
async def orders_stream(
    websocket: WebSocket,
    location: Optional[Site] = None,
    user_id: Optional[str] = None,
) -> None:
    """
    Refresh signals for one site (staff) or one user (client).

    Messages carry no order data: on ``refresh`` the screen re-queries
    GET /api/orders. The subscription ends with the socket.
    """
    await websocket.accept()
    predicate = OrderPredicate(location=location, owner_id=user_id)

    async with get_change_feed().subscribe(predicate) as subscription:
        await websocket.send_json({
            "type": "subscribed",
            "location": location.value if location else None,
            "user_id": user_id,
        })
        forwarder = asyncio.create_task(_forward_refreshes(websocket, subscription))
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            forwarder.cancel()
            try:
                await forwarder
            except (asyncio.CancelledError, WebSocketDisconnect):
                pass
            except Exception:
                logger.debug("Refresh forwarder stopped with an error", exc_info=True)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(QuickServeError)
async def domain_exception_handler(request: Request, exc: QuickServeError) -> JSONResponse:
    """Typed domain failures keep their status code and message."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a 400, same envelope as domain errors."""
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'][1:]) or err['loc'][0]}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content=ValidationError(details or "Invalid request").to_dict(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    content: dict[str, Any] = {
        "success": False,
        "error": "internal_error",
        "message": str(exc) if settings.debug else "An unexpected error occurred",
    }
    return JSONResponse(status_code=500, content=content)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "quickserve.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
