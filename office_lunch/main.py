"""
FastAPI Application Entry Point

Office Lunch - shared menu, orders and debt ledger for one lunch group.
Supports both Mock services (development) and Real backends (production).

Endpoints:
    - POST /api/session: Login with a display name
    - GET/POST/PATCH/PUT/DELETE /api/menu...: Today's menu (edits are admin only)
    - POST /api/orders, DELETE /api/orders/{id}: Place / cancel orders
    - POST /api/users/{name}/settle: Record a payment (admin)
    - POST /api/exports/daily: Queue the daily order sheet (admin)
    - POST /api/analyze-menu: Trusted menu photo analysis
    - GET /health: System health check

Callers identify themselves with the X-User-Name header; a matching
X-Admin-Code header turns on admin mode for the request.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from office_lunch.core.config import get_settings, setup_logging
from office_lunch.core.exceptions import AuthorizationError, LunchError, ValidationError
from office_lunch.schemas import (
    AdminVerifyRequest,
    AnalyzeMenuRequest,
    DeadlineUpdate,
    ErrorResponse,
    ExportResponse,
    HealthResponse,
    HistoryGroupOut,
    MenuItemCreate,
    MenuItemOut,
    MenuResponse,
    OrderCreate,
    OrderListResponse,
    OrderOut,
    RestaurantOut,
    RestaurantUpdate,
    SessionRequest,
    SessionResponse,
    SettleRequest,
    SettleResponse,
    SuccessResponse,
    UserListResponse,
    UserOut,
)
from office_lunch.services.analysis import (
    BaseMenuAnalyzer,
    get_primary_analyzer,
    get_server_analyzer,
)
from office_lunch.services.ingestion import MenuIngestionPipeline, get_ingestion_pipeline
from office_lunch.services.ledger import Actor, LedgerEngine, get_engine, normalize_user_name
from office_lunch.services.records import Menu, Order
from office_lunch.services.views import filtered_items, is_ordering_closed, total_debt
from office_lunch.tasks import export_daily_sheet

settings = get_settings()
setup_logging(logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    store = get_engine().store
    await store.start()
    logger.info(f"Store ready: {store.provider_name}")
    logger.info(f"Menu analyzer: {get_primary_analyzer().provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready")

    yield

    logger.info("Shutting down...")
    await store.close()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Shared daily menu, per-user orders and a running debt ledger "
        "for a small lunch group, with AI menu photo ingestion."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_actor(
    engine: LedgerEngine = Depends(get_engine),
    x_user_name: Optional[str] = Header(None),
    x_admin_code: Optional[str] = Header(None),
) -> Actor:
    """Caller context from the request headers. A wrong admin code is rejected."""
    is_admin = False
    if x_admin_code is not None:
        is_admin = engine.verify_admin(x_admin_code)
    return Actor(user_name=normalize_user_name(x_user_name), is_admin=is_admin)


async def require_user(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.user_name:
        raise ValidationError("X-User-Name header is required")
    return actor


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise AuthorizationError("admin mode is required")
    return actor


def get_export_task():
    """Celery task used for the daily sheet (swapped out in tests)."""
    return export_daily_sheet


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def menu_response(
    menu: Menu,
    now: datetime,
    search: str = "",
    provider: Optional[str] = None,
) -> MenuResponse:
    return MenuResponse(
        restaurant=RestaurantOut.model_validate(menu.restaurant),
        items=[MenuItemOut.model_validate(i) for i in filtered_items(menu.items, search)],
        image_url=menu.image_url,
        order_deadline=menu.order_deadline,
        is_closed=is_ordering_closed(menu.order_deadline, now),
        provider=provider,
    )


def order_list_response(orders: list[Order]) -> OrderListResponse:
    return OrderListResponse(
        total=len(orders),
        grand_total=sum(o.price for o in orders),
        orders=[OrderOut.model_validate(o) for o in orders],
    )


def _json_safe(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in doc.items()}


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
async def health_check(engine: LedgerEngine = Depends(get_engine)) -> HealthResponse:
    """Verify the store and the menu analyzer are operational."""
    store_status = "healthy" if await engine.store.health_check() else "unhealthy"
    analyzer = get_primary_analyzer()
    analyzer_status = "healthy" if await analyzer.health_check() else "unhealthy"

    overall = "operational" if store_status == analyzer_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        store=store_status,
        analyzer=analyzer_status,
        environment=settings.env_mode.value,
        timestamp=datetime.now(),
        details={
            "store_provider": engine.store.provider_name,
            "analyzer_provider": analyzer.provider_name,
        },
    )


# =============================================================================
# SESSION ENDPOINTS
# =============================================================================

@app.post(
    "/api/session",
    response_model=SessionResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Session"],
)
async def login(
    body: SessionRequest,
    engine: LedgerEngine = Depends(get_engine),
) -> SessionResponse:
    """Log in with a display name; names differing only in case or spacing share one user."""
    user = await engine.login(body.name)
    return SessionResponse(user=UserOut.model_validate(user))


@app.post(
    "/api/admin/verify",
    response_model=SuccessResponse,
    responses={403: {"model": ErrorResponse}},
    tags=["Session"],
)
async def verify_admin(
    body: AdminVerifyRequest,
    engine: LedgerEngine = Depends(get_engine),
) -> SuccessResponse:
    engine.verify_admin(body.passcode)
    return SuccessResponse(message="admin mode enabled")


@app.get("/api/users", response_model=UserListResponse, tags=["Ledger"])
async def list_users(engine: LedgerEngine = Depends(get_engine)) -> UserListResponse:
    """All users, most recently active first, with the group's total debt."""
    users = await engine.list_users()
    return UserListResponse(
        users=[UserOut.model_validate(u) for u in users],
        total_debt=total_debt(users),
    )


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get("/api/menu", response_model=MenuResponse, tags=["Menu"])
async def get_menu(
    search: str = Query("", max_length=100),
    engine: LedgerEngine = Depends(get_engine),
) -> MenuResponse:
    menu = await engine.get_menu()
    return menu_response(menu, engine.now(), search)


@app.post(
    "/api/menu/image",
    response_model=MenuResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Menu"],
    summary="Replace Menu From Photo",
)
async def upload_menu_image(
    file: UploadFile = File(...),
    actor: Actor = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
    pipeline: MenuIngestionPipeline = Depends(get_ingestion_pipeline),
) -> MenuResponse:
    """
    Extract a menu from a photo and make it today's menu.

    Items, restaurant and photo are replaced; the ordering deadline is kept.
    Nothing is written if extraction fails.
    """
    raw = await file.read()
    logger.info(f"Menu photo uploaded by {actor.user_name or 'admin'} ({len(raw)} bytes)")
    ingested = await pipeline.ingest(raw)
    menu = await engine.apply_ingested_menu(actor, ingested)
    return menu_response(menu, engine.now(), provider=ingested.provider)


@app.post(
    "/api/menu/items",
    response_model=MenuItemOut,
    status_code=201,
    tags=["Menu"],
)
async def add_menu_item(
    body: MenuItemCreate,
    actor: Actor = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
) -> MenuItemOut:
    item = await engine.add_menu_item(actor, body.name, body.price)
    return MenuItemOut.model_validate(item)


@app.delete("/api/menu/items/{item_id}", response_model=SuccessResponse, tags=["Menu"])
async def remove_menu_item(
    item_id: str,
    actor: Actor = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
) -> SuccessResponse:
    await engine.remove_menu_item(actor, item_id)
    return SuccessResponse(message=f"item {item_id} removed")


@app.patch("/api/menu/restaurant", response_model=RestaurantOut, tags=["Menu"])
async def update_restaurant(
    body: RestaurantUpdate,
    actor: Actor = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
) -> RestaurantOut:
    restaurant = (await engine.get_menu()).restaurant
    for field, value in body.model_dump(exclude_none=True).items():
        restaurant = await engine.update_restaurant(actor, field, value)
    return RestaurantOut.model_validate(restaurant)


@app.put("/api/menu/deadline", response_model=MenuResponse, tags=["Menu"])
async def set_deadline(
    body: DeadlineUpdate,
    actor: Actor = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
) -> MenuResponse:
    await engine.set_deadline(actor, body.order_deadline)
    return menu_response(await engine.get_menu(), engine.now())


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderOut,
    status_code=201,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    tags=["Orders"],
)
async def place_order(
    body: OrderCreate,
    actor: Actor = Depends(require_user),
    engine: LedgerEngine = Depends(get_engine),
) -> OrderOut:
    """Order an item from today's menu; its price is added to the caller's balance."""
    order = await engine.place_order(actor, body.item_id, body.quantity, body.note)
    return OrderOut.model_validate(order)


@app.delete(
    "/api/orders/{order_id}",
    response_model=OrderOut,
    responses={403: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def cancel_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    engine: LedgerEngine = Depends(get_engine),
) -> OrderOut:
    """Cancel an order (owner or admin) and refund its price."""
    order = await engine.cancel_order(actor, order_id)
    return OrderOut.model_validate(order)


@app.get("/api/orders/today", response_model=OrderListResponse, tags=["Orders"])
async def list_today_orders(engine: LedgerEngine = Depends(get_engine)) -> OrderListResponse:
    return order_list_response(await engine.today_orders())


@app.get("/api/orders/history", response_model=list[HistoryGroupOut], tags=["Orders"])
async def order_history(
    actor: Actor = Depends(require_user),
    engine: LedgerEngine = Depends(get_engine),
) -> list[HistoryGroupOut]:
    """The caller's orders grouped by day."""
    groups = await engine.history(actor.user_name)
    return [HistoryGroupOut.model_validate(g) for g in groups]


# =============================================================================
# LEDGER ENDPOINTS
# =============================================================================

@app.post(
    "/api/users/{name}/settle",
    response_model=SettleResponse,
    responses={403: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Ledger"],
)
async def settle_debt(
    name: str,
    body: Optional[SettleRequest] = None,
    actor: Actor = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
) -> SettleResponse:
    """Record a payment; without an amount the full balance is settled."""
    amount = await engine.settle_debt(actor, name, body.amount if body else None)
    user = await engine.resolve_user(name)
    return SettleResponse(user_name=user.name, amount=amount, balance=user.balance)


@app.post(
    "/api/exports/daily",
    response_model=ExportResponse,
    status_code=202,
    tags=["Exports"],
)
async def export_daily(
    actor: Actor = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
    task=Depends(get_export_task),
) -> ExportResponse:
    """Queue the daily order sheet (Excel) for the Celery worker."""
    orders = await engine.today_orders()
    users = await engine.list_users()
    payload = {
        "orders": [_json_safe({"id": o.id, **o.to_doc()}) for o in orders],
        "users": [
            _json_safe({"name": u.name, "balance": u.balance, "lastActive": u.last_active})
            for u in users
        ],
    }
    async_result = task.delay(payload)
    logger.info(f"Daily sheet export queued ({len(orders)} orders)")
    return ExportResponse(task_id=async_result.id, status="queued", order_count=len(orders))


# =============================================================================
# MENU ANALYSIS ENDPOINT
# =============================================================================

@app.post("/api/analyze-menu", tags=["Analysis"], summary="Analyze Menu Photo")
async def analyze_menu(
    body: AnalyzeMenuRequest,
    analyzer: Optional[BaseMenuAnalyzer] = Depends(get_server_analyzer),
):
    """
    Trusted analysis endpoint used by the ingestion pipeline.

    Holds the provider credential so clients never need one.
    """
    if not body.image:
        return JSONResponse(status_code=400, content={"error": "No image provided"})
    if analyzer is None:
        return JSONResponse(status_code=500, content={"error": "Server configuration error"})

    result = await analyzer.analyze(body.image)
    if not result.success:
        logger.error(f"Menu analysis failed ({result.error_code}): {result.error_message}")
        return JSONResponse(status_code=500, content={"error": result.error_message})

    return result.data


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(LunchError)
async def lunch_error_handler(request: Request, exc: LunchError) -> JSONResponse:
    """Typed application errors → status code + {success, error, detail}."""
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.url.path} → {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = "; ".join(
        f"{'.'.join(str(p) for p in e['loc'] if p != 'body')}: {e['msg']}" for e in exc.errors()
    )
    return JSONResponse(status_code=400, content=ValidationError(errors).to_dict())


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
