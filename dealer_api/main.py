import logging
import os
import traceback
import urllib.parse
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, Depends, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy import select, func, or_
from sqlalchemy.exc import SQLAlchemyError

from .models import (
    Base, Vehicle, Customer, Quote, QuoteItem, Order, OrderItem,
    QUOTE_STATUSES, ORDER_STATUSES,
)
from .schemas import VehicleIn, CustomerIn, QuoteIn, OrderIn, StatusIn, PaymentUpdateIn
from .serializers import vehicle_json, customer_json, quote_json, order_json
from .reports import sales_by_staff, aging_receivables
from .utils import line_total, like_pattern, parse_datetime
from .auth import (
    Caller, require_roles, close_http_client,
    ADMIN, ALL_ROLES, SALES_ROLES, ORDER_ROLES, REPORT_ROLES,
)


logger = logging.getLogger("main")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
API_PREFIX = os.environ.get("API_PREFIX", "").strip().rstrip("/")
CUSTOMER_SEARCH_LIMIT = 50

# ─── DB setup ───
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:////tmp/dealer.db").strip()

def _sanitize_url(url: str) -> str:
    try:
        p = urllib.parse.urlsplit(url)
        qs = [(k, v) for k, v in urllib.parse.parse_qsl(p.query, keep_blank_values=True)
              if k.lower() not in {"sslmode", "sslrootcert", "sslcert", "sslkey"}]
        return urllib.parse.urlunsplit((p.scheme, p.netloc, p.path, urllib.parse.urlencode(qs), p.fragment))
    except ValueError:
        return url

def normalize_db_url(url: str) -> str:
    """Point postgres URLs at the asyncpg dialect; leave everything else alone."""
    if not url.startswith("postgres"):
        return url
    url = _sanitize_url(url)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://") and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url

db_url = normalize_db_url(DATABASE_URL)
_is_pg = "asyncpg" in db_url

engine_kwargs = {"echo": False, "pool_pre_ping": True}
if _is_pg:
    engine_kwargs.update(
        pool_size=2,           # Keep 2 warm connections
        max_overflow=3,        # Allow up to 5 total under burst
        pool_recycle=120,
    )

engine = create_async_engine(db_url, **engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


def _setup_logging() -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root.addHandler(handler)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ─── App setup ───
@asynccontextmanager
async def lifespan(application: FastAPI):
    _setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Dealer API ready (prefix={API_PREFIX or '/'}, pg={_is_pg})")
    yield
    await close_http_client()
    await engine.dispose()

app = FastAPI(title="Dealer API", lifespan=lifespan)


def _first_error(errors) -> str:
    if not errors:
        return "Invalid request"
    err = errors[0]
    if err.get("type") == "json_invalid":
        return "Invalid JSON body"
    loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
    msg = err.get("msg", "Invalid value")
    return f"{'.'.join(loc)}: {msg}" if loc else msg


@app.exception_handler(StarletteHTTPException)
async def _http_exc(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def _validation_exc(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": _first_error(exc.errors())}, status_code=400)


@app.exception_handler(SQLAlchemyError)
async def _db_exc(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error at {request.url}: {traceback.format_exc()}")
    return JSONResponse({"error": "Database error"}, status_code=500)


@app.exception_handler(Exception)
async def _exc(request: Request, exc: Exception):
    logger.error(f"Unhandled exception at {request.url}: {traceback.format_exc()}")
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


async def get_db():
    async with SessionLocal() as session:
        yield session


@app.get("/health")
async def health():
    return JSONResponse({"ok": True})


router = APIRouter()


async def _customer_or_400(db: AsyncSession, customer_id: str) -> Customer:
    c = await db.get(Customer, customer_id)
    if not c:
        raise HTTPException(status_code=400, detail="Customer not found")
    return c


# ════════════════════════════════════════════════
# VEHICLES
# ════════════════════════════════════════════════
@router.get("/vehicles")
async def list_vehicles(
    caller: Caller = Depends(require_roles(*ALL_ROLES)),
    q: str | None = None,
    model: str | None = None,
    min_price: float | None = Query(None, alias="minPrice", ge=0),
    max_price: float | None = Query(None, alias="maxPrice", ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Vehicle)
    if q:
        like = like_pattern(q)
        stmt = stmt.where(or_(
            Vehicle.model.ilike(like, escape="\\"),
            Vehicle.version.ilike(like, escape="\\"),
            Vehicle.sku.ilike(like, escape="\\"),
        ))
    if model:
        stmt = stmt.where(Vehicle.model == model)
    if min_price is not None:
        stmt = stmt.where(Vehicle.msrp >= min_price)
    if max_price is not None:
        stmt = stmt.where(Vehicle.msrp <= max_price)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    rows = (await db.execute(
        stmt.order_by(Vehicle.created_at.asc(), Vehicle.id.asc()).offset((page - 1) * limit).limit(limit)
    )).scalars().all()
    return JSONResponse({
        "meta": {"total": total, "page": page, "limit": limit},
        "data": [vehicle_json(v) for v in rows],
    })


@router.get("/vehicles/{sku}")
async def get_vehicle(
    sku: str,
    caller: Caller = Depends(require_roles(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    v = (await db.execute(select(Vehicle).where(Vehicle.sku == sku).limit(1))).scalar_one_or_none()
    if not v:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return JSONResponse(vehicle_json(v))


@router.post("/vehicles", status_code=201)
async def create_vehicle(
    payload: VehicleIn,
    caller: Caller = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    v = Vehicle(
        sku=payload.sku, model=payload.model, version=payload.version, color=payload.color,
        specs=payload.specs, msrp=payload.msrp, stock_total=payload.stock_total,
        stock_by_dealer=[{"dealerId": s.dealer_id, "qty": s.qty} for s in payload.stock_by_dealer],
    )
    db.add(v)
    await db.commit()
    logger.info(f"Vehicle {v.id} (sku={v.sku}) registered by {caller.id}")
    return JSONResponse(vehicle_json(v), status_code=201)


# ════════════════════════════════════════════════
# CUSTOMERS
# ════════════════════════════════════════════════
@router.post("/customers", status_code=201)
async def create_customer(
    payload: CustomerIn,
    caller: Caller = Depends(require_roles(*SALES_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    c = Customer(
        name=payload.name,
        phone=payload.phone or "",
        email=str(payload.email) if payload.email else "",
        address=payload.address or "",
        notes=payload.notes or "",
    )
    db.add(c)
    await db.commit()
    logger.info(f"Customer {c.id} created by {caller.id}")
    return JSONResponse(customer_json(c), status_code=201)


@router.get("/customers/{customer_id}")
async def get_customer(
    customer_id: str,
    caller: Caller = Depends(require_roles(*SALES_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    c = await db.get(Customer, customer_id)
    if not c:
        raise HTTPException(status_code=404, detail="Customer not found")
    return JSONResponse(customer_json(c))


@router.get("/customers")
async def search_customers(
    caller: Caller = Depends(require_roles(*SALES_ROLES)),
    q: str = "",
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Customer)
    if q:
        like = like_pattern(q)
        stmt = stmt.where(or_(
            Customer.name.ilike(like, escape="\\"),
            Customer.phone.ilike(like, escape="\\"),
            Customer.email.ilike(like, escape="\\"),
        ))
    rows = (await db.execute(
        stmt.order_by(Customer.created_at.asc(), Customer.id.asc()).limit(CUSTOMER_SEARCH_LIMIT)
    )).scalars().all()
    return JSONResponse([customer_json(c) for c in rows])


# ════════════════════════════════════════════════
# QUOTES
# ════════════════════════════════════════════════
@router.post("/quotes", status_code=201)
async def create_quote(
    payload: QuoteIn,
    caller: Caller = Depends(require_roles(*SALES_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    await _customer_or_400(db, payload.customer_id)
    items = [
        QuoteItem(position=i, vehicle_sku=it.vehicle_sku, price=it.price, qty=it.qty)
        for i, it in enumerate(payload.items)
    ]
    quote = Quote(
        dealer_id=payload.dealer_id,
        created_by=caller.id,
        customer_id=payload.customer_id,
        discounts=payload.discounts,
        total=line_total(items),
        status="Draft",
        items=items,
    )
    db.add(quote)
    await db.commit()
    logger.info(f"Quote {quote.id} created by {caller.id} (total={quote.total:.2f})")
    return JSONResponse(quote_json(quote), status_code=201)


@router.get("/quotes/{quote_id}")
async def get_quote(
    quote_id: str,
    caller: Caller = Depends(require_roles(*SALES_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    quote = await db.get(Quote, quote_id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    customer = await db.get(Customer, quote.customer_id)
    return JSONResponse(quote_json(quote, customer, expand=True))


@router.patch("/quotes/{quote_id}/status")
async def update_quote_status(
    quote_id: str,
    body: StatusIn,
    caller: Caller = Depends(require_roles(*SALES_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    # Flat status set: any value may replace any other
    if body.status not in QUOTE_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    quote = await db.get(Quote, quote_id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    previous = quote.status
    quote.status = body.status
    await db.commit()
    logger.info(f"Quote {quote.id} status {previous} -> {quote.status} by {caller.id}")
    return JSONResponse(quote_json(quote))


# ════════════════════════════════════════════════
# ORDERS
# ════════════════════════════════════════════════
@router.post("/orders", status_code=201)
async def create_order(
    payload: OrderIn,
    caller: Caller = Depends(require_roles(*SALES_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    await _customer_or_400(db, payload.customer_id)
    if payload.quote_id and not await db.get(Quote, payload.quote_id):
        raise HTTPException(status_code=400, detail="Quote not found")

    payment = payload.payment
    delivery = payload.delivery
    order = Order(
        dealer_id=payload.dealer_id,
        created_by=caller.id,
        customer_id=payload.customer_id,
        quote_id=payload.quote_id,
        payment_method=payment.method if payment else None,
        payment_status=payment.status if payment else None,
        payment_plan=payment.plan if payment else None,
        delivery_status=delivery.status if delivery else None,
        delivery_eta=delivery.eta if delivery else None,
        delivery_tracking=delivery.tracking if delivery else None,
        status="Pending",
        items=[
            OrderItem(position=i, vehicle_sku=it.vehicle_sku, price=it.price, qty=it.qty)
            for i, it in enumerate(payload.items)
        ],
    )
    db.add(order)
    await db.commit()
    # Vehicle stock is not decremented here; stock moves are a separate concern.
    logger.info(f"Order {order.id} created by {caller.id} for customer {order.customer_id}")
    return JSONResponse(order_json(order), status_code=201)


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    caller: Caller = Depends(require_roles(*ORDER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    order = await db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    customer = await db.get(Customer, order.customer_id)
    quote = await db.get(Quote, order.quote_id) if order.quote_id else None
    return JSONResponse(order_json(order, customer, quote, expand=True))


@router.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: StatusIn,
    caller: Caller = Depends(require_roles(*ORDER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    if body.status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    order = await db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    previous = order.status
    order.status = body.status
    await db.commit()
    logger.info(f"Order {order.id} status {previous} -> {order.status} by {caller.id}")
    return JSONResponse(order_json(order))


@router.patch("/orders/{order_id}/payment")
async def update_order_payment(
    order_id: str,
    body: PaymentUpdateIn,
    caller: Caller = Depends(require_roles(*ORDER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    order = await db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    # Whole sub-record is replaced; omitted keys become null
    order.payment_method = body.payment.method
    order.payment_status = body.payment.status
    order.payment_plan = body.payment.plan
    await db.commit()
    logger.info(f"Order {order.id} payment set to {order.payment_status!r} by {caller.id}")
    return JSONResponse(order_json(order))


# ════════════════════════════════════════════════
# REPORTS
# ════════════════════════════════════════════════
@router.get("/reports/sales-by-staff")
async def report_sales_by_staff(
    caller: Caller = Depends(require_roles(*REPORT_ROLES)),
    dealer_id: str | None = Query(None, alias="dealerId"),
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    db: AsyncSession = Depends(get_db),
):
    try:
        start = parse_datetime(date_from)
        end = parse_datetime(date_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JSONResponse(await sales_by_staff(db, dealer_id=dealer_id, start=start, end=end))


@router.get("/reports/aging-receivables")
async def report_aging_receivables(
    caller: Caller = Depends(require_roles(*REPORT_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return JSONResponse(await aging_receivables(db))


app.include_router(router, prefix=API_PREFIX)
