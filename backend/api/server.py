# api/server.py
# ============================================================================
# RECONCILIATION SERVICE: FASTAPI SERVER
# ============================================================================
# HTTP boundary for the Razorpay payment-to-booking flow. Components raise
# ReconciliationError subclasses; this module is the only place they become
# `{ok: false, error}` responses.
#
# Routes (under /api/razorpay):
#   POST     /create-order                 create gateway order with intent
#   POST     /verify-payment               read-only payment status check
#   POST     /create-booking-from-payment  materialize bookings (idempotent)
#   POST     /webhook                      signed gateway push events
#   GET|POST /callback                     browser redirect after payment
#   GET      /get-key-id                   public key id for the checkout widget
# ============================================================================

import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from bookings.materializer import BookingMaterializer
from config import (
    AppConfig,
    GatewayCredentials,
    resolve_key_id,
    resolve_webhook_secret,
    server_config,
)
from database import close_database, init_database
from errors import GatewayTimeoutError, MaterializationTimeoutError, ReconciliationError
from gateway.callback import build_callback_redirect, extract_params, failure_url, parse_body
from gateway.client import RazorpayClient
from gateway.orders import GatewayOrderService
from gateway.verifier import PaymentVerifier, verify_checkout_signature
from gateway.webhooks import SIGNATURE_HEADER, WebhookReceiver
from logging_config import configure_logging
from schemas.booking import BookingIntent
from storage.base import IBookingStore, ICustomerStore, IEventLog
from storage.memory import InMemoryBookingStore, InMemoryCustomerStore, InMemoryEventLog
from storage.postgres import PostgresBookingStore, PostgresCustomerStore, PostgresEventLog

logger = structlog.get_logger().bind(component="api")

VERSION = "1.0.0"
RAZORPAY_PREFIX = "/api/razorpay"
PAY_AT_VENUE = "pay_at_venue"


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic"""
    configure_logging(server_config.LOG_LEVEL)
    logger.info("server_starting", version=VERSION, env=server_config.ENV)

    if os.getenv("DATABASE_URL"):
        await init_database()
        app.state.customer_store = PostgresCustomerStore()
        app.state.booking_store = PostgresBookingStore()
        app.state.event_log = PostgresEventLog()
    else:
        logger.warning("database_not_configured", fallback="in_memory")
        app.state.customer_store = InMemoryCustomerStore()
        app.state.booking_store = InMemoryBookingStore()
        app.state.event_log = InMemoryEventLog()

    yield

    logger.info("server_shutting_down")
    await close_database()


# =============================================================================
# FASTAPI APP
# =============================================================================

app = FastAPI(
    title="Booking Reconciliation Service",
    description="Razorpay payment to booking reconciliation",
    version=VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=server_config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Optional[float] = None
    receipt: Optional[str] = None
    notes: Optional[Dict[str, Any]] = None
    booking_intent: Optional[BookingIntent] = Field(default=None, alias="bookingIntent")


class VerifyPaymentRequest(BaseModel):
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class CreateBookingRequest(BaseModel):
    payment_id: Optional[str] = None
    order_id: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    uptime_seconds: float


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_credentials() -> GatewayCredentials:
    """Resolved per request so rotated keys take effect immediately"""
    return GatewayCredentials.from_env()


def get_app_config() -> AppConfig:
    return AppConfig.from_env()


async def get_gateway_client(
    credentials: GatewayCredentials = Depends(get_credentials),
    config: AppConfig = Depends(get_app_config),
) -> AsyncIterator[RazorpayClient]:
    async with RazorpayClient(credentials, config) as client:
        yield client


def get_customer_store(request: Request) -> ICustomerStore:
    return request.app.state.customer_store


def get_booking_store(request: Request) -> IBookingStore:
    return request.app.state.booking_store


def get_event_log(request: Request) -> IEventLog:
    return request.app.state.event_log


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def _error(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error, **extra})


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    logger.warning("request_failed",
                   path=request.url.path,
                   error_type=type(exc).__name__,
                   error=exc.message,
                   status=exc.status_code)
    extra = {"timeout": True} if isinstance(exc, (GatewayTimeoutError, MaterializationTimeoutError)) else {}
    return _error(exc.status_code, exc.message, **extra)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    messages = {404: "Not found", 405: "Method not allowed"}
    return _error(exc.status_code, messages.get(exc.status_code, str(exc.detail)))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = first.get("msg", "invalid request")
    return _error(400, f"Invalid request: {location}: {detail}" if location else f"Invalid request: {detail}")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return _error(500, str(exc) or type(exc).__name__)


# =============================================================================
# STARTUP TIME
# =============================================================================

START_TIME = datetime.utcnow()


# =============================================================================
# MIDDLEWARE
# =============================================================================

@app.middleware("http")
async def add_request_context(request: Request, call_next):
    """Bind a request id to every log line and add timing headers"""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())[:8]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start = time.perf_counter()

    response = await call_next(request)

    duration = (time.perf_counter() - start) * 1000
    response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
    response.headers["X-Request-ID"] = request_id
    logger.info("request_completed",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round(duration, 1))
    return response


# =============================================================================
# HEALTH ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    uptime = (datetime.utcnow() - START_TIME).total_seconds()
    return HealthResponse(status="healthy", version=VERSION, uptime_seconds=uptime)


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(f"{RAZORPAY_PREFIX}/create-order")
async def create_order(
    body: CreateOrderRequest,
    client: RazorpayClient = Depends(get_gateway_client),
    config: AppConfig = Depends(get_app_config),
):
    if body.amount is None or body.amount <= 0:
        return _error(400, "Amount must be > 0")
    if not body.receipt:
        return _error(400, "Receipt ID is required")

    service = GatewayOrderService(client, config)
    try:
        order = await service.create_order(
            body.amount,
            body.receipt,
            notes=body.notes,
            intent=body.booking_intent,
        )
    except GatewayTimeoutError:
        return _error(504, "Payment gateway timeout. Please try again.", timeout=True)

    return {
        "ok": True,
        "orderId": order.order_id,
        "amount": order.amount,
        "currency": order.currency,
        "receipt": order.receipt,
    }


@app.post(f"{RAZORPAY_PREFIX}/verify-payment")
async def verify_payment(
    body: VerifyPaymentRequest,
    credentials: GatewayCredentials = Depends(get_credentials),
    client: RazorpayClient = Depends(get_gateway_client),
):
    if not body.razorpay_payment_id:
        return _error(400, "Payment ID is required")

    if body.razorpay_signature is not None:
        valid = bool(body.razorpay_order_id) and verify_checkout_signature(
            body.razorpay_order_id,
            body.razorpay_payment_id,
            body.razorpay_signature,
            credentials.key_secret,
        )
        if not valid:
            logger.warning("checkout_signature_invalid", payment_id=body.razorpay_payment_id)
            return _error(400, "Invalid payment signature", success=False)

    result = await PaymentVerifier(client).verify_payment(body.razorpay_payment_id)
    if not result.is_success:
        return {
            "ok": False,
            "success": False,
            "status": result.status,
            "error": result.error_description or f"Payment status: {result.status}",
        }

    return {
        "ok": True,
        "success": True,
        "paymentId": result.payment_id,
        "orderId": result.order_id,
        "status": result.status,
        "amount": result.amount,
        "currency": result.currency,
    }


# =============================================================================
# BOOKING ENDPOINTS
# =============================================================================

@app.post(f"{RAZORPAY_PREFIX}/create-booking-from-payment")
async def create_booking_from_payment(
    body: CreateBookingRequest,
    client: RazorpayClient = Depends(get_gateway_client),
    config: AppConfig = Depends(get_app_config),
    customer_store: ICustomerStore = Depends(get_customer_store),
    booking_store: IBookingStore = Depends(get_booking_store),
    event_log: IEventLog = Depends(get_event_log),
):
    if not body.payment_id or not body.order_id:
        return _error(400, "Missing payment_id or order_id")

    materializer = BookingMaterializer(
        client,
        booking_store,
        customer_store,
        event_log=event_log,
        config=config,
    )
    try:
        result = await materializer.materialize(body.payment_id, body.order_id)
    except ReconciliationError as e:
        # The booking page offers pay-at-venue when online booking fails
        return _error(e.status_code, e.message, retryable=e.retryable, fallback=PAY_AT_VENUE)

    return {
        "ok": True,
        "success": result.success,
        "bookingId": result.booking_id,
        "alreadyExists": result.already_exists,
        "insertedCount": result.inserted_count,
    }


# =============================================================================
# GATEWAY PUSH / REDIRECT ENDPOINTS
# =============================================================================

@app.post(f"{RAZORPAY_PREFIX}/webhook")
async def razorpay_webhook(request: Request, event_log: IEventLog = Depends(get_event_log)):
    raw_body = await request.body()
    receiver = WebhookReceiver(resolve_webhook_secret(), event_log=event_log)
    ack = await receiver.handle_webhook(raw_body, request.headers.get(SIGNATURE_HEADER))
    return ack.model_dump(mode="json", exclude={"received_at"})


@app.api_route(f"{RAZORPAY_PREFIX}/callback", methods=["GET", "POST"])
async def razorpay_callback(request: Request):
    """Always a 302; never creates bookings"""
    base_url = AppConfig.site_url
    try:
        base_url = AppConfig.from_env().site_url
        body = {}
        if request.method == "POST":
            body = parse_body(await request.body(), request.headers.get("content-type"))
        params = extract_params(dict(request.query_params), body)
        url = build_callback_redirect(params, base_url)
        logger.info("callback_redirect",
                    payment_id=params.payment_id,
                    order_id=params.order_id,
                    success=bool(params.payment_id and params.order_id))
    except Exception as e:
        logger.error("callback_error", error=str(e))
        url = failure_url(base_url, str(e) or "Callback processing failed")
    return RedirectResponse(url, status_code=302)


@app.get(f"{RAZORPAY_PREFIX}/get-key-id")
async def get_key_id():
    key_id, mode = resolve_key_id()
    return {"ok": True, "keyId": key_id, "mode": mode.value}


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=server_config.HOST,
        port=server_config.PORT,
        reload=server_config.DEBUG,
        log_level=server_config.LOG_LEVEL.lower(),
    )
