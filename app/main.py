import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import create_db_and_tables
from app.errors import StoreError, UpstreamError
from app.routes import (
    admin_orders,
    coupons,
    health,
    orders,
    payments,
)
from app.services.payment_gateway import build_payment_gateway

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.env == "local":
        create_db_and_tables()
    app.state.payment_gateway = build_payment_gateway(settings)
    yield


app = FastAPI(title="Sneakers Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if isinstance(exc, UpstreamError):
        logger.error(f"{exc.status_code} - {exc.message} - {request.method} {request.url.path}")
    else:
        logger.warning(f"{exc.status_code} - {exc.message} - {request.method} {request.url.path}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(coupons.router, prefix="/coupons", tags=["Coupons"])
app.include_router(admin_orders.router, prefix="/admin/orders", tags=["Admin Orders"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {
        "order_endpoints": [
            "/orders", "/orders/{order_id}"
        ],
        "payment_endpoints": [
            "/payments/preference", "/payments/card", "/payments/pix",
            "/payments/boleto", "/payments/methods", "/payments/{payment_id}",
            "/payments/webhook"
        ],
        "coupon_endpoints": [
            "/coupons", "/coupons/validate"
        ],
        "admin_endpoints": [
            "/admin/orders/{order_id}/status", "/admin/orders/expire-unpaid"
        ]
    }
