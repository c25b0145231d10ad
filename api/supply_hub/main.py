# Supply Hub - orders, stock ledger, receiving and supplier invoice reconciliation
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .settings import settings
from .exceptions import SupplyHubError

from supply_hub.routers.orders import router as orders_router
from supply_hub.routers.receiving_batches import router as receiving_batches_router
from supply_hub.routers.supplier_invoices import router as supplier_invoices_router
from supply_hub.routers.inventory import router as inventory_router
from supply_hub.routers.products import router as products_router
from supply_hub.routers.suppliers import router as suppliers_router
from supply_hub.database import init_db, close_db, check_db_health

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from supply_hub.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    logger.info("Database initialized")
    yield
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title="Supply Hub API",
    version="1.0.0",
    description="Food-supply distribution: orders, stock, receiving and invoice reconciliation",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------
# Error rendering: {"error": {"message", "code", "details"?}}
# ---------------------------------------------------------
def _error_response(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"error": body}))


@app.exception_handler(SupplyHubError)
async def supply_hub_error_handler(request: Request, exc: SupplyHubError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return _error_response(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
    return _error_response(400, {"message": message, "code": "VALIDATION_ERROR", "details": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(500, {"message": "Internal server error", "code": "ERR_INTERNAL"})


app.include_router(orders_router, prefix=settings.API_PREFIX)
app.include_router(receiving_batches_router, prefix=settings.API_PREFIX)
app.include_router(supplier_invoices_router, prefix=settings.API_PREFIX)
app.include_router(inventory_router, prefix=settings.API_PREFIX)
app.include_router(products_router, prefix=settings.API_PREFIX)
app.include_router(suppliers_router, prefix=settings.API_PREFIX)


@app.get("/health")
async def health():
    return {"app": "ok", **(await check_db_health())}
