from sqlalchemy import text

from posledger.core.observability import (
    domain_exception_handler,
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from posledger.core.config import settings
from posledger.core.errors import LedgerDomainError
from posledger.db.session import engine
from posledger.routers import fifo, inventory, shipping_orders

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Shipping orders, inventory ledger and FIFO cost reporting for the pharmacy back office.\n\n"
        "Mutating endpoints accept an optional `X-Actor` header that is recorded in the audit trail."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "shipping-orders", "description": "Shipping order lifecycle, numbering and stock effects."},
        {"name": "inventory", "description": "Stock movements, stock levels and the ledger."},
        {"name": "fifo", "description": "FIFO cost of goods, gross profit and margin reports."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(LedgerDomainError, domain_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(shipping_orders.router)
app.include_router(inventory.router)
app.include_router(fifo.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
