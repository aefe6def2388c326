"""
GD Ledger – FastAPI application entry point.

Run with:
    uvicorn gdledger.main:app --reload --host 0.0.0.0 --port 8000
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from gdledger.api.gd_routes import gd_router
from gdledger.api.party_routes import customer_router, payment_router
from gdledger.api.report_routes import item_router, report_router
from gdledger.api.routes import router
from gdledger.api.sales_routes import sales_router
from gdledger.api.stock_routes import stock_router
from gdledger.core.config import settings
from gdledger.core.database import create_db_and_tables
from gdledger.core.errors import LedgerError
from gdledger.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown hooks."""
    setup_logging()
    logger.info("Starting GD Ledger backend …")
    create_db_and_tables()
    logger.info("Database tables ready")
    yield
    logger.info("GD Ledger backend shut down")


app = FastAPI(
    title="GD Ledger API",
    description="Landed-cost allocation, FIFO inventory and sales ledger for imported goods",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS – allow frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


app.include_router(router)
app.include_router(gd_router)
app.include_router(stock_router)
app.include_router(sales_router)
app.include_router(payment_router)
app.include_router(customer_router)
app.include_router(report_router)
app.include_router(item_router)


@app.get("/")
def root():
    return {"message": "GD Ledger API", "docs": "/docs"}
