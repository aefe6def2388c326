"""
Service-level routes.

Endpoints:
  GET  /api/health
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from gdledger.core.database import get_session
from gdledger.models.gd import GDEntry
from gdledger.schemas.responses import HealthResponse

router = APIRouter(prefix="/api")


@router.get("/health", response_model=HealthResponse)
def health(session: Session = Depends(get_session)):
    try:
        session.exec(select(GDEntry.id).limit(1))
        db_status = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check: database unavailable: {e}")
        db_status = f"error: {e}"
    return HealthResponse(status="ok", db=db_status)
