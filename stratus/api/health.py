"""FastAPI health endpoint with detailed diagnostics."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request, db: Session = Depends(get_db)):
    """Health check endpoint for load balancers and monitoring."""
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Health check database probe failed: %s", e)
        db_ok = False

    return {
        "status": "ok" if db_ok else "degraded",
        "service": "stratus-engine",
        "checks": {
            "database": "ok" if db_ok else "unreachable",
            "active_builds": len(request.app.state.builds),
        },
    }
