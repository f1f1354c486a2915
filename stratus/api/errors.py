"""Error log API — recent best-effort failures recorded by the services."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter

from ..services.resilience import error_tracker

router = APIRouter(prefix="/errors", tags=["errors"])


@router.get("")
def list_errors(source: Optional[str] = None, limit: int = 50):
    """Return recent errors, optionally filtered by source (e.g. ``teardown.fly``)."""
    return {
        "errors": error_tracker.get_errors(source=source, limit=limit),
        "total": error_tracker.count,
    }


@router.delete("", status_code=204)
def clear_errors():
    error_tracker.clear()
