"""
API Routes — health.

Feature routers live in their own modules and are mounted by ``main``; this
package init stays free of service imports.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from backoffice.schemas import HealthResponse

VERSION = "1.0.0"

router = APIRouter()


# ── Health ──────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health():
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
    )
