"""
Studio Back-Office — Pydantic request/response schemas.

Request models leave business-required fields optional so the services can
answer with the domain's own 400 messages; only shape errors are 422.
"""

from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime
    version: str


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None


def iso(value) -> str | None:
    return value.isoformat() if value else None


def money(value) -> float | None:
    return float(value) if value is not None else None
