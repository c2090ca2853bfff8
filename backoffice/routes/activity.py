"""
Studio Back-Office — Activity Log API routes.
Full audit trail for budgets, contracts, payments, projects and clients.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, require_auditor
from backoffice.database import get_db, async_session
from backoffice.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)
activity_router = APIRouter(prefix="/activity", tags=["activity"])


# ═══════════════════════════════════════════════════════
#  Helper: fire-and-forget log writer
# ═══════════════════════════════════════════════════════

async def log_activity(
    entity_type: str,
    entity_id: str,
    action: str,
    description: str = "",
    icon: str = "📋",
    actor: str = "system",
    level: str = "INFO",
    changes: dict | None = None,
    extra_data: dict | None = None,
    db: AsyncSession | None = None,
) -> None:
    """
    Record an activity log entry.
    With a db session the entry joins the caller's transaction; without one it
    is written in its own session. Never raises.
    """
    entry = ActivityLog(
        id=str(uuid.uuid4()),
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        description=description,
        icon=icon,
        actor=actor,
        level=level,
        changes=changes,
        extra_data=extra_data or {},
    )

    try:
        if db is not None:
            db.add(entry)
            # No commit here; the caller commits
        else:
            async with async_session() as session:
                session.add(entry)
                await session.commit()
    except Exception as e:
        logger.warning(f"Failed to write activity log: {e}")


def diff_fields(before: dict, after: dict) -> dict:
    """{"field": {"before": x, "after": y}} for every field that changed."""
    return {
        key: {"before": before.get(key), "after": value}
        for key, value in after.items()
        if before.get(key) != value
    }


def _log_to_response(log: ActivityLog) -> dict:
    return {
        "id": log.id,
        "entity_type": log.entity_type,
        "entity_id": log.entity_id,
        "action": log.action,
        "description": log.description,
        "icon": log.icon,
        "level": log.level,
        "actor": log.actor,
        "changes": log.changes,
        "metadata": log.extra_data or {},
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


# ═══════════════════════════════════════════════════════
#  API Endpoints
# ═══════════════════════════════════════════════════════

@activity_router.get("")
async def list_activities(
    entity_type: str | None = Query(None, description="Filter by entity type"),
    entity_id: str | None = Query(None, description="Filter by entity ID"),
    actor: str | None = Query(None, description="Filter by actor"),
    level: str | None = Query(None, description="Filter by level"),
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(require_auditor),
    db: AsyncSession = Depends(get_db),
):
    """List activity log entries, newest first."""
    stmt = select(ActivityLog).order_by(ActivityLog.created_at.desc()).limit(limit)

    if entity_type:
        stmt = stmt.where(ActivityLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(ActivityLog.entity_id == entity_id)
    if actor:
        stmt = stmt.where(ActivityLog.actor == actor)
    if level:
        stmt = stmt.where(ActivityLog.level == level.upper())

    result = await db.execute(stmt)
    logs = result.scalars().all()

    return {
        "activities": [_log_to_response(log) for log in logs],
        "total": len(logs),
    }


@activity_router.get("/entity/{entity_type}/{entity_id}")
async def get_entity_history(
    entity_type: str,
    entity_id: str,
    caller: Caller = Depends(require_auditor),
    db: AsyncSession = Depends(get_db),
):
    """Full history for one entity, oldest first."""
    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.entity_type == entity_type)
        .where(ActivityLog.entity_id == entity_id)
        .order_by(ActivityLog.created_at.asc())
    )
    logs = result.scalars().all()

    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "history": [_log_to_response(log) for log in logs],
        "total": len(logs),
    }
