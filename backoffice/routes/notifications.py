"""
Studio Back-Office — In-app notification inbox.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, get_caller
from backoffice.database import get_db
from backoffice.errors import NotFoundError
from backoffice.models.notification import Notification

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_to_response(n: Notification) -> dict:
    return {
        "id": n.id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "category": n.category,
        "link": n.link,
        "read": bool(n.read),
        "metadata": n.extra_data or {},
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


@router.get("")
async def list_notifications(
    unread: bool = Query(False, description="Only unread notifications"),
    limit: int = Query(50, ge=1, le=200),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(Notification)
        .where(Notification.user_id == caller.user_id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    if unread:
        stmt = stmt.where(Notification.read.is_(False))
    result = await db.execute(stmt)
    items = result.scalars().all()
    return {"notifications": [_notification_to_response(n) for n in items], "total": len(items)}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id, Notification.user_id == caller.user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification not found")
    notification.read = True
    await db.commit()
    return {"success": True}


@router.post("/read-all")
async def mark_all_read(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == caller.user_id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.commit()
    return {"success": True, "updated": result.rowcount}
