"""
Studio Back-Office — Notification dispatcher.

Fans a message out to in-app inbox rows and email (plus a Telegram alert for
staff-wide notices). Always called after the business transaction committed,
in its own session; failures are logged and never propagate.
"""

import logging
import re
from typing import Iterable
from urllib.parse import quote

from sqlalchemy import select

from backoffice.config import settings
from backoffice.database import async_session
from backoffice.models.notification import Notification
from backoffice.models.user import User
from backoffice.services.email_service import send_email, build_notification_email
from backoffice.services.telegram import send_staff_alert

logger = logging.getLogger(__name__)

LEVELS = ("info", "success", "warning", "error")


def whatsapp_link(phone: str, text: str) -> str | None:
    """Prepared wa.me deep link; staff still press send themselves."""
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return None
    if not (digits.startswith("55") and len(digits) >= 12):
        digits = f"55{digits}"
    return f"https://wa.me/{digits}?text={quote(text, safe='')}"


async def notify(
    user_ids: Iterable[str | None],
    title: str,
    message: str,
    category: str = "system",
    metadata: dict | None = None,
    link: str | None = None,
    level: str = "info",
    email: bool = True,
) -> int:
    """Deliver to each user; returns how many inbox rows were written."""
    ids = [uid for uid in dict.fromkeys(user_ids) if uid]
    if not ids:
        return 0
    if level not in LEVELS:
        level = "info"

    recipients: list[str] = []
    written = 0
    try:
        async with async_session() as session:
            result = await session.execute(select(User).where(User.id.in_(ids)))
            users = result.scalars().all()
            for user in users:
                session.add(Notification(
                    user_id=user.id,
                    title=title,
                    message=message,
                    type=level,
                    category=category,
                    link=link,
                    extra_data=metadata or {},
                ))
                if user.email:
                    recipients.append(user.email)
            await session.commit()
            written = len(users)
    except Exception as e:
        logger.warning(f"Failed to write notifications '{title}': {e}")
        return 0

    if email and recipients:
        full_link = f"{settings.public_app_url}{link}" if link and link.startswith("/") else link
        subject, html = build_notification_email(title, message, full_link)
        for address in recipients:
            try:
                await send_email(to=address, subject=subject, body_html=html)
            except Exception as e:
                logger.warning(f"Notification email to {address} failed: {e}")

    logger.info(f"🔔 Notified {written} user(s): {title}")
    return written


async def notify_admins(
    title: str,
    message: str,
    category: str = "system",
    metadata: dict | None = None,
    link: str | None = None,
    level: str = "info",
) -> int:
    """Notify every ADMIN user and post the same notice to the staff chat."""
    try:
        async with async_session() as session:
            result = await session.execute(select(User.id).where(User.role == "ADMIN"))
            admin_ids = list(result.scalars().all())
    except Exception as e:
        logger.warning(f"Could not resolve admin recipients: {e}")
        admin_ids = []

    try:
        await send_staff_alert(title, {"Mensagem": message}, link=None)
    except Exception as e:
        logger.warning(f"Staff alert failed: {e}")

    return await notify(admin_ids, title, message, category, metadata, link, level)
