"""
Studio Back-Office — Telegram staff alerts.
"""

import re
import logging

import aiohttp

from backoffice.config import settings

logger = logging.getLogger(__name__)


def _esc_md(s: str) -> str:
    """Escape MarkdownV2 special characters."""
    return re.sub(r"([_*\[\]()~`>#+\-=|{}.!\\])", r"\\\1", str(s))


async def send_staff_alert(title: str, lines: dict[str, str] | None = None, link: str | None = None) -> bool:
    """Post a short alert to the staff chat. Returns True on success."""
    token = settings.telegram_bot_token
    chat_id = settings.telegram_chat_id

    if not token or not chat_id:
        logger.debug("Telegram not configured — skipping staff alert")
        return False

    parts = [f"*{_esc_md(title)}*", ""]
    for label, value in (lines or {}).items():
        parts.append(f"• *{_esc_md(label)}:* {_esc_md(value)}")
    if link:
        parts += ["", f"🔗 [{_esc_md('Abrir')}]({link})"]

    payload = {
        "chat_id": chat_id,
        "text": "\n".join(parts),
        "parse_mode": "MarkdownV2",
        "disable_web_page_preview": True,
    }
    return await _send_tg_message(payload)


async def _send_tg_message(payload: dict) -> bool:
    """Low-level Telegram sendMessage wrapper."""
    token = settings.telegram_bot_token
    try:
        timeout = aiohttp.ClientTimeout(total=10)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            url = f"https://api.telegram.org/bot{token}/sendMessage"
            async with session.post(url, json=payload) as resp:
                if resp.status == 200:
                    logger.info("Telegram alert sent")
                    return True
                body = await resp.text()
                logger.error(f"Telegram API {resp.status}: {body[:200]}")
                return False
    except Exception as e:
        logger.error(f"Telegram failed: {e}")
        return False
