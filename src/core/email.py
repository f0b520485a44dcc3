from typing import Any

import httpx
from arq.connections import ArqRedis
from loguru import logger

from src.config.settings import settings

EMAIL_QUEUE_NAME = "email_queue"


class EmailSender:
    """Best-effort delivery through an HTTP email API.

    Without ``EMAIL_API_URL`` the message is only written to the log, which
    is what local development runs with.
    """

    async def send(self, to: str, subject: str, body: str, is_html: bool = False) -> bool:
        if not settings.EMAIL_API_URL:
            logger.info(f"Email delivery not configured. Would send '{subject}' to {to}")
            return True

        payload: dict[str, Any] = {"from": settings.EMAIL_FROM, "to": [to], "subject": subject}
        payload["html" if is_html else "text"] = body
        headers = {"Authorization": f"Bearer {settings.EMAIL_API_KEY}"} if settings.EMAIL_API_KEY else {}

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.post(settings.EMAIL_API_URL, json=payload, headers=headers)
                resp.raise_for_status()
            logger.info(f"Email '{subject}' delivered to {to}")
            return True
        except Exception as e:
            logger.error(f"Email delivery to {to} failed: {e}")
            return False


class EmailDispatcher:
    """Hands emails to the arq worker when a pool is available, otherwise sends inline."""

    def __init__(self, sender: EmailSender | None = None, arq_pool: ArqRedis | None = None) -> None:
        self.sender = sender or EmailSender()
        self.arq_pool = arq_pool

    async def dispatch(self, to: str, subject: str, body: str, is_html: bool = False) -> None:
        if self.arq_pool is not None and settings.EMAIL_QUEUE_ENABLED:
            await self.arq_pool.enqueue_job("send_email_task", to, subject, body, is_html, _queue_name=EMAIL_QUEUE_NAME)
            logger.info(f"Queued email '{subject}' for {to}")
            return

        if not await self.sender.send(to, subject, body, is_html):
            logger.warning(f"Email '{subject}' to {to} was not delivered")
