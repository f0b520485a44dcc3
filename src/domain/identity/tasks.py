from typing import Any, ClassVar

from arq import Retry
from arq.connections import RedisSettings
from loguru import logger

from src.config.settings import settings
from src.core.email import EMAIL_QUEUE_NAME, EmailSender
from src.core.logger import configure_logging

MAX_EMAIL_TRIES = 5


async def send_email_task(ctx: dict[Any, Any], to: str, subject: str, body: str, is_html: bool = False) -> dict[str, Any]:
    """Delivers one queued email, retrying with linear backoff.

    Args:
        ctx: arq job context.
        to: Recipient address.
        subject: Subject line.
        body: Rendered body.
        is_html: Whether ``body`` is HTML.

    Returns:
        dict[str, Any]: Delivery summary, or a give-up marker after the last try.

    Raises:
        Retry: When delivery failed and tries remain.
    """
    job_try = ctx.get("job_try", 1)
    sender: EmailSender = ctx.get("email_sender") or EmailSender()

    if await sender.send(to, subject, body, is_html):
        return {"status": "sent", "to": to, "tries": job_try}

    if job_try >= MAX_EMAIL_TRIES:
        logger.critical(f"Giving up on email '{subject}' to {to} after {job_try} tries")
        return {"status": "failed", "to": to, "tries": job_try}

    raise Retry(defer=job_try * 30)


class WorkerSettings:
    functions: ClassVar[list[Any]] = [send_email_task]
    redis_settings: ClassVar[Any] = RedisSettings.from_dsn(settings.REDIS_URL)
    queue_name: ClassVar[str] = EMAIL_QUEUE_NAME
    health_check_key: ClassVar[str] = "arq:worker:email"
    max_tries: ClassVar[int] = MAX_EMAIL_TRIES

    @staticmethod
    async def on_startup(ctx: dict[Any, Any]) -> None:
        configure_logging()
        ctx["email_sender"] = EmailSender()
        logger.info("Email worker started")

    @staticmethod
    async def on_shutdown(ctx: dict[Any, Any]) -> None:
        logger.info("Email worker stopped")
