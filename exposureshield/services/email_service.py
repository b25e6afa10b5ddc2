"""Transactional email (verification and password reset links).

Sends go through ``schedule_email`` so request handlers never wait on SMTP.
Pending sends are drained on shutdown by ``await_pending_emails``.
"""

import asyncio
from email.message import EmailMessage
from typing import Any, Coroutine
from urllib.parse import urlencode

import aiosmtplib
import structlog

from exposureshield.config import Settings

logger = structlog.get_logger(__name__)

# Background send tasks, kept referenced until they finish
_pending_tasks: set[asyncio.Task] = set()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background_email_failed", error=str(exc))


def schedule_email(coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    """Run an email send in the background.

    The caller does not observe the result; failures are only logged.

    Args:
        coro: Coroutine performing the send

    Returns:
        The created asyncio Task
    """
    task = asyncio.create_task(coro)
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
    task.add_done_callback(_log_task_failure)
    return task


async def await_pending_emails(timeout: float = 5.0) -> None:
    """Wait for background sends to complete.

    Called during application shutdown.

    Args:
        timeout: Maximum seconds to wait
    """
    loop = asyncio.get_running_loop()
    tasks = [task for task in _pending_tasks if task.get_loop() is loop]
    if not tasks:
        return

    logger.info("draining_pending_emails", count=len(tasks))
    try:
        await asyncio.wait_for(
            asyncio.gather(*tasks, return_exceptions=True),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "pending_emails_timeout",
            remaining=sum(1 for task in tasks if not task.done()),
            timeout=timeout,
        )


class EmailService:
    """Builds and delivers account emails over SMTP."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _link(self, path: str, **params: str) -> str:
        return f"{self.settings.app_url.rstrip('/')}/{path.lstrip('/')}?{urlencode(params)}"

    async def send_verification_email(self, to_email: str, raw_token: str) -> bool:
        """Send the email-verification link."""
        link = self._link("verify-email", token=raw_token, email=to_email)
        hours = max(1, self.settings.verification_token_ttl_seconds // 3600)
        body = (
            "Welcome to ExposureShield,\n\n"
            "Please verify your account by opening the link below:\n\n"
            f"{link}\n\n"
            f"This link expires in {hours} hours."
        )
        return await self.send(to_email, "Verify your ExposureShield account", body)

    async def send_password_reset_email(self, to_email: str, raw_token: str) -> bool:
        """Send the password-reset link."""
        link = self._link("reset-password", token=raw_token)
        minutes = max(1, self.settings.reset_token_ttl_seconds // 60)
        body = (
            "We received a request to reset your ExposureShield password.\n\n"
            f"Open the link below to choose a new password:\n\n{link}\n\n"
            f"This link expires in {minutes} minutes. If you did not request "
            "a reset, you can ignore this email."
        )
        return await self.send(to_email, "Reset your ExposureShield password", body)

    async def send(self, to_email: str, subject: str, body: str) -> bool:
        """Deliver a plain-text email.

        Returns True on success, False on failure. When email is disabled the
        message is logged (without its body) and counted as sent.
        """
        settings = self.settings

        if not settings.email_enabled:
            logger.info("email_delivery_disabled", to=to_email, subject=subject)
            return True

        message = EmailMessage()
        message["From"] = settings.email_from
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                use_tls=settings.smtp_use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", to=to_email, subject=subject, error=str(e))
            return False

        logger.info("email_sent", to=to_email, subject=subject)
        return True
