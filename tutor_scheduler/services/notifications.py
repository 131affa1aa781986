"""
Notification dispatcher
Sends booking e-mails through Resend. Failures are reported, not raised.
"""
import asyncio
import logging
from typing import Protocol

import resend

from tutor_scheduler.core import config
from tutor_scheduler.models.scheduling import NotificationResult
from tutor_scheduler.services.email_templates import render

logger = logging.getLogger(__name__)

BOOKING_CONFIRMATION = "booking_confirmation"
BOOKING_ADMIN_NOTICE = "booking_admin_notice"


class NotificationDispatcher(Protocol):
    async def send(self, recipient: str, template_kind: str, context: dict) -> NotificationResult:
        ...


class ResendNotificationDispatcher:
    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.api_key = config.RESEND_API_KEY if api_key is None else api_key
        self.from_email = from_email or config.EMAIL_FROM
        self.timeout_seconds = config.NOTIFICATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    def _send_sync(self, email_data: dict) -> dict:
        resend.api_key = self.api_key
        return resend.Emails.send(email_data)

    async def send(self, recipient: str, template_kind: str, context: dict) -> NotificationResult:
        if not self.api_key:
            logger.warning("RESEND_API_KEY is not set; skipping %s e-mail to %s", template_kind, recipient)
            return NotificationResult(recipient, template_kind, success=False, error="RESEND_API_KEY is not set")

        try:
            subject, html = render(template_kind, context)
            email_data = {
                "from": self.from_email,
                "to": [recipient],
                "subject": subject,
                "html": html,
            }
            response = await asyncio.wait_for(asyncio.to_thread(self._send_sync, email_data), self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Timed out sending %s e-mail to %s", template_kind, recipient)
            return NotificationResult(recipient, template_kind, success=False, error="timeout")
        except Exception as e:
            logger.error("E-mail send error (%s) to %s: %s", template_kind, recipient, e)
            return NotificationResult(recipient, template_kind, success=False, error=str(e))

        logger.info("E-mail %s sent to %s: %s", template_kind, recipient, response)
        return NotificationResult(recipient, template_kind, success=True)


notification_dispatcher = ResendNotificationDispatcher()


def get_notification_dispatcher() -> ResendNotificationDispatcher:
    return notification_dispatcher
