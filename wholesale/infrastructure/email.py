import httpx
from functools import lru_cache
from typing import Optional
from shared.core import get_logger
from wholesale.core_settings import get_settings
from wholesale.application.errors import NotificationError
from wholesale.application.notifications import (
    InvoiceEmail,
    InvoiceReminder,
    NotificationDispatcher,
    render_invoice_email,
    render_invoice_reminder,
)

logger = get_logger(__name__)


class HttpEmailDispatcher:
    """Sends mail through a Resend-compatible JSON API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    def _send(self, to: str, subject: str, html: str) -> None:
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationError(
                f"Email provider rejected message: {exc.response.status_code} {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationError(f"Email provider unreachable: {exc}") from exc
        logger.info(f"Email sent: {subject}", extra={'extra_fields': {'to': to}})

    def send_invoice_email(self, message: InvoiceEmail) -> None:
        subject, html = render_invoice_email(message)
        self._send(message.to, subject, html)

    def send_invoice_reminder(self, message: InvoiceReminder) -> None:
        subject, html = render_invoice_reminder(message)
        self._send(message.to, subject, html)


class LoggingEmailDispatcher:
    """Used when no email API key is configured: logs instead of sending."""

    def send_invoice_email(self, message: InvoiceEmail) -> None:
        subject, _ = render_invoice_email(message)
        logger.warning(f"Email delivery disabled, not sending: {subject}", extra={'extra_fields': {'to': message.to}})

    def send_invoice_reminder(self, message: InvoiceReminder) -> None:
        subject, _ = render_invoice_reminder(message)
        logger.warning(f"Email delivery disabled, not sending: {subject}", extra={'extra_fields': {'to': message.to}})


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    if not settings.EMAIL_API_KEY:
        return LoggingEmailDispatcher()
    return HttpEmailDispatcher(
        api_url=settings.EMAIL_API_URL,
        api_key=settings.EMAIL_API_KEY,
        sender=settings.EMAIL_FROM,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )
