"""
Outbound message delivery. The workflow only needs ``send(address, subject, body)``
reporting success or failure; email, SMS and voice are equivalent at this boundary.
Delivery is fire-and-forget: failures are logged by ``deliver`` and never raised.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from functools import lru_cache
from typing import Optional

import structlog

from app.core.config import settings

log = structlog.get_logger(__name__)


class Notifier(ABC):
    """Delivers a message to an address. Returns True on success, False on failure."""

    @abstractmethod
    async def send(self, address: str, subject: str, body: str) -> bool:
        ...


class LogNotifier(Notifier):
    """Writes the message to the log instead of delivering it (development, no SMTP configured)."""

    async def send(self, address: str, subject: str, body: str) -> bool:
        log.info("notification_logged", address=address, subject=subject, body=body)
        return True


class SmtpNotifier(Notifier):
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _send_sync(self, address: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = address
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, address: str, subject: str, body: str) -> bool:
        if "@" not in address:
            log.warning("notification_unsupported_address", address=address, subject=subject)
            return False
        try:
            await asyncio.to_thread(self._send_sync, address, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            log.error("notification_failed", address=address, subject=subject, error=str(e))
            return False
        return True


async def deliver(notifier: Notifier, address: Optional[str], subject: str, body: str) -> bool:
    """Best-effort delivery: a missing address or any notifier error is logged, never raised."""
    if not address:
        log.warning("notification_skipped_no_address", subject=subject)
        return False
    try:
        ok = await notifier.send(address, subject, body)
    except Exception as e:  # noqa: BLE001
        log.error("notification_failed", address=address, subject=subject, error=str(e))
        return False
    if not ok:
        log.error("notification_not_delivered", address=address, subject=subject)
    return ok


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    """FastAPI dependency: the configured notifier (overridden in tests)."""
    if settings.notifier_backend == "smtp" and settings.smtp_host:
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.mail_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    return LogNotifier()
