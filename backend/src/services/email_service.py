"""
Email transport for outbox notifications.

SMTPEmailSender delivers through a configured SMTP server; when SMTP is not
configured (local development, tests) LoggingEmailSender writes the message
to the log instead. Both raise on failure so the outbox records the attempt.
"""

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Optional

from core.config import (
    EMAIL_FROM,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
)
from core.constants import SMTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    """Rendered notification ready for transport."""
    to: str
    subject: str
    body: str
    outbox_entry_id: Optional[int] = None


class EmailDeliveryError(Exception):
    """Raised when a message cannot be handed to the transport."""
    pass


class SMTPEmailSender:
    """Send plain-text email over SMTP (SSL on port 465, STARTTLS otherwise)."""

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        username: str = SMTP_USERNAME,
        password: str = SMTP_PASSWORD,
        use_tls: bool = SMTP_USE_TLS,
        from_address: str = EMAIL_FROM,
        timeout: float = SMTP_TIMEOUT_SECONDS,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    def send(self, message: EmailMessage) -> None:
        """
        Send one message.

        Raises:
            EmailDeliveryError: On any SMTP or network failure, including timeouts
        """
        msg = MIMEText(message.body, "plain", "utf-8")
        msg["Subject"] = message.subject
        msg["From"] = self.from_address
        msg["To"] = message.to

        try:
            if self.port == 465:
                context = ssl.create_default_context()
                server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
            try:
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(self.from_address, [message.to], msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP delivery to {message.to} failed: {e}") from e

        logger.info(f"Email sent to {message.to} (outbox entry {message.outbox_entry_id})")


class LoggingEmailSender:
    """Development sender: logs the message instead of sending it."""

    def send(self, message: EmailMessage) -> None:
        logger.info(
            f"[email] to={message.to} subject={message.subject!r} "
            f"(outbox entry {message.outbox_entry_id})\n{message.body}"
        )


def get_email_sender():
    """Sender for the current configuration."""
    if SMTP_HOST:
        return SMTPEmailSender()
    logger.info("SMTP_HOST not configured, notifications will be logged only")
    return LoggingEmailSender()
