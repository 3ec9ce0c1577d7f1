import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from config import Settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    pass


class SMTPMailer:
    """Send plain-text email through an SMTP relay."""

    def __init__(
        self,
        server: str,
        port: int,
        from_email: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.server = server
        self.port = port
        self.from_email = from_email
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, recipient: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def send(self, recipient: str, subject: str, body: str) -> None:
        msg = self.build_message(recipient, subject, body)
        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"Failed to send email to {recipient}: {exc}") from exc
        logger.info("Email sent to %s: %s", recipient, subject)


class LogMailer:
    """Stand-in used when outbound email is switched off."""

    def send(self, recipient: str, subject: str, body: str) -> None:
        logger.info("Email delivery disabled; would send %r to %s", subject, recipient)


def mailer_from_settings(settings: Settings):
    if not settings.send_emails:
        return LogMailer()
    return SMTPMailer(
        server=settings.smtp_server,
        port=settings.smtp_port,
        from_email=settings.from_email,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
    )
