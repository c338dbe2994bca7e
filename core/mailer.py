"""
core/mailer.py -- Outbound email over SMTP.

The service sends two kinds of mail: the email-verification link after
registration and the password-reset link after a recovery request. Both go
through Mailer.send(to, subject, html_body).

Dev mode: when SMTP_HOST or SMTP_SENDER_EMAIL is empty the message is
logged (recipient redacted, link included) instead of sent, so local runs
work without a mail server.

Failures raise MailDeliveryError. Nothing is retried -- the caller decides
whether the failure is fatal for its use case.

Layer rule: core/ may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.text import MIMEText

from core.config import Settings

logger = logging.getLogger("authkeeper.mail")


class MailDeliveryError(Exception):
    """The SMTP server could not be reached or refused the message."""


def _redact(address: str) -> str:
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    """SMTP sender with STARTTLS (or implicit TLS when use_tls is False)."""

    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.smtp_sender_email,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.sender)

    def send(self, to: str, subject: str, html_body: str) -> None:
        """Deliver one HTML message. Raises MailDeliveryError on any SMTP failure."""
        if not to:
            raise MailDeliveryError("Recipient address is empty")

        if not self.is_configured:
            logger.info("Mail not configured; would send %r to %s:\n%s", subject, _redact(to), html_body)
            return

        msg = MIMEText(html_body, "html", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.sender, [to], msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.sendmail(self.sender, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send %r to %s: %s", subject, _redact(to), exc)
            raise MailDeliveryError(str(exc)) from exc

        logger.info("Sent %r to %s", subject, _redact(to))

    def send_verification_email(self, to: str, link: str) -> None:
        self.send(
            to,
            "Verify your email address",
            f"""
        <h1>Email Verification</h1>
        <p>Thanks for registering. Please click the following link to verify your email address:</p>
        <a href="{link}">Verify Email</a>
    """,
        )

    def send_password_reset_email(self, to: str, link: str) -> None:
        self.send(
            to,
            "Password Recovery",
            f"""
        <h1>Password Recovery</h1>
        <p>You have requested to reset your password. Please click the following link to reset your password:</p>
        <a href="{link}">Reset Password</a>
    """,
        )

    def _login(self, server: smtplib.SMTP) -> None:
        if self.username and self.password:
            server.login(self.username, self.password)
