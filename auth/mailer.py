"""
auth/mailer.py -- Outgoing email for confirmation, reset, and invite links.

AuthService depends only on the Mailer protocol (send(to, subject, body)).
build_mailer() picks the transport from settings:

  SMTP_HOST set   -> SmtpMailer (smtplib, optional STARTTLS + login)
  SMTP_HOST empty -> LogMailer (writes the message to the log; local dev)

Delivery failures propagate as smtplib.SMTPException / OSError. The caller
decides whether to retry -- there is no internal retry loop.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("coursehub.mail")


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class SmtpMailer:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("Email sent to %s: %s", to, subject)


class LogMailer:
    """Development transport. The body contains live link tokens -- never use in production."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Email (not sent, SMTP_HOST unset) to=%s subject=%r\n%s", to, subject, body)


def build_mailer(settings: Settings) -> Mailer:
    if settings.smtp_host:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.mail_sender,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    if not settings.debug:
        logger.warning("SMTP_HOST is not set -- outgoing email will only be logged")
    return LogMailer()


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------


def confirmation_email(link: str) -> tuple[str, str]:
    return (
        "Confirm your CourseHub account",
        f"Welcome to CourseHub!\n\nConfirm your email address by opening the link below:\n\n{link}\n\n"
        "If you did not sign up, you can ignore this message.\n",
    )


def reset_email(link: str) -> tuple[str, str]:
    return (
        "Reset your CourseHub password",
        f"A password reset was requested for your account.\n\nChoose a new password here:\n\n{link}\n\n"
        "If you did not request this, you can ignore this message. Your password is unchanged.\n",
    )


def reset_unknown_email() -> tuple[str, str]:
    # Sent when a reset is requested for an address with no account, so the
    # requester sees the same outcome (one email) either way.
    return (
        "Reset your CourseHub password",
        "A password reset was requested for this email address, but no CourseHub account uses it.\n\n"
        "If you did not request this, you can ignore this message.\n",
    )


def invite_email(link: str) -> tuple[str, str]:
    return (
        "You're invited to teach on CourseHub",
        f"An administrator has invited you to join CourseHub as an instructor.\n\n"
        f"Accept the invite and choose a password here:\n\n{link}\n",
    )
