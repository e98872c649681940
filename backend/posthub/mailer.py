"""Outbound account emails: activation and email-change confirmation."""
from __future__ import annotations

import asyncio
import smtplib
import ssl
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import urlencode

from .config import Settings
from .logging import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    """Raised when the SMTP server refuses or drops a message."""


class EmailService:
    """Sends account emails over SMTP.

    When no SMTP host is configured the message is logged instead of sent,
    which is what development and test environments rely on.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "PostHub",
        base_url: str = "http://localhost:8000",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            base_url=settings.app_url,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _link(self, path: str, token: str) -> str:
        return f"{self.base_url}{path}?{urlencode({'token': token})}"

    async def send_activation_email(self, to_email: str, username: str, token: str) -> None:
        url = self._link("/auth/activate", token)
        year = datetime.now(timezone.utc).year
        subject = "Activate Your Account"
        text_body = f"""Hello, {username}!

Thank you for registering. Please activate your account by visiting this link:

{url}

This link will expire in 24 hours.
If you don't activate within 24 hours, your account will be automatically deleted and you'll need to register again.

If you didn't create an account, please ignore this email.

(c) {year} PostHub. All rights reserved.
"""
        html_body = f"""<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <h1 style="background-color: #4CAF50; color: white; padding: 20px; text-align: center;">Welcome to PostHub!</h1>
      <h2>Hello, {username}!</h2>
      <p>Thank you for registering. Please activate your account by clicking the link below:</p>
      <p style="text-align: center;"><a href="{url}">Activate Account</a></p>
      <p style="word-break: break-all; color: #4CAF50;">{url}</p>
      <p><strong>This link will expire in 24 hours.</strong></p>
      <p><strong>If you don't activate within 24 hours, your account will be automatically deleted and you'll need to register again.</strong></p>
      <p>If you didn't create an account, please ignore this email.</p>
      <p style="text-align: center; font-size: 12px; color: #666;">&copy; {year} PostHub. All rights reserved.</p>
    </div>
  </body>
</html>
"""
        await self.send(to_email, subject, html_body, text_body)

    async def send_email_change_verification(
        self, to_email: str, username: str, token: str
    ) -> None:
        url = self._link("/auth/update-email", token)
        subject = "Confirm Your New Email Address"
        text_body = f"""Hello, {username}!

You asked to change the email address on your PostHub account to this one.
Confirm the change by visiting this link:

{url}

This link will expire in 1 hour. If you didn't request this change, ignore this email.
"""
        html_body = f"""<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2>Hello, {username}!</h2>
      <p>You asked to change the email address on your PostHub account to this one.</p>
      <p style="text-align: center;"><a href="{url}">Confirm Email</a></p>
      <p style="word-break: break-all;">{url}</p>
      <p><strong>This link will expire in 1 hour.</strong></p>
      <p>If you didn't request this change, ignore this email.</p>
    </div>
  </body>
</html>
"""
        await self.send(to_email, subject, html_body, text_body)

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> None:
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                recipient_email=to_email,
                subject=subject,
                body_preview=(text_body or html_body)[:200],
            )
            return
        await asyncio.to_thread(self._deliver, to_email, subject, html_body, text_body)

    def _deliver(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str],
    ) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("email_send_failed", recipient_email=to_email, subject=subject, error=str(exc))
            raise EmailDeliveryError(f"could not deliver {subject!r}") from exc

        logger.info("email_sent", recipient_email=to_email, subject=subject)
