"""
Account Email Sender

Renders and sends the account emails triggered by the auth flows:
- password reset link (forgot-password)
- welcome message (local registration)

Delivery failures are logged and reported through EmailResult; they never
fail the request that triggered them.
"""

import logging
from datetime import datetime, timezone
from html import escape
from typing import Optional
from urllib.parse import urlencode

from config import get_settings
from services.email_client import EmailClient, EmailMessage, EmailResult

logger = logging.getLogger(__name__)

BRAND = "Anvogue"
SUPPORT_ADDRESS = "support@anvogue.com"

PASSWORD_RESET_SUBJECT = f"Reset Your Password - {BRAND}"
WELCOME_SUBJECT = f"Welcome to {BRAND}!"

_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; background-color: #f5f5f5;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #333;">{title}</h1>
    <p>Hi {name},</p>
    {content}
    <p style="color: #666;">Need help? Contact us at {support}</p>
    <p style="text-align: center; color: #999; font-size: 12px;">&copy; {year} {brand}. All rights reserved.</p>
  </div>
</body>
</html>
"""


def _button(href: str, label: str) -> str:
    return (
        f'<p style="text-align: center; margin: 30px 0;">'
        f'<a href="{escape(href)}" style="background: #667eea; color: white; padding: 14px 30px; '
        f'text-decoration: none; border-radius: 8px;">{label}</a></p>'
    )


def render(title: str, name: str, content: str) -> str:
    return _LAYOUT.format(
        title=title,
        name=escape(name or "there"),
        content=content,
        support=SUPPORT_ADDRESS,
        year=datetime.now(timezone.utc).year,
        brand=BRAND,
    )


class AccountEmailSender:
    """Builds account emails and hands them to the EmailClient."""

    def __init__(self, client: Optional[EmailClient] = None, frontend_url: Optional[str] = None):
        settings = get_settings()
        self.client = client or EmailClient()
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")
        self.reset_expire_minutes = settings.PASSWORD_RESET_EXPIRE_MINUTES

    def password_reset_link(self, reset_token: str) -> str:
        return f"{self.frontend_url}/reset-password?{urlencode({'token': reset_token})}"

    async def send_password_reset(self, to: str, reset_token: str, name: str) -> EmailResult:
        link = self.password_reset_link(reset_token)
        content = (
            "<p>We received a request to reset your password. "
            "Use the button below to choose a new one:</p>"
            + _button(link, "Reset Password")
            + f"<p style=\"color: #999;\">This link expires in {self.reset_expire_minutes} minutes. "
            "If you didn't request this, you can ignore this email.</p>"
            + f"<p style=\"font-size: 12px;\">If the button doesn't work, open this link: {escape(link)}</p>"
        )
        result = self.client.send_email(EmailMessage(
            to=to,
            subject=PASSWORD_RESET_SUBJECT,
            html=render("Password Reset", name, content),
            text=f"Reset your {BRAND} password: {link}",
            message_type="password_reset",
        ))
        if not result.success:
            logger.warning(f"Password reset email to {to} not sent: {result.error}")
        return result

    async def send_welcome(self, to: str, name: str) -> EmailResult:
        content = (
            f"<p>Welcome to {BRAND}! We're excited to have you on board.</p>"
            + _button(self.frontend_url, "Start Shopping")
        )
        result = self.client.send_email(EmailMessage(
            to=to,
            subject=WELCOME_SUBJECT,
            html=render(f"Welcome to {BRAND}!", name, content),
            message_type="welcome",
        ))
        if not result.success:
            logger.warning(f"Welcome email to {to} not sent: {result.error}")
        return result


_email_sender: Optional[AccountEmailSender] = None


def get_email_sender() -> AccountEmailSender:
    """Get or create the shared sender."""
    global _email_sender
    if _email_sender is None:
        _email_sender = AccountEmailSender()
    return _email_sender
