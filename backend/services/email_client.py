"""
Email Client - Resend Provider

Sends transactional email through the Resend API.

Resend API Reference:
- Endpoint: POST https://api.resend.com/emails
- Auth: Bearer token (EMAIL_API_KEY)
- Response: { id: "message_id" }
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import resend

from config import get_settings

logger = logging.getLogger(__name__)


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class EmailResult:
    """Result of one send attempt"""
    success: bool
    message_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    status: EmailStatus = EmailStatus.PENDING


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: Optional[str] = None
    message_type: str = "custom"


class EmailClient:
    """
    Thin wrapper over the Resend SDK.

    Without an API key and sender address the client stays unconfigured and
    every send returns a failed EmailResult instead of raising.
    """

    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.EMAIL_API_KEY
        self.from_address = from_address if from_address is not None else settings.EMAIL_FROM_ADDRESS

        if self.api_key:
            resend.api_key = self.api_key
            logger.info("Email client initialized (provider: resend)")
        else:
            logger.warning("Email client not initialized - EMAIL_API_KEY not set")

    def is_ready(self) -> bool:
        return bool(self.api_key and self.from_address)

    def send_email(self, message: EmailMessage) -> EmailResult:
        if not self.is_ready():
            return EmailResult(
                success=False,
                error="Email client not configured. Check EMAIL_API_KEY and EMAIL_FROM_ADDRESS.",
                status=EmailStatus.FAILED
            )

        internal_id = str(uuid.uuid4())
        params: Dict[str, Any] = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "headers": {
                "X-Anvogue-Message-ID": internal_id,
                "X-Anvogue-Message-Type": message.message_type,
            },
        }
        if message.text:
            params["text"] = message.text

        try:
            logger.info(f"Sending {message.message_type} email to {message.to} via Resend")
            response = resend.Emails.send(params)
        except resend.exceptions.ResendError as e:
            logger.error(f"Resend API error: {e}")
            return EmailResult(
                success=False,
                message_id=internal_id,
                error=str(e),
                status=EmailStatus.FAILED
            )
        except Exception as e:
            # Transport failures (DNS, TLS, timeouts) surface from the SDK's HTTP layer
            logger.error(f"Unexpected error sending email: {e}", exc_info=True)
            return EmailResult(
                success=False,
                message_id=internal_id,
                error=f"Unexpected error sending email: {e}",
                status=EmailStatus.FAILED
            )

        provider_msg_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info(f"Email sent: {provider_msg_id}")
        return EmailResult(
            success=True,
            message_id=internal_id,
            provider_message_id=provider_msg_id,
            status=EmailStatus.SENT
        )
