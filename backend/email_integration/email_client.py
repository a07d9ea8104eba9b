"""
Email Client - Resend provider

Thin synchronous wrapper over the Resend SDK. Every call returns an
EmailResult; provider errors are reported in the result, not raised.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import resend

logger = logging.getLogger(__name__)

PROVIDER = "resend"


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class EmailResult:
    """Outcome of one send attempt"""
    success: bool
    message_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    status: EmailStatus = EmailStatus.PENDING


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    from_address: Optional[str] = None
    reply_to: Optional[str] = None
    html: bool = True
    message_type: Optional[str] = None
    template_id: Optional[str] = None


class EmailClient:
    """
    Resend-backed email client.

    Usage:
        client = EmailClient(api_key=settings.EMAIL_API_KEY,
                             from_address=settings.EMAIL_FROM_ADDRESS)
        result = client.send_email(EmailMessage(to=..., subject=..., body=...))

    Without an API key and sender address the client stays usable but every
    send fails with a "not configured" result.
    """

    def __init__(self, api_key: str = "", from_address: str = ""):
        self.api_key = api_key or ""
        self.from_address = from_address or ""

        if self.api_key:
            resend.api_key = self.api_key
            logger.info(f"Email client initialized (provider: {PROVIDER})")
        else:
            logger.warning("Email client not configured - EMAIL_API_KEY not set, emails will not be sent")

    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_address)

    def is_ready(self) -> bool:
        return self.is_configured()

    def _build_params(self, message: EmailMessage, message_id: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "from": message.from_address or self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html" if message.html else "text": message.body,
            "headers": {
                "X-HR-Message-ID": message_id,
                "X-HR-Message-Type": message.message_type or "custom",
            },
        }
        if message.reply_to:
            params["reply_to"] = [message.reply_to]
        return params

    def send_email(self, message: EmailMessage) -> EmailResult:
        """Send one message; blocking network call."""
        if not self.is_ready():
            return EmailResult(
                success=False,
                error="Email client not configured. Check EMAIL_API_KEY and EMAIL_FROM_ADDRESS.",
                status=EmailStatus.FAILED,
            )

        message_id = str(uuid.uuid4())
        try:
            logger.info(f"Sending {message.message_type or 'custom'} email to {message.to}")
            response = resend.Emails.send(self._build_params(message, message_id))
        except resend.exceptions.ResendError as e:
            logger.error(f"Resend API error for {message.to}: {e}")
            return EmailResult(success=False, message_id=message_id, error=str(e), status=EmailStatus.FAILED)

        provider_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info(f"Email {message_id} accepted by provider: {provider_id}")
        return EmailResult(
            success=True,
            message_id=message_id,
            provider_message_id=provider_id,
            status=EmailStatus.SENT,
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "provider": PROVIDER,
            "configured": self.is_configured(),
            "from_address": self.from_address or "Not set",
            "api_key_set": bool(self.api_key),
        }
