"""
Email Sender - Identity email templates

Renders the confirmation, password reset and admin approval emails and
hands them to the provider client. The provider call is blocking, so it runs
in a worker thread and never stalls the event loop.
"""

import asyncio
import logging
import string
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

from .email_client import EmailClient, EmailMessage, EmailResult, EmailStatus

logger = logging.getLogger(__name__)


class EmailTemplate(str, Enum):
    EMAIL_CONFIRMATION = "email_confirmation"
    PASSWORD_RESET = "password_reset"
    APPROVAL_NOTIFICATION = "approval_notification"


@dataclass(frozen=True)
class Template:
    subject: str
    body: str

    @property
    def variables(self) -> set:
        """Placeholder names used by subject and body"""
        formatter = string.Formatter()
        return {
            name
            for text in (self.subject, self.body)
            for _, name, _, _ in formatter.parse(text)
            if name
        }


_LAYOUT = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
    "{content}"
    "<p>{{product_name}}</p>"
    "</div>"
)

_BUTTON = (
    '<p style="text-align: center; margin: 30px 0;">'
    '<a href="{{{url}}}" style="background: {color}; color: white; padding: 12px 24px; '
    'text-decoration: none; border-radius: 5px;">{label}</a></p>'
)

DEFAULT_TEMPLATES: Dict[str, Template] = {
    EmailTemplate.EMAIL_CONFIRMATION.value: Template(
        subject="Confirm Your Email - {product_name}",
        body=_LAYOUT.format(content=(
            "<h2>Confirm your email address</h2>"
            "<p>Hi {full_name},</p>"
            "<p>Thanks for registering. Please confirm your email address to continue.</p>"
            + _BUTTON.format(url="confirmation_url", color="#007bff", label="Confirm Email")
            + "<p>This link expires in 1 hour. Once confirmed, an administrator will review "
            "your registration.</p>"
        )),
    ),
    EmailTemplate.PASSWORD_RESET.value: Template(
        subject="Reset Your Password - {product_name}",
        body=_LAYOUT.format(content=(
            "<h2>Password reset</h2>"
            "<p>Hi {full_name},</p>"
            "<p>We received a request to reset your password.</p>"
            + _BUTTON.format(url="reset_url", color="#dc3545", label="Reset Password")
            + "<p>This link expires in 10 minutes. If you did not ask for a reset, ignore this email.</p>"
        )),
    ),
    EmailTemplate.APPROVAL_NOTIFICATION.value: Template(
        subject="New Employee Registration - Review Required",
        body=_LAYOUT.format(content=(
            "<h2>New employee registration</h2>"
            "<p>A new employee is waiting for approval:</p>"
            "<p><strong>Name:</strong> {employee_name}<br>"
            "<strong>Email:</strong> {employee_email}</p>"
            + _BUTTON.format(url="review_url", color="#ffc107", label="Review Registrations")
        )),
    ),
}


class EmailSender:
    """Templated email sending on top of an EmailClient."""

    def __init__(self, client: Optional[EmailClient] = None, product_name: str = "HR Management System"):
        self.client = client or EmailClient()
        self.product_name = product_name
        self._templates: Dict[str, Template] = dict(DEFAULT_TEMPLATES)

    def is_ready(self) -> bool:
        return self.client.is_ready()

    # ==================== TEMPLATES ====================

    def register_template(self, template_id: str, subject: str, body: str) -> None:
        """Add or replace a template; placeholders use str.format syntax."""
        self._templates[template_id] = Template(subject=subject, body=body)

    def get_template(self, template_id: str) -> Optional[Template]:
        return self._templates.get(template_id)

    def list_templates(self) -> List[str]:
        return list(self._templates)

    def render_template(self, template_id: str, variables: Dict[str, str]) -> Optional[Dict[str, str]]:
        """
        Render subject and body.

        Returns None when the template is unknown or a placeholder has no value.
        """
        template = self.get_template(template_id)
        if template is None:
            return None

        values = {"product_name": self.product_name, **variables}
        missing = template.variables - values.keys()
        if missing:
            logger.error(f"Template '{template_id}' is missing variables: {sorted(missing)}")
            return None

        return {
            "subject": template.subject.format(**values),
            "body": template.body.format(**values),
        }

    # ==================== SENDING ====================

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        message_type: str = "custom",
        template_id: Optional[str] = None,
    ) -> EmailResult:
        message = EmailMessage(
            to=to,
            subject=subject,
            body=body,
            message_type=message_type,
            template_id=template_id,
        )
        return await asyncio.to_thread(self.client.send_email, message)

    async def send_from_template(
        self,
        to: str,
        template_id: Union[EmailTemplate, str],
        variables: Dict[str, str],
    ) -> EmailResult:
        """Render a template and send it to one recipient."""
        template_id = template_id.value if isinstance(template_id, EmailTemplate) else template_id

        rendered = self.render_template(template_id, variables)
        if rendered is None:
            reason = "not found" if self.get_template(template_id) is None else "missing variables"
            return EmailResult(
                success=False,
                error=f"Cannot render template '{template_id}': {reason}",
                status=EmailStatus.FAILED,
            )

        return await self.send(
            to=to,
            subject=rendered["subject"],
            body=rendered["body"],
            message_type=template_id,
            template_id=template_id,
        )
