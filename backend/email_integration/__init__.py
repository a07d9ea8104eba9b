"""
Email Integration Module

Transactional email for the identity lifecycle using Resend as the provider.

Features:
- Email sending via Resend API
- Template rendering with {variable} placeholders
- Confirmation, password reset and admin approval notification templates
"""

from .email_client import EmailClient, EmailResult, EmailMessage, EmailStatus
from .email_sender import EmailSender, EmailTemplate

__all__ = [
    # Client
    'EmailClient',
    'EmailResult',
    'EmailMessage',
    'EmailStatus',
    # Sender
    'EmailSender',
    'EmailTemplate',
]
