"""
Notification Tests

Fire-and-forget dispatch, template rendering and the Resend client.

Run with: pytest tests/test_notifications.py -v
"""

import asyncio
import logging
from unittest.mock import MagicMock

import pytest
import resend

from email_integration import EmailClient, EmailMessage, EmailResult, EmailSender, EmailStatus, EmailTemplate
from identity.notifications import NotificationDispatcher


class TestNotificationDispatcher:
    """Dispatch never blocks or fails the caller."""

    @pytest.mark.asyncio
    async def test_confirmation_link(self, notifier, sender):
        notifier.send_email_confirmation("alice@x.com", "Alice", "abc123")
        await notifier.drain()

        assert sender.sent == [{
            "to": "alice@x.com",
            "template": "email_confirmation",
            "variables": {
                "full_name": "Alice",
                "confirmation_url": "https://hr.example.com/confirm?token=abc123",
            },
        }]

    @pytest.mark.asyncio
    async def test_reset_link(self, notifier, sender):
        notifier.send_password_reset("alice@x.com", "Alice", "abc123")
        await notifier.drain()

        assert sender.sent[0]["variables"]["reset_url"] == "https://hr.example.com/reset-password?token=abc123"

    def test_link_trims_trailing_slash(self, sender):
        dispatcher = NotificationDispatcher(sender, frontend_url="https://hr.example.com/")

        assert dispatcher.link("/admin/approvals") == "https://hr.example.com/admin/approvals"

    @pytest.mark.asyncio
    async def test_submit_does_not_wait(self, notifier):
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return EmailResult(success=True, status=EmailStatus.SENT)

        notifier.submit("slow", slow())
        assert notifier.pending == 1

        release.set()
        await notifier.drain()
        assert notifier.pending == 0

    @pytest.mark.asyncio
    async def test_exception_is_logged(self, notifier, caplog):
        caplog.set_level(logging.ERROR)

        async def broken():
            raise ConnectionError("smtp down")

        notifier.submit("broken", broken())
        await notifier.drain()

        assert "Notification 'broken' failed: smtp down" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_result_is_logged(self, notifier, sender, caplog):
        sender.fail_for.add("alice@x.com")
        caplog.set_level(logging.ERROR)

        notifier.send_password_reset("alice@x.com", "Alice", "abc123")
        await notifier.drain()

        assert "rejected by provider" in caplog.text


class TestEmailSender:
    """Templates render with the product name and reach the client."""

    @pytest.fixture
    def client(self):
        client = MagicMock(spec=EmailClient)
        client.send_email.return_value = EmailResult(success=True, message_id="m1", status=EmailStatus.SENT)
        return client

    def test_default_templates(self, client):
        sender = EmailSender(client=client)

        assert set(sender.list_templates()) == {t.value for t in EmailTemplate}

    def test_render(self, client):
        sender = EmailSender(client=client, product_name="Acme HR")

        rendered = sender.render_template("password_reset", {
            "full_name": "Alice",
            "reset_url": "https://hr.example.com/reset-password?token=abc",
        })

        assert rendered["subject"] == "Reset Your Password - Acme HR"
        assert "Hi Alice," in rendered["body"]
        assert 'href="https://hr.example.com/reset-password?token=abc"' in rendered["body"]

    def test_render_missing_variable(self, client):
        sender = EmailSender(client=client)

        assert sender.render_template("password_reset", {"full_name": "Alice"}) is None

    @pytest.mark.asyncio
    async def test_send_from_template(self, client):
        sender = EmailSender(client=client)

        result = await sender.send_from_template("admin@hrcorp.com", EmailTemplate.APPROVAL_NOTIFICATION, {
            "employee_name": "Alice",
            "employee_email": "alice@x.com",
            "review_url": "https://hr.example.com/admin/approvals",
        })

        assert result.success
        message = client.send_email.call_args.args[0]
        assert isinstance(message, EmailMessage)
        assert message.to == "admin@hrcorp.com"
        assert message.message_type == "approval_notification"
        assert "alice@x.com" in message.body

    @pytest.mark.asyncio
    async def test_unknown_template(self, client):
        result = await EmailSender(client=client).send_from_template("alice@x.com", "welcome", {})

        assert result.success is False
        assert result.status == EmailStatus.FAILED
        client.send_email.assert_not_called()


class TestEmailClient:
    """Resend client configuration and send."""

    @pytest.fixture(autouse=True)
    def isolate_resend(self, monkeypatch):
        monkeypatch.setattr(resend, "api_key", None)

    def test_not_configured(self):
        client = EmailClient()

        result = client.send_email(EmailMessage(to="alice@x.com", subject="Hi", body="<p>Hi</p>"))

        assert client.is_ready() is False
        assert result.success is False
        assert result.status == EmailStatus.FAILED
        assert client.get_status()["api_key_set"] is False

    def test_send(self, monkeypatch):
        sent = []
        monkeypatch.setattr(resend.Emails, "send", lambda params: sent.append(params) or {"id": "re_123"})
        client = EmailClient(api_key="re_test_key", from_address="hr@hrcorp.com")

        result = client.send_email(EmailMessage(
            to="alice@x.com",
            subject="Confirm",
            body="<p>Confirm</p>",
            message_type="email_confirmation",
        ))

        assert result.success is True
        assert result.provider_message_id == "re_123"
        assert sent[0]["from"] == "hr@hrcorp.com"
        assert sent[0]["to"] == ["alice@x.com"]
        assert sent[0]["html"] == "<p>Confirm</p>"
        assert sent[0]["headers"]["X-HR-Message-Type"] == "email_confirmation"
