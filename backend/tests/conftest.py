"""
Shared fixtures for the identity test suite.

Services run against the in-memory store, a controllable clock and a fake
email sender that records what would have been sent.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from email_integration import EmailResult, EmailStatus
from identity.models import ApprovalStatus, Role
from identity.notifications import NotificationDispatcher
from identity.passwords import PasswordHasher
from identity.service import IdentityService
from identity.store import InMemoryIdentityStore
from identity.tokens import TokenCodec

TEST_SECRET = "test-access-secret-key-0123456789abcdef"
TEST_REFRESH_SECRET = "test-refresh-secret-key-0123456789abcdef"
FRONTEND_URL = "https://hr.example.com"


class FakeClock:
    """Mutable clock; call it to read the time."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeEmailSender:
    """Records templated sends instead of calling a provider."""

    def __init__(self):
        self.sent: List[Dict] = []
        self.fail_for: set = set()
        self.raise_for: set = set()

    async def send_from_template(self, to, template_id, variables):
        template_id = getattr(template_id, "value", template_id)
        if to in self.raise_for:
            raise ConnectionError(f"provider unreachable for {to}")
        self.sent.append({"to": to, "template": template_id, "variables": dict(variables)})
        if to in self.fail_for:
            return EmailResult(success=False, error="rejected by provider", status=EmailStatus.FAILED)
        return EmailResult(success=True, message_id="msg-1", status=EmailStatus.SENT)

    def of_template(self, template_id: str) -> List[Dict]:
        return [m for m in self.sent if m["template"] == template_id]

    def token_sent_to(self, email: str, template_id: str = "email_confirmation") -> str:
        """Token embedded in the latest link of the given kind sent to email."""
        messages = [m for m in self.of_template(template_id) if m["to"] == email]
        assert messages, f"no {template_id} email sent to {email}"
        variables = messages[-1]["variables"]
        url = variables.get("confirmation_url") or variables.get("reset_url")
        return url.split("token=", 1)[1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryIdentityStore()


@pytest.fixture
def sender():
    return FakeEmailSender()


@pytest.fixture
def notifier(sender):
    return NotificationDispatcher(sender, frontend_url=FRONTEND_URL)


@pytest.fixture
def codec(clock):
    return TokenCodec(
        secret_key=TEST_SECRET,
        refresh_secret_key=TEST_REFRESH_SECRET,
        clock=clock,
    )


@pytest.fixture
def hasher():
    # Minimum bcrypt cost keeps the suite fast
    return PasswordHasher(rounds=4)


@pytest.fixture
def service(store, codec, notifier, hasher, clock):
    return IdentityService(store=store, codec=codec, notifier=notifier, hasher=hasher, clock=clock)


class AccountHelper:
    """Drives accounts through the lifecycle for tests that need a starting state."""

    def __init__(self, service: IdentityService, store: InMemoryIdentityStore, sender: FakeEmailSender):
        self.service = service
        self.store = store
        self.sender = sender

    async def approve(self, credential_id: str, status: ApprovalStatus = ApprovalStatus.ACTIVE) -> None:
        """Stand-in for the admin approval workflow."""
        await self.store.update_profile(credential_id, approval_status=status)

    async def register_verified(self, email: str, password: str = "secret123",
                                role: Role = Role.EMPLOYEE, full_name: str = "Test User"):
        """Sign up and confirm the email; returns the confirmation result."""
        await self.service.sign_up(email, password, full_name, role)
        await self.service.notifier.drain()
        return await self.service.confirm_email(self.sender.token_sent_to(email))

    async def register_active(self, email: str, password: str = "secret123"):
        """Verified and approved employee, ready to sign in."""
        confirmed = await self.register_verified(email, password)
        await self.approve(confirmed.user.id)
        return confirmed.user


@pytest.fixture
def accounts(service, store, sender):
    return AccountHelper(service, store, sender)
