"""
Identity - Fire-and-forget Notification Dispatch

Confirmation links, reset links and admin sign-up notices are sent in
background tasks so they never delay or fail the operation that triggered
them. Each task logs its own failure.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, Set
from urllib.parse import urlencode

from email_integration import EmailSender, EmailTemplate

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Runs notification coroutines as tracked asyncio tasks.

    Tasks are kept referenced until they finish; drain() awaits whatever is
    still outstanding (shutdown hooks, tests).
    """

    def __init__(self, sender: EmailSender, frontend_url: str = "http://localhost:5173"):
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        """Schedule a side effect without awaiting it."""
        task = asyncio.create_task(self._run(name, coro), name=f"notify:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, coro: Awaitable[Any]) -> None:
        try:
            result = await coro
        except Exception as e:
            # Side effects must never surface to the caller
            logger.error(f"Notification '{name}' failed: {e}", exc_info=True)
            return
        if result is not None and getattr(result, "success", True) is False:
            logger.error(f"Notification '{name}' was not delivered: {getattr(result, 'error', None)}")

    async def drain(self) -> None:
        """Wait for all outstanding notifications."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==================== LINKS ====================

    def link(self, path: str, token: Optional[str] = None) -> str:
        url = f"{self.frontend_url}{path}"
        if token:
            url = f"{url}?{urlencode({'token': token})}"
        return url

    # ==================== EMAILS ====================

    def send_template(self, to: str, template: EmailTemplate, variables: Dict[str, str]) -> asyncio.Task:
        logger.info(f"Dispatching {template.value} email to {to}")
        return self.submit(
            f"{template.value}:{to}",
            self.sender.send_from_template(to, template, variables),
        )

    def send_email_confirmation(self, email: str, full_name: str, token: str) -> asyncio.Task:
        return self.send_template(email, EmailTemplate.EMAIL_CONFIRMATION, {
            "full_name": full_name,
            "confirmation_url": self.link("/confirm", token),
        })

    def send_password_reset(self, email: str, full_name: str, token: str) -> asyncio.Task:
        return self.send_template(email, EmailTemplate.PASSWORD_RESET, {
            "full_name": full_name,
            "reset_url": self.link("/reset-password", token),
        })

    async def send_approval_notification(self, admin_email: str, employee_name: str, employee_email: str):
        """Awaitable send used inside the admin notification task."""
        return await self.sender.send_from_template(admin_email, EmailTemplate.APPROVAL_NOTIFICATION, {
            "employee_name": employee_name,
            "employee_email": employee_email,
            "review_url": self.link("/admin/approvals"),
        })
