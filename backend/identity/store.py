"""
Identity - Record Store Interface

The identity service talks to persistence only through IdentityStore.
Every method is a single read or a single atomic write of one record (or,
for create_account, of the credential/profile pair).

InMemoryIdentityStore keeps records in process memory. It backs the test
suite and local tooling; production uses SQLAlchemyIdentityStore.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import DuplicateEmailError
from .models import Role
from .schemas import CredentialRecord, ProfileRecord

logger = logging.getLogger(__name__)

# Fields update_credential / update_profile may write. Refresh tokens change
# only through their own operations.
CREDENTIAL_FIELDS = frozenset({
    "password_hash",
    "email_verified",
    "email_verification_token",
    "email_verification_expires_at",
    "consumed_verification_token",
    "password_reset_token",
    "password_reset_expires_at",
})
PROFILE_FIELDS = frozenset({"full_name", "role", "approval_status", "department", "email_verified"})


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def check_changes(allowed: frozenset, changes: Dict[str, Any]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")


class IdentityStore(ABC):
    """Persistence contract for credential and profile records."""

    @abstractmethod
    async def create_account(self, credential: CredentialRecord, profile: ProfileRecord) -> None:
        """Persist a credential and its profile as one unit. Raises DuplicateEmailError."""

    @abstractmethod
    async def get_credential(self, credential_id: str) -> Optional[CredentialRecord]:
        ...

    @abstractmethod
    async def get_credential_by_email(self, email: str) -> Optional[CredentialRecord]:
        ...

    @abstractmethod
    async def get_credential_by_verification_token(self, token: str) -> Optional[CredentialRecord]:
        ...

    @abstractmethod
    async def get_credential_by_consumed_verification_token(self, token: str) -> Optional[CredentialRecord]:
        ...

    @abstractmethod
    async def get_credential_by_reset_token(self, token: str) -> Optional[CredentialRecord]:
        ...

    @abstractmethod
    async def get_profile_by_credential_id(self, credential_id: str) -> Optional[ProfileRecord]:
        ...

    @abstractmethod
    async def list_credentials_by_role(self, role: Role) -> List[CredentialRecord]:
        """Credentials whose linked profile has the given role."""

    @abstractmethod
    async def update_credential(self, credential_id: str, **changes: Any) -> None:
        """
        Write only the named scalar fields of a credential.

        Fields not named keep whatever value the store currently holds, so a
        concurrent write to another field is never overwritten.
        """

    @abstractmethod
    async def update_profile(self, credential_id: str, **changes: Any) -> None:
        """Write only the named fields of the profile linked to a credential."""

    @abstractmethod
    async def consume_verification_token(self, credential_id: str, token: str) -> bool:
        """
        Mark the email verified and clear the verification token, but only
        while token is still the credential's current verification token.

        Returns False, changing nothing, when the token was consumed or
        replaced in the meantime.
        """

    @abstractmethod
    async def consume_reset_token(self, credential_id: str, token: str, password_hash: str) -> bool:
        """Set password_hash and clear the reset token if token is still current."""

    @abstractmethod
    async def add_refresh_token(self, credential_id: str, token: str) -> None:
        ...

    @abstractmethod
    async def rotate_refresh_token(self, credential_id: str, old_token: str, new_token: str) -> bool:
        """
        Replace old_token with new_token in one atomic step.

        Returns False, changing nothing, when old_token is no longer in the
        credential's active set.
        """

    @abstractmethod
    async def revoke_refresh_tokens(self, credential_id: str) -> None:
        """Remove every active refresh token of a credential."""


class InMemoryIdentityStore(IdentityStore):
    """
    Process-local store.

    Records are copied on the way in and out so callers never share state
    with the store; a single lock serializes writes.
    """

    def __init__(self):
        self._credentials: Dict[str, CredentialRecord] = {}
        self._profiles: Dict[str, ProfileRecord] = {}  # keyed by credential_id
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(record):
        return record.model_copy(deep=True) if record is not None else None

    def _find_credential(self, **criteria) -> Optional[CredentialRecord]:
        for credential in self._credentials.values():
            if all(getattr(credential, field) == value for field, value in criteria.items()):
                return self._copy(credential)
        return None

    async def create_account(self, credential: CredentialRecord, profile: ProfileRecord) -> None:
        async with self._lock:
            email = normalize_email(credential.email)
            if any(c.email == email for c in self._credentials.values()):
                raise DuplicateEmailError()
            now = datetime.now(timezone.utc)
            stored_credential = self._copy(credential)
            stored_credential.email = email
            stored_credential.created_at = stored_credential.updated_at = now
            stored_profile = self._copy(profile)
            stored_profile.created_at = stored_profile.updated_at = now
            self._credentials[stored_credential.id] = stored_credential
            self._profiles[stored_credential.id] = stored_profile
            logger.info(f"Created account: {stored_credential.id} ({email})")

    async def get_credential(self, credential_id: str) -> Optional[CredentialRecord]:
        return self._copy(self._credentials.get(credential_id))

    async def get_credential_by_email(self, email: str) -> Optional[CredentialRecord]:
        return self._find_credential(email=normalize_email(email))

    async def get_credential_by_verification_token(self, token: str) -> Optional[CredentialRecord]:
        if not token:
            return None
        return self._find_credential(email_verification_token=token)

    async def get_credential_by_consumed_verification_token(self, token: str) -> Optional[CredentialRecord]:
        if not token:
            return None
        return self._find_credential(consumed_verification_token=token)

    async def get_credential_by_reset_token(self, token: str) -> Optional[CredentialRecord]:
        if not token:
            return None
        return self._find_credential(password_reset_token=token)

    async def get_profile_by_credential_id(self, credential_id: str) -> Optional[ProfileRecord]:
        return self._copy(self._profiles.get(credential_id))

    async def list_credentials_by_role(self, role: Role) -> List[CredentialRecord]:
        return [
            self._copy(self._credentials[profile.credential_id])
            for profile in self._profiles.values()
            if profile.role == role and profile.credential_id in self._credentials
        ]

    @staticmethod
    def _apply(record, changes: Dict[str, Any]):
        return record.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})

    async def update_credential(self, credential_id: str, **changes: Any) -> None:
        check_changes(CREDENTIAL_FIELDS, changes)
        async with self._lock:
            current = self._credentials.get(credential_id)
            if current is not None:
                self._credentials[credential_id] = self._apply(current, changes)

    async def update_profile(self, credential_id: str, **changes: Any) -> None:
        check_changes(PROFILE_FIELDS, changes)
        async with self._lock:
            current = self._profiles.get(credential_id)
            if current is not None:
                self._profiles[credential_id] = self._apply(current, changes)

    async def consume_verification_token(self, credential_id: str, token: str) -> bool:
        async with self._lock:
            current = self._credentials.get(credential_id)
            if current is None or not token or current.email_verification_token != token:
                return False
            self._credentials[credential_id] = self._apply(current, {
                "email_verified": True,
                "consumed_verification_token": token,
                "email_verification_token": None,
                "email_verification_expires_at": None,
            })
            return True

    async def consume_reset_token(self, credential_id: str, token: str, password_hash: str) -> bool:
        async with self._lock:
            current = self._credentials.get(credential_id)
            if current is None or not token or current.password_reset_token != token:
                return False
            self._credentials[credential_id] = self._apply(current, {
                "password_hash": password_hash,
                "password_reset_token": None,
                "password_reset_expires_at": None,
            })
            return True

    async def add_refresh_token(self, credential_id: str, token: str) -> None:
        async with self._lock:
            credential = self._credentials.get(credential_id)
            if credential is not None:
                credential.refresh_tokens.add(token)

    async def rotate_refresh_token(self, credential_id: str, old_token: str, new_token: str) -> bool:
        async with self._lock:
            credential = self._credentials.get(credential_id)
            if credential is None or old_token not in credential.refresh_tokens:
                return False
            credential.refresh_tokens.discard(old_token)
            credential.refresh_tokens.add(new_token)
            return True

    async def revoke_refresh_tokens(self, credential_id: str) -> None:
        async with self._lock:
            credential = self._credentials.get(credential_id)
            if credential is not None:
                credential.refresh_tokens.clear()
