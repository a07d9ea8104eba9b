"""
Identity - SQLAlchemy Record Store

PostgreSQL-backed implementation of IdentityStore on an AsyncSession.

Every write is a single statement or a single transaction, so the database
provides the per-record atomicity the identity service relies on. Updates
name only the columns they change. Operations that consume something
(a verification token, a reset token, a refresh token) are conditional
statements that succeed only when the row still holds the value being
consumed: of two concurrent callers, the loser matches no row and fails.

Reads always reload from the database (populate_existing), and the active
refresh tokens are read with their own query, so a record never reflects a
stale copy held in the session's identity map.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, List, Optional, Set

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import DuplicateEmailError, StoreUnavailableError
from .models import CredentialDB, ProfileDB, RefreshTokenDB, Role, ApprovalStatus
from .schemas import CredentialRecord, ProfileRecord
from .store import CREDENTIAL_FIELDS, PROFILE_FIELDS, IdentityStore, check_changes, normalize_email

logger = logging.getLogger(__name__)


def _to_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps come back naive from backends without timezone support (SQLite)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _store_operation(func_):
    """Translate driver/database failures into StoreUnavailableError."""
    @wraps(func_)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func_(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Identity store error in {func_.__name__}: {e}", exc_info=True)
            await self._rollback()
            raise StoreUnavailableError(f"Identity store operation failed: {func_.__name__}") from e
    return wrapper


def credential_to_record(row: CredentialDB, refresh_tokens: Optional[Set[str]] = None) -> CredentialRecord:
    return CredentialRecord(
        id=str(row.id),
        email=row.email,
        password_hash=row.password_hash,
        email_verified=bool(row.email_verified),
        email_verification_token=row.email_verification_token,
        email_verification_expires_at=_utc(row.email_verification_expires_at),
        consumed_verification_token=row.consumed_verification_token,
        password_reset_token=row.password_reset_token,
        password_reset_expires_at=_utc(row.password_reset_expires_at),
        refresh_tokens=set(refresh_tokens or ()),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def profile_to_record(row: ProfileDB) -> ProfileRecord:
    return ProfileRecord(
        id=str(row.id),
        credential_id=str(row.credential_id),
        email=row.email,
        full_name=row.full_name,
        role=Role(row.role),
        approval_status=ApprovalStatus(row.approval_status),
        department=row.department,
        email_verified=bool(row.email_verified),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


class SQLAlchemyIdentityStore(IdentityStore):
    """IdentityStore on top of an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"Rollback failed: {e}")

    async def _refresh_tokens(self, credential_id: uuid.UUID) -> Set[str]:
        result = await self.db.execute(
            select(RefreshTokenDB.token).where(RefreshTokenDB.credential_id == credential_id)
        )
        return set(result.scalars().all())

    async def _one_credential(self, *criteria) -> Optional[CredentialRecord]:
        result = await self.db.execute(
            select(CredentialDB).where(*criteria).execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return credential_to_record(row, await self._refresh_tokens(row.id))

    # ==================== CREATE ====================

    @_store_operation
    async def create_account(self, credential: CredentialRecord, profile: ProfileRecord) -> None:
        credential_id = _to_uuid(credential.id)
        self.db.add(CredentialDB(
            id=credential_id,
            email=normalize_email(credential.email),
            password_hash=credential.password_hash,
            email_verified=credential.email_verified,
            email_verification_token=credential.email_verification_token,
            email_verification_expires_at=credential.email_verification_expires_at,
            password_reset_token=credential.password_reset_token,
            password_reset_expires_at=credential.password_reset_expires_at,
        ))
        self.db.add(ProfileDB(
            id=_to_uuid(profile.id),
            credential_id=credential_id,
            email=normalize_email(profile.email),
            full_name=profile.full_name,
            role=profile.role.value,
            approval_status=profile.approval_status.value,
            department=profile.department,
            email_verified=profile.email_verified,
        ))
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self._rollback()
            logger.warning(f"Duplicate account for {credential.email}: {e.orig}")
            raise DuplicateEmailError() from e
        logger.info(f"Created account: {credential.id} ({credential.email})")

    # ==================== READ ====================

    @_store_operation
    async def get_credential(self, credential_id: str) -> Optional[CredentialRecord]:
        uid = _to_uuid(credential_id)
        if uid is None:
            return None
        return await self._one_credential(CredentialDB.id == uid)

    @_store_operation
    async def get_credential_by_email(self, email: str) -> Optional[CredentialRecord]:
        return await self._one_credential(func.lower(CredentialDB.email) == normalize_email(email))

    @_store_operation
    async def get_credential_by_verification_token(self, token: str) -> Optional[CredentialRecord]:
        if not token:
            return None
        return await self._one_credential(CredentialDB.email_verification_token == token)

    @_store_operation
    async def get_credential_by_consumed_verification_token(self, token: str) -> Optional[CredentialRecord]:
        if not token:
            return None
        return await self._one_credential(CredentialDB.consumed_verification_token == token)

    @_store_operation
    async def get_credential_by_reset_token(self, token: str) -> Optional[CredentialRecord]:
        if not token:
            return None
        return await self._one_credential(CredentialDB.password_reset_token == token)

    @_store_operation
    async def get_profile_by_credential_id(self, credential_id: str) -> Optional[ProfileRecord]:
        uid = _to_uuid(credential_id)
        if uid is None:
            return None
        result = await self.db.execute(
            select(ProfileDB).where(ProfileDB.credential_id == uid).execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return profile_to_record(row) if row else None

    @_store_operation
    async def list_credentials_by_role(self, role: Role) -> List[CredentialRecord]:
        """Recipients for notices; refresh tokens are not loaded."""
        result = await self.db.execute(
            select(CredentialDB)
            .join(ProfileDB, ProfileDB.credential_id == CredentialDB.id)
            .where(ProfileDB.role == role.value)
            .execution_options(populate_existing=True)
        )
        return [credential_to_record(row) for row in result.scalars().all()]

    # ==================== UPDATE ====================

    @_store_operation
    async def update_credential(self, credential_id: str, **changes: Any) -> None:
        check_changes(CREDENTIAL_FIELDS, changes)
        if not changes:
            return
        await self.db.execute(
            update(CredentialDB).where(CredentialDB.id == _to_uuid(credential_id)).values(**changes)
        )
        await self.db.commit()

    @_store_operation
    async def update_profile(self, credential_id: str, **changes: Any) -> None:
        check_changes(PROFILE_FIELDS, changes)
        if not changes:
            return
        values = {k: v.value if isinstance(v, Enum) else v for k, v in changes.items()}
        await self.db.execute(
            update(ProfileDB).where(ProfileDB.credential_id == _to_uuid(credential_id)).values(**values)
        )
        await self.db.commit()

    async def _conditional_update(self, *criteria, **values) -> bool:
        """UPDATE ... WHERE criteria; True only when exactly one row matched."""
        result = await self.db.execute(update(CredentialDB).where(*criteria).values(**values))
        if result.rowcount != 1:
            await self._rollback()
            return False
        await self.db.commit()
        return True

    @_store_operation
    async def consume_verification_token(self, credential_id: str, token: str) -> bool:
        if not token:
            return False
        return await self._conditional_update(
            CredentialDB.id == _to_uuid(credential_id),
            CredentialDB.email_verification_token == token,
            email_verified=True,
            consumed_verification_token=token,
            email_verification_token=None,
            email_verification_expires_at=None,
        )

    @_store_operation
    async def consume_reset_token(self, credential_id: str, token: str, password_hash: str) -> bool:
        if not token:
            return False
        return await self._conditional_update(
            CredentialDB.id == _to_uuid(credential_id),
            CredentialDB.password_reset_token == token,
            password_hash=password_hash,
            password_reset_token=None,
            password_reset_expires_at=None,
        )

    # ==================== REFRESH TOKENS ====================

    @_store_operation
    async def add_refresh_token(self, credential_id: str, token: str) -> None:
        self.db.add(RefreshTokenDB(credential_id=_to_uuid(credential_id), token=token))
        await self.db.commit()

    @_store_operation
    async def rotate_refresh_token(self, credential_id: str, old_token: str, new_token: str) -> bool:
        result = await self.db.execute(
            delete(RefreshTokenDB).where(
                RefreshTokenDB.credential_id == _to_uuid(credential_id),
                RefreshTokenDB.token == old_token,
            )
        )
        if result.rowcount != 1:
            await self._rollback()
            return False
        self.db.add(RefreshTokenDB(credential_id=_to_uuid(credential_id), token=new_token))
        await self.db.commit()
        return True

    @_store_operation
    async def revoke_refresh_tokens(self, credential_id: str) -> None:
        await self.db.execute(
            delete(RefreshTokenDB).where(RefreshTokenDB.credential_id == _to_uuid(credential_id))
        )
        await self.db.commit()
