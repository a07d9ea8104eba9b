"""
Identity - Records and Request/Response Models

Pydantic models exchanged between the identity service, the record store
and the API layer. Stores hand out copies of these records; writes go back
through the store as named field changes, never as whole records.
"""

import uuid
from datetime import datetime
from typing import Optional, Set

from pydantic import BaseModel, Field, EmailStr

from .models import Role, ApprovalStatus

MIN_PASSWORD_LENGTH = 6


def _new_id() -> str:
    return str(uuid.uuid4())


# ==================== RECORDS ====================

class CredentialRecord(BaseModel):
    """Login identity: email, password hash and token state."""
    id: str = Field(default_factory=_new_id)
    email: str
    password_hash: str
    email_verified: bool = False
    email_verification_token: Optional[str] = None
    email_verification_expires_at: Optional[datetime] = None
    consumed_verification_token: Optional[str] = None
    password_reset_token: Optional[str] = None
    password_reset_expires_at: Optional[datetime] = None
    refresh_tokens: Set[str] = Field(default_factory=set)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_valid_email_verification_token(self, token: str, now: datetime) -> bool:
        return (
            self.email_verification_token is not None
            and self.email_verification_token == token
            and self.email_verification_expires_at is not None
            and self.email_verification_expires_at > now
        )

    def is_valid_password_reset_token(self, token: str, now: datetime) -> bool:
        return (
            self.password_reset_token is not None
            and self.password_reset_token == token
            and self.password_reset_expires_at is not None
            and self.password_reset_expires_at > now
        )


class ProfileRecord(BaseModel):
    """Employment-facing record carrying role and approval state."""
    id: str = Field(default_factory=_new_id)
    credential_id: str
    email: str
    full_name: str
    role: Role = Role.EMPLOYEE
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    department: Optional[str] = None
    email_verified: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.approval_status == ApprovalStatus.ACTIVE


# ==================== PRINCIPAL / RESULTS ====================

class AuthUser(BaseModel):
    """Authenticated principal as seen by callers"""
    id: str
    email: str
    role: str
    full_name: Optional[str] = None
    approval_status: Optional[str] = None
    email_verified: Optional[bool] = None

    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @classmethod
    def from_records(cls, credential: CredentialRecord, profile: ProfileRecord) -> "AuthUser":
        return cls(
            id=credential.id,
            email=credential.email,
            role=profile.role.value,
            full_name=profile.full_name,
            approval_status=profile.approval_status.value,
            email_verified=credential.email_verified,
        )


class AuthResult(BaseModel):
    """Outcome of a sign-up, sign-in, refresh or email confirmation"""
    user: AuthUser
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None  # seconds
    requires_email_verification: bool = False
    message: str = ""

    @property
    def has_session(self) -> bool:
        return bool(self.access_token and self.refresh_token)


class TokenClaims(BaseModel):
    """Data extracted from a verified signed token"""
    user_id: str
    email: str
    role: str
    token_type: str
    jti: Optional[str] = None
    issued_at: Optional[datetime] = None
    expires_at: datetime


# ==================== REQUEST MODELS ====================

class SignUpRequest(BaseModel):
    """Sign-up request body"""
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    full_name: str = Field(..., min_length=1, max_length=200)
    role: Role = Role.EMPLOYEE
