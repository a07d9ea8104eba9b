"""
Identity - Database Models

SQLAlchemy models for the login credential, its active refresh tokens and
the linked employee profile that carries role and approval state.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Any
from enum import Enum

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from database.connection import Base


class Role(str, Enum):
    """Principal role"""
    ADMIN = "admin"
    EMPLOYEE = "employee"


class ApprovalStatus(str, Enum):
    """Administrative approval state of an employee profile"""
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialDB(Base):
    """
    Credential - Login identity

    Email is unique and stored lower-cased. Verification and reset tokens are
    opaque values matched exactly; clearing them revokes them.
    """
    __tablename__ = "credential"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token = Column(String(128), index=True)
    email_verification_expires_at = Column(DateTime(timezone=True))
    consumed_verification_token = Column(String(128), index=True)
    password_reset_token = Column(String(128), index=True)
    password_reset_expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    refresh_tokens = relationship(
        "RefreshTokenDB",
        back_populates="credential",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
    profile = relationship("ProfileDB", back_populates="credential", uselist=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (no secrets)."""
        return {
            "id": str(self.id),
            "email": self.email,
            "email_verified": self.email_verified,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class RefreshTokenDB(Base):
    """One row per active refresh token of a credential."""
    __tablename__ = "refresh_token"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    credential_id = Column(
        UUID(as_uuid=True),
        ForeignKey("credential.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token = Column(String(2048), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    credential = relationship("CredentialDB", back_populates="refresh_tokens")


class ProfileDB(Base):
    """
    Employee Profile - Role and approval state

    Linked 1:1 to a credential. Admin profiles are created active, employee
    profiles start pending until an administrator approves them.
    """
    __tablename__ = "employee_profile"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    credential_id = Column(
        UUID(as_uuid=True),
        ForeignKey("credential.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    role = Column(String(30), default=Role.EMPLOYEE.value, nullable=False, index=True)
    approval_status = Column(String(30), default=ApprovalStatus.PENDING.value, nullable=False)
    department = Column(String(100))
    email_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    credential = relationship("CredentialDB", back_populates="profile")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "credential_id": str(self.credential_id),
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "approval_status": self.approval_status,
            "department": self.department,
            "email_verified": self.email_verified,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
