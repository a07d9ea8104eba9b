"""
Identity Module

Identity and approval lifecycle for the HR system.

Features:
- Credential and employee profile records (email as unique login)
- Two sign-in gates: verified email and administrative approval
- Signed access/refresh tokens with refresh rotation
- Opaque single-use tokens for email confirmation and password reset
"""

from .errors import (
    IdentityError,
    ValidationError,
    DuplicateEmailError,
    InvalidCredentialsError,
    EmailNotConfirmedError,
    PendingApprovalError,
    AlreadyVerifiedError,
    TokenExpiredError,
    InvalidTokenError,
    InvalidCurrentPasswordError,
    RecordNotFoundError,
    InfrastructureError,
    StoreUnavailableError,
    error_response,
    error_status,
)
from .models import Role, ApprovalStatus
from .schemas import AuthUser, AuthResult, CredentialRecord, ProfileRecord, TokenClaims
from .service import IdentityService
from .store import IdentityStore, InMemoryIdentityStore
from .tokens import TokenCodec

__all__ = [
    'IdentityError',
    'ValidationError',
    'DuplicateEmailError',
    'InvalidCredentialsError',
    'EmailNotConfirmedError',
    'PendingApprovalError',
    'AlreadyVerifiedError',
    'TokenExpiredError',
    'InvalidTokenError',
    'InvalidCurrentPasswordError',
    'RecordNotFoundError',
    'InfrastructureError',
    'StoreUnavailableError',
    'error_response',
    'error_status',
    'Role',
    'ApprovalStatus',
    'AuthUser',
    'AuthResult',
    'CredentialRecord',
    'ProfileRecord',
    'TokenClaims',
    'IdentityService',
    'IdentityStore',
    'InMemoryIdentityStore',
    'TokenCodec',
]
