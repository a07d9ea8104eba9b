"""
Identity - Token Codec

Mints and verifies the signed, time-bound access and refresh tokens (JWT,
python-jose) and generates the opaque single-use tokens used for email
verification and password reset.

Signed tokens:
- access: 15 minutes, carries subject id, email and role
- refresh: 7 days, signed with its own secret, rotated on every use

Opaque tokens are random hex strings with no embedded meaning. They are
valid only while they match the stored value and the stored expiry is in the
future.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from jose import JWTError, jwt

from .errors import InvalidTokenError, TokenExpiredError
from .schemas import TokenClaims

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
OPAQUE_TOKEN_BYTES = 32  # 256 bits


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_opaque_token(nbytes: int = OPAQUE_TOKEN_BYTES) -> str:
    """Random hex token for email verification and password reset"""
    return secrets.token_hex(nbytes)


class OpaqueTokenKind(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class TokenSubject(Protocol):
    """Anything with the identity fields embedded in a signed token."""
    id: str
    email: str
    role: str


class TokenCodec:
    """
    Stateless minting and verification of signed and opaque tokens.

    The clock and the random source are injectable so expiry can be tested
    without sleeping.
    """

    def __init__(
        self,
        secret_key: str,
        refresh_secret_key: str,
        algorithm: str = "HS256",
        issuer: str = "hr-identity",
        audience: str = "hr-api",
        access_token_ttl: timedelta = timedelta(minutes=15),
        refresh_token_ttl: timedelta = timedelta(days=7),
        email_verification_ttl: timedelta = timedelta(hours=1),
        password_reset_ttl: timedelta = timedelta(minutes=10),
        clock: Clock = utc_now,
        token_factory: Callable[[], str] = generate_opaque_token,
    ):
        if not secret_key or not refresh_secret_key:
            raise ValueError("JWT signing secrets must be configured")
        self.secret_key = secret_key
        self.refresh_secret_key = refresh_secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.email_verification_ttl = email_verification_ttl
        self.password_reset_ttl = password_reset_ttl
        self.clock = clock
        self.token_factory = token_factory

    @property
    def access_token_expires_in(self) -> int:
        """Access token lifetime in seconds"""
        return int(self.access_token_ttl.total_seconds())

    # ==================== SIGNED TOKENS ====================

    def mint_access_token(self, subject: TokenSubject) -> str:
        """Create a signed access token"""
        return self._mint(subject, ACCESS_TOKEN_TYPE, self.access_token_ttl, self.secret_key)

    def mint_refresh_token(self, subject: TokenSubject) -> str:
        """Create a signed refresh token"""
        return self._mint(subject, REFRESH_TOKEN_TYPE, self.refresh_token_ttl, self.refresh_secret_key)

    def verify_access_token(self, token: str) -> TokenClaims:
        return self._verify(token, ACCESS_TOKEN_TYPE, self.secret_key)

    def verify_refresh_token(self, token: str) -> TokenClaims:
        return self._verify(token, REFRESH_TOKEN_TYPE, self.refresh_secret_key)

    def _mint(self, subject: TokenSubject, token_type: str, ttl: timedelta, key: str) -> str:
        now = self.clock()
        to_encode = {
            "sub": str(subject.id),
            "email": subject.email,
            "role": str(subject.role),
            "type": token_type,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(to_encode, key, algorithm=self.algorithm)

    def _verify(self, token: str, expected_type: str, key: str) -> TokenClaims:
        if not token:
            raise InvalidTokenError("Token is required")

        try:
            # Expiry is checked below against the injected clock
            payload = jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.warning(f"JWT decode error: {e}")
            raise InvalidTokenError() from e

        user_id = payload.get("sub")
        email = payload.get("email")
        role = payload.get("role")
        exp = payload.get("exp")

        if not user_id or not email or not role or not isinstance(exp, (int, float)):
            raise InvalidTokenError("Token is missing required claims")

        if payload.get("type") != expected_type:
            logger.warning(f"Invalid token type: expected {expected_type}, got {payload.get('type')}")
            raise InvalidTokenError("Invalid token type")

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if expires_at <= self.clock():
            raise TokenExpiredError()

        iat = payload.get("iat")
        return TokenClaims(
            user_id=user_id,
            email=email,
            role=role,
            token_type=expected_type,
            jti=payload.get("jti"),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if iat else None,
            expires_at=expires_at,
        )

    # ==================== OPAQUE TOKENS ====================

    def generate_opaque_token(self) -> str:
        return self.token_factory()

    def opaque_token_expiry(self, kind: OpaqueTokenKind, now: Optional[datetime] = None) -> datetime:
        """Absolute expiry for a freshly generated opaque token"""
        now = now or self.clock()
        if kind == OpaqueTokenKind.EMAIL_VERIFICATION:
            return now + self.email_verification_ttl
        return now + self.password_reset_ttl
