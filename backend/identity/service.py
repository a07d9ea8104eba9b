"""
Identity - Service Layer

Business logic for the identity and approval lifecycle:
- Sign up (credential + employee profile, email verification)
- Sign in behind two gates: verified email and administrative approval
- Refresh token rotation and session-wide sign out
- Email confirmation and confirmation resend
- Password reset by opaque token and password change

The service is the only writer of authentication state. It reads the
profile's approval status but never changes it; approval is owned by the
admin workflow.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import (
    AlreadyVerifiedError,
    DuplicateEmailError,
    EmailNotConfirmedError,
    InvalidCredentialsError,
    InvalidCurrentPasswordError,
    InvalidTokenError,
    PendingApprovalError,
    RecordNotFoundError,
    StoreUnavailableError,
    TokenExpiredError,
    ValidationError,
)
from .models import ApprovalStatus, Role
from .notifications import NotificationDispatcher
from .passwords import PasswordHasher
from .schemas import (
    MIN_PASSWORD_LENGTH,
    AuthResult,
    AuthUser,
    CredentialRecord,
    ProfileRecord,
    SignUpRequest,
)
from .store import IdentityStore, normalize_email
from .tokens import Clock, OpaqueTokenKind, TokenCodec

logger = logging.getLogger(__name__)

SIGN_UP_MESSAGE = (
    "Please check your email to verify your account. You will be able to login "
    "after email verification and admin approval."
)
ADMIN_SIGN_UP_MESSAGE = "Please check your email to verify your account before logging in."
RESEND_MESSAGE = "If the account exists and is not yet verified, a new confirmation email has been sent."
RESET_REQUEST_MESSAGE = "If the email exists, a password reset link has been sent."


def _require(**fields) -> None:
    for name, value in fields.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(name)


def _require_password_length(field: str, password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(field, f"{field} must be at least {MIN_PASSWORD_LENGTH} characters")


class IdentityService:
    """
    Identity Service - orchestrates the credential and profile records with
    the token codec.

    All collaborators are injected: the record store, the token codec, the
    notification dispatcher, the password hasher and the clock.
    """

    def __init__(
        self,
        store: IdentityStore,
        codec: TokenCodec,
        notifier: NotificationDispatcher,
        hasher: Optional[PasswordHasher] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.codec = codec
        self.notifier = notifier
        self.hasher = hasher or PasswordHasher()
        self.clock = clock or codec.clock
        self._dummy_hash: Optional[str] = None

    # ==================== HELPERS ====================

    def _now(self) -> datetime:
        return self.clock()

    async def _load_account(self, credential_id: str) -> Tuple[CredentialRecord, ProfileRecord]:
        credential = await self.store.get_credential(credential_id)
        if credential is None:
            raise RecordNotFoundError("User not found")
        profile = await self.store.get_profile_by_credential_id(credential.id)
        if profile is None:
            logger.error(f"Employee record not found for credential {credential.id}")
            raise RecordNotFoundError("Employee record not found")
        return credential, profile

    async def _start_session(
        self,
        credential: CredentialRecord,
        profile: ProfileRecord,
        message: str,
    ) -> AuthResult:
        user = AuthUser.from_records(credential, profile)
        access_token = self.codec.mint_access_token(user)
        refresh_token = self.codec.mint_refresh_token(user)
        await self.store.add_refresh_token(credential.id, refresh_token)
        return AuthResult(
            user=user,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.codec.access_token_expires_in,
            message=message,
        )

    async def _issue_verification_token(self, credential: CredentialRecord) -> str:
        """Replace the credential's verification token; the previous one stops matching."""
        token = self.codec.generate_opaque_token()
        await self.store.update_credential(
            credential.id,
            email_verification_token=token,
            email_verification_expires_at=self.codec.opaque_token_expiry(
                OpaqueTokenKind.EMAIL_VERIFICATION, self._now()
            ),
        )
        return token

    def _verify_password(self, password: str, credential: Optional[CredentialRecord]) -> bool:
        if credential is None:
            # Hash anyway so unknown emails cost the same as wrong passwords
            if self._dummy_hash is None:
                self._dummy_hash = self.hasher.hash("unknown-account-placeholder")
            self.hasher.verify(password, self._dummy_hash)
            return False
        return self.hasher.verify(password, credential.password_hash)

    def _validate_sign_up(self, email, password, full_name, role) -> SignUpRequest:
        _require(email=email, password=password, full_name=full_name)
        try:
            return SignUpRequest(
                email=email.strip(),
                password=password,
                full_name=full_name.strip(),
                role=role or Role.EMPLOYEE,
            )
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error.get("loc") else "request"
            raise ValidationError(field, f"{field}: {error['msg']}") from e

    # ==================== SIGN UP ====================

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: str,
        role: Union[Role, str, None] = Role.EMPLOYEE,
    ) -> AuthResult:
        """
        Register a principal.

        A verified email is a duplicate. An unverified email gets a fresh
        verification token and confirmation link instead of a second account.
        """
        request = self._validate_sign_up(email, password, full_name, role)
        email = normalize_email(request.email)
        logger.info(f"Sign up request: {email} (role: {request.role.value})")

        existing = await self.store.get_credential_by_email(email)
        if existing is not None:
            if existing.email_verified:
                logger.warning(f"Sign up rejected, email already registered: {email}")
                raise DuplicateEmailError()

            profile = await self.store.get_profile_by_credential_id(existing.id)
            if profile is None:
                raise RecordNotFoundError("Employee record not found")
            token = await self._issue_verification_token(existing)
            self.notifier.send_email_confirmation(existing.email, profile.full_name, token)
            logger.info(f"Re-issued verification token for unverified account {existing.id}")
            return AuthResult(
                user=AuthUser.from_records(existing, profile),
                requires_email_verification=True,
                message=SIGN_UP_MESSAGE,
            )

        now = self._now()
        token = self.codec.generate_opaque_token()
        credential = CredentialRecord(
            email=email,
            password_hash=self.hasher.hash(request.password),
            email_verified=False,
            email_verification_token=token,
            email_verification_expires_at=self.codec.opaque_token_expiry(
                OpaqueTokenKind.EMAIL_VERIFICATION, now
            ),
        )
        is_admin = request.role == Role.ADMIN
        profile = ProfileRecord(
            credential_id=credential.id,
            email=email,
            full_name=request.full_name,
            role=request.role,
            approval_status=ApprovalStatus.ACTIVE if is_admin else ApprovalStatus.PENDING,
            email_verified=False,
        )
        await self.store.create_account(credential, profile)

        self.notifier.send_email_confirmation(email, profile.full_name, token)
        if not is_admin:
            admins = await self._admin_recipients(credential)
            if admins:
                self.notifier.submit(
                    f"admin_signup_notice:{email}", self._notify_admins(admins, credential, profile)
                )

        logger.info(
            f"User signed up: {credential.id} ({email}, role: {profile.role.value}, "
            f"status: {profile.approval_status.value})"
        )
        return AuthResult(
            user=AuthUser.from_records(credential, profile),
            requires_email_verification=True,
            message=ADMIN_SIGN_UP_MESSAGE if is_admin else SIGN_UP_MESSAGE,
        )

    async def _admin_recipients(self, credential: CredentialRecord) -> List[CredentialRecord]:
        """
        Admins to tell about a new registration.

        Looked up while the caller's store is still open; the background task
        only sends email. A failed lookup skips the notice, not the sign-up.
        """
        try:
            admins = await self.store.list_credentials_by_role(Role.ADMIN)
        except StoreUnavailableError as e:
            logger.error(f"Could not load admins to notify about {credential.email}: {e}")
            return []
        admins = [a for a in admins if a.id != credential.id]
        if not admins:
            logger.info(f"No admins to notify about new signup {credential.email}")
        return admins

    async def _notify_admins(
        self,
        admins: List[CredentialRecord],
        credential: CredentialRecord,
        profile: ProfileRecord,
    ) -> None:
        """Email every admin about a pending registration; one failure does not stop the rest."""
        logger.info(f"Notifying {len(admins)} admins of new signup {credential.email}")
        for admin in admins:
            try:
                result = await self.notifier.send_approval_notification(
                    admin.email, profile.full_name, credential.email
                )
            except Exception as e:
                logger.error(f"Failed to notify admin {admin.email}: {e}", exc_info=True)
                continue
            if not result.success:
                logger.error(f"Failed to notify admin {admin.email}: {result.error}")

    # ==================== SIGN IN ====================

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """
        Authenticate with email and password.

        Unknown email and wrong password fail identically. A correct password
        still fails until the email is verified and the profile is active.
        """
        _require(email=email, password=password)
        email = normalize_email(email)

        credential = await self.store.get_credential_by_email(email)
        if not self._verify_password(password, credential):
            logger.warning(f"Login failed: invalid credentials - {email}")
            raise InvalidCredentialsError()

        profile = await self.store.get_profile_by_credential_id(credential.id)
        if profile is None:
            logger.error(f"Employee record not found for credential {credential.id}")
            raise RecordNotFoundError("Employee record not found")

        if not credential.email_verified:
            logger.warning(f"Login failed: email not verified - {email}")
            raise EmailNotConfirmedError()

        if profile.approval_status != ApprovalStatus.ACTIVE:
            logger.warning(f"Login failed: approval status {profile.approval_status.value} - {email}")
            raise PendingApprovalError(profile.approval_status.value)

        result = await self._start_session(credential, profile, "Sign in successful")
        logger.info(f"Login successful: {email} (role: {profile.role.value})")
        return result

    # ==================== SESSION ====================

    async def refresh(self, refresh_token: str) -> AuthResult:
        """
        Exchange a refresh token for a new access/refresh pair.

        The presented token is consumed: it is swapped for the new one in a
        single atomic store operation, so replaying it fails.
        """
        _require(refresh_token=refresh_token)
        try:
            claims = self.codec.verify_refresh_token(refresh_token)
        except TokenExpiredError as e:
            raise InvalidTokenError("Refresh token has expired") from e

        credential = await self.store.get_credential(claims.user_id)
        profile = await self.store.get_profile_by_credential_id(claims.user_id) if credential else None
        if credential is None or profile is None:
            raise InvalidTokenError("Invalid refresh token")

        if profile.approval_status != ApprovalStatus.ACTIVE:
            await self.store.revoke_refresh_tokens(credential.id)
            logger.warning(f"Refresh denied for {credential.email}: status {profile.approval_status.value}")
            raise InvalidTokenError("Invalid refresh token")

        user = AuthUser.from_records(credential, profile)
        new_refresh_token = self.codec.mint_refresh_token(user)
        rotated = await self.store.rotate_refresh_token(credential.id, refresh_token, new_refresh_token)
        if not rotated:
            logger.warning(f"Refresh token reuse or revoked token for {credential.email}")
            raise InvalidTokenError("Invalid refresh token")

        return AuthResult(
            user=user,
            access_token=self.codec.mint_access_token(user),
            refresh_token=new_refresh_token,
            expires_in=self.codec.access_token_expires_in,
            message="Token refreshed",
        )

    async def sign_out(self, access_token: str) -> None:
        """Revoke every refresh token of the access token's subject."""
        _require(access_token=access_token)
        claims = self.codec.verify_access_token(access_token)
        await self.store.revoke_refresh_tokens(claims.user_id)
        logger.info(f"User signed out: {claims.user_id}")

    async def get_current_user(self, access_token: str) -> AuthUser:
        """Principal behind an access token, with its current approval status."""
        _require(access_token=access_token)
        claims = self.codec.verify_access_token(access_token)
        credential, profile = await self._load_account(claims.user_id)
        return AuthUser.from_records(credential, profile)

    async def get_profile(self, credential_id: str) -> ProfileRecord:
        _require(credential_id=credential_id)
        profile = await self.store.get_profile_by_credential_id(credential_id)
        if profile is None:
            raise RecordNotFoundError("Employee record not found")
        return profile

    # ==================== EMAIL VERIFICATION ====================

    async def confirm_email(self, token: str) -> AuthResult:
        """
        Verify an email address by opaque token.

        Tokens are single use: on success the token fields are cleared. A
        session is only issued when the profile is already active.
        """
        _require(token=token)
        credential = await self.store.get_credential_by_verification_token(token)

        if credential is None:
            used_by = await self.store.get_credential_by_consumed_verification_token(token)
            if used_by is not None and used_by.email_verified:
                raise AlreadyVerifiedError()
            logger.warning("Email confirmation with unknown token")
            raise InvalidTokenError("Invalid or expired verification token")

        if not credential.is_valid_email_verification_token(token, self._now()):
            logger.warning(
                f"Verification token expired for {credential.email} "
                f"(expired at {credential.email_verification_expires_at})"
            )
            raise TokenExpiredError("Verification token has expired. Please request a new confirmation email.")

        if credential.email_verified:
            raise AlreadyVerifiedError()

        profile = await self.store.get_profile_by_credential_id(credential.id)
        if profile is None:
            raise RecordNotFoundError("Employee record not found")

        if not await self.store.consume_verification_token(credential.id, token):
            # Another request consumed or replaced this token first
            current = await self.store.get_credential(credential.id)
            if current is not None and current.email_verified:
                raise AlreadyVerifiedError()
            raise InvalidTokenError("Invalid or expired verification token")
        credential.email_verified = True

        await self.store.update_profile(credential.id, email_verified=True)
        profile.email_verified = True

        logger.info(f"Email confirmed: {credential.email} (status: {profile.approval_status.value})")

        if profile.is_active:
            return await self._start_session(
                credential, profile, "Email verified successfully! You can now log in."
            )
        return AuthResult(
            user=AuthUser.from_records(credential, profile),
            message="Email verified successfully! Please wait for admin approval before logging in.",
        )

    async def resend_confirmation(self, email: str) -> str:
        """Send a fresh confirmation link; silent no-op for verified or unknown emails."""
        _require(email=email)
        email = normalize_email(email)

        credential = await self.store.get_credential_by_email(email)
        if credential is None or credential.email_verified:
            logger.info(f"Resend confirmation skipped for {email}")
            return RESEND_MESSAGE

        profile = await self.store.get_profile_by_credential_id(credential.id)
        token = await self._issue_verification_token(credential)
        self.notifier.send_email_confirmation(
            credential.email, profile.full_name if profile else credential.email, token
        )
        logger.info(f"Confirmation email resent: {email}")
        return RESEND_MESSAGE

    # ==================== PASSWORDS ====================

    async def request_password_reset(self, email: str) -> str:
        """Start a password reset. Reports success whether or not the email exists."""
        _require(email=email)
        email = normalize_email(email)

        credential = await self.store.get_credential_by_email(email)
        if credential is None:
            logger.info(f"Password reset requested for unknown email: {email}")
            return RESET_REQUEST_MESSAGE

        token = self.codec.generate_opaque_token()
        await self.store.update_credential(
            credential.id,
            password_reset_token=token,
            password_reset_expires_at=self.codec.opaque_token_expiry(
                OpaqueTokenKind.PASSWORD_RESET, self._now()
            ),
        )

        profile = await self.store.get_profile_by_credential_id(credential.id)
        self.notifier.send_password_reset(
            credential.email, profile.full_name if profile else credential.email, token
        )
        logger.info(f"Password reset email dispatched: {email}")
        return RESET_REQUEST_MESSAGE

    async def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password by reset token and sign the subject out everywhere."""
        _require(token=token, new_password=new_password)
        _require_password_length("new_password", new_password)

        credential = await self.store.get_credential_by_reset_token(token)
        if credential is None:
            raise InvalidTokenError("Invalid or expired reset token")
        if not credential.is_valid_password_reset_token(token, self._now()):
            logger.warning(f"Reset token expired for {credential.email}")
            raise TokenExpiredError("Reset token has expired. Please request a new password reset.")

        password_hash = self.hasher.hash(new_password)
        if not await self.store.consume_reset_token(credential.id, token, password_hash):
            logger.warning(f"Reset token for {credential.email} was already used")
            raise InvalidTokenError("Invalid or expired reset token")
        await self.store.revoke_refresh_tokens(credential.id)
        logger.info(f"Password reset with token: {credential.email}")

    async def update_password(
        self,
        identity: Union[AuthUser, str],
        current_password: str,
        new_password: str,
    ) -> None:
        """Change a password after re-checking the current one."""
        user_id = identity.id if isinstance(identity, AuthUser) else identity
        _require(identity=user_id, current_password=current_password, new_password=new_password)
        _require_password_length("new_password", new_password)

        credential = await self.store.get_credential(user_id)
        if credential is None:
            raise RecordNotFoundError("User not found")
        if not self.hasher.verify(current_password, credential.password_hash):
            logger.warning(f"Password change failed: wrong current password - {credential.email}")
            raise InvalidCurrentPasswordError()

        await self.store.update_credential(credential.id, password_hash=self.hasher.hash(new_password))
        logger.info(f"Password updated: {credential.email}")
