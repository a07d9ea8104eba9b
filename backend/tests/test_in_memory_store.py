"""
In-Memory Identity Store Tests

Run with: pytest tests/test_in_memory_store.py -v
"""

import asyncio

import pytest

from identity.errors import DuplicateEmailError
from identity.models import ApprovalStatus, Role
from identity.schemas import CredentialRecord, ProfileRecord


def make_account(email="alice@x.com", role=Role.EMPLOYEE):
    credential = CredentialRecord(email=email, password_hash="hash", email_verification_token=f"tok-{email}")
    profile = ProfileRecord(credential_id=credential.id, email=email, full_name="Alice", role=role)
    return credential, profile


class TestAccounts:
    """Account creation and lookups."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)

        by_id = await store.get_credential(credential.id)
        by_email = await store.get_credential_by_email("ALICE@x.com")
        by_token = await store.get_credential_by_verification_token("tok-alice@x.com")

        assert by_id.id == by_email.id == by_token.id == credential.id
        assert (await store.get_profile_by_credential_id(credential.id)).full_name == "Alice"
        assert by_id.created_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_email(self, store):
        await store.create_account(*make_account())

        with pytest.raises(DuplicateEmailError):
            await store.create_account(*make_account("Alice@X.com"))

    @pytest.mark.asyncio
    async def test_empty_token_never_matches(self, store):
        credential, profile = make_account()
        credential.email_verification_token = None
        await store.create_account(credential, profile)

        assert await store.get_credential_by_verification_token("") is None
        assert await store.get_credential_by_verification_token(None) is None
        assert await store.get_credential_by_reset_token("") is None

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)

        loaded = await store.get_credential(credential.id)
        loaded.email_verified = True
        loaded.refresh_tokens.add("leaked")

        fresh = await store.get_credential(credential.id)
        assert fresh.email_verified is False
        assert fresh.refresh_tokens == set()

    @pytest.mark.asyncio
    async def test_list_by_role(self, store):
        await store.create_account(*make_account("admin@hrcorp.com", Role.ADMIN))
        await store.create_account(*make_account("alice@x.com"))

        admins = await store.list_credentials_by_role(Role.ADMIN)
        assert [a.email for a in admins] == ["admin@hrcorp.com"]

    @pytest.mark.asyncio
    async def test_update_profile(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)

        await store.update_profile(credential.id, approval_status=ApprovalStatus.ACTIVE)

        loaded = await store.get_profile_by_credential_id(credential.id)
        assert loaded.is_active


class TestPartialWrites:
    """Writes touch only the fields they name; consuming a token is conditional."""

    @pytest.mark.asyncio
    async def test_stale_copy_does_not_clobber_other_fields(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)
        stale = await store.get_credential(credential.id)

        await store.update_credential(credential.id, password_reset_token="reset-1")
        await store.update_credential(stale.id, email_verified=True)

        loaded = await store.get_credential(credential.id)
        assert loaded.email_verified is True
        assert loaded.password_reset_token == "reset-1"

    @pytest.mark.asyncio
    async def test_profile_update_keeps_approval(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)

        await store.update_profile(credential.id, approval_status=ApprovalStatus.ACTIVE)
        await store.update_profile(credential.id, email_verified=True)

        loaded = await store.get_profile_by_credential_id(credential.id)
        assert loaded.is_active
        assert loaded.email_verified is True

    @pytest.mark.asyncio
    async def test_verification_token_consumed_once(self, store):
        credential, profile = make_account()
        credential.email_verification_token = "verify-1"
        await store.create_account(credential, profile)

        results = await asyncio.gather(
            store.consume_verification_token(credential.id, "verify-1"),
            store.consume_verification_token(credential.id, "verify-1"),
        )

        assert sorted(results) == [False, True]
        loaded = await store.get_credential(credential.id)
        assert loaded.email_verified is True
        assert loaded.email_verification_token is None
        assert loaded.consumed_verification_token == "verify-1"

    @pytest.mark.asyncio
    async def test_replaced_verification_token_not_consumed(self, store):
        credential, profile = make_account()
        credential.email_verification_token = "verify-1"
        await store.create_account(credential, profile)
        await store.update_credential(credential.id, email_verification_token="verify-2")

        assert await store.consume_verification_token(credential.id, "verify-1") is False
        assert (await store.get_credential(credential.id)).email_verified is False

    @pytest.mark.asyncio
    async def test_reset_token_consumed_once(self, store):
        credential, profile = make_account()
        credential.password_reset_token = "reset-1"
        await store.create_account(credential, profile)

        assert await store.consume_reset_token(credential.id, "reset-1", "new-hash") is True
        assert await store.consume_reset_token(credential.id, "reset-1", "other-hash") is False

        loaded = await store.get_credential(credential.id)
        assert loaded.password_hash == "new-hash"
        assert loaded.password_reset_token is None

class TestRefreshTokens:
    """The refresh token set only changes through its own operations."""

    @pytest.mark.asyncio
    async def test_update_credential_keeps_refresh_tokens(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)
        await store.add_refresh_token(credential.id, "r1")

        await store.update_credential(credential.id, email_verified=True)

        loaded = await store.get_credential(credential.id)
        assert loaded.email_verified is True
        assert loaded.refresh_tokens == {"r1"}

    @pytest.mark.asyncio
    async def test_update_rejects_refresh_tokens(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)

        with pytest.raises(ValueError):
            await store.update_credential(credential.id, refresh_tokens={"forged"})

    @pytest.mark.asyncio
    async def test_rotate(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)
        await store.add_refresh_token(credential.id, "r1")

        assert await store.rotate_refresh_token(credential.id, "r1", "r2") is True
        assert await store.rotate_refresh_token(credential.id, "r1", "r3") is False
        assert (await store.get_credential(credential.id)).refresh_tokens == {"r2"}

    @pytest.mark.asyncio
    async def test_concurrent_rotation(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)
        await store.add_refresh_token(credential.id, "r1")

        results = await asyncio.gather(
            store.rotate_refresh_token(credential.id, "r1", "r2"),
            store.rotate_refresh_token(credential.id, "r1", "r3"),
        )

        assert sorted(results) == [False, True]
        assert len((await store.get_credential(credential.id)).refresh_tokens) == 1

    @pytest.mark.asyncio
    async def test_revoke(self, store):
        credential, profile = make_account()
        await store.create_account(credential, profile)
        await store.add_refresh_token(credential.id, "r1")
        await store.add_refresh_token(credential.id, "r2")

        await store.revoke_refresh_tokens(credential.id)

        assert (await store.get_credential(credential.id)).refresh_tokens == set()
