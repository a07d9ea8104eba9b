"""
Identity - Wiring

Builds the identity service and its collaborators from settings, and
exposes them as FastAPI dependencies for the API layer. startup() and
shutdown() are meant for the host application's lifespan hooks.
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db, init_db, dispose_engine
from email_integration import EmailClient, EmailSender
from logging_config import setup_logging

from .notifications import NotificationDispatcher
from .passwords import PasswordHasher
from .service import IdentityService
from .sql_store import SQLAlchemyIdentityStore
from .store import IdentityStore
from .tokens import TokenCodec

logger = logging.getLogger(__name__)


def build_token_codec(settings: Settings) -> TokenCodec:
    return TokenCodec(
        secret_key=settings.JWT_SECRET_KEY,
        refresh_secret_key=settings.JWT_REFRESH_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        issuer=settings.JWT_ISSUER,
        audience=settings.JWT_AUDIENCE,
        access_token_ttl=settings.access_token_ttl,
        refresh_token_ttl=settings.refresh_token_ttl,
        email_verification_ttl=settings.email_verification_ttl,
        password_reset_ttl=settings.password_reset_ttl,
    )


def build_notification_dispatcher(settings: Settings) -> NotificationDispatcher:
    client = EmailClient(api_key=settings.EMAIL_API_KEY, from_address=settings.EMAIL_FROM_ADDRESS)
    sender = EmailSender(client=client, product_name=settings.PRODUCT_NAME)
    return NotificationDispatcher(sender, frontend_url=settings.FRONTEND_URL)


@lru_cache()
def get_token_codec() -> TokenCodec:
    return build_token_codec(get_settings())


@lru_cache()
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(rounds=get_settings().BCRYPT_ROUNDS)


@lru_cache()
def get_notification_dispatcher() -> NotificationDispatcher:
    return build_notification_dispatcher(get_settings())


def build_identity_service(
    store: IdentityStore,
    codec: Optional[TokenCodec] = None,
    notifier: Optional[NotificationDispatcher] = None,
    hasher: Optional[PasswordHasher] = None,
) -> IdentityService:
    """Identity service over the given store with process-wide collaborators by default."""
    return IdentityService(
        store=store,
        codec=codec or get_token_codec(),
        notifier=notifier or get_notification_dispatcher(),
        hasher=hasher or get_password_hasher(),
    )


async def get_identity_service(db: AsyncSession = Depends(get_db)) -> IdentityService:
    """FastAPI dependency: identity service bound to the request's session"""
    return build_identity_service(SQLAlchemyIdentityStore(db))


# ==================== LIFECYCLE ====================

async def startup(settings: Optional[Settings] = None) -> None:
    """Configure logging and make sure the identity tables exist."""
    settings = settings or get_settings()
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    await init_db()
    logger.info(f"Identity service started ({settings.ENVIRONMENT})")


async def shutdown() -> None:
    """Let outstanding notifications finish, then close the connection pool."""
    if get_notification_dispatcher.cache_info().currsize:
        dispatcher = get_notification_dispatcher()
        if dispatcher.pending:
            logger.info(f"Waiting for {dispatcher.pending} outstanding notifications")
        await dispatcher.drain()
    await dispose_engine()
    logger.info("Identity service stopped")
