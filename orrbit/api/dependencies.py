"""
API dependencies for FastAPI endpoints.
Provides caller identity, internal key checks and service wiring.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import structlog

from orrbit.core.config import settings
from orrbit.core.database import get_session_maker
from orrbit.core.exceptions import AuthenticationError
from orrbit.models.user import User
from orrbit.notifications.notification_service import get_notification_service
from orrbit.scheduler.main import build_renewal_worker
from orrbit.scheduler.renewal_worker import RenewalWorker
from orrbit.services.ledger_repository import LedgerRepository
from orrbit.services.payment_ingestion import PaymentIngestionService
from orrbit.services.reconciliation_service import ReconciliationService
from orrbit.services.stellar_verifier import HorizonVerifier, get_horizon_verifier
from orrbit.utils.validation import StellarValidator


logger = structlog.get_logger(__name__)


# Security scheme for wallet authentication
wallet_auth_scheme = HTTPBearer(auto_error=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory dependency."""
    return get_session_maker()


def get_reconciliation_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
) -> ReconciliationService:
    return ReconciliationService(session_factory, notifications=get_notification_service())


def get_ingestion_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> PaymentIngestionService:
    return PaymentIngestionService(session_factory, reconciliation)


def get_verifier() -> HorizonVerifier:
    return get_horizon_verifier()


async def get_renewal_worker(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> RenewalWorker:
    return await build_renewal_worker(session_factory, reconciliation)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(wallet_auth_scheme),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> User:
    """Resolve the Bearer wallet address to a registered user."""
    if not credentials:
        logger.warning("Missing wallet authentication")
        raise AuthenticationError("Wallet authentication required")

    wallet = credentials.credentials.strip()
    if not StellarValidator.is_valid_account(wallet):
        logger.warning("Invalid wallet token provided", token=wallet[:8] + "...")
        raise AuthenticationError("Invalid wallet address")

    async with session_factory() as session:
        user = await LedgerRepository(session).get_user_by_wallet(wallet)

    if user is None:
        logger.info("Unknown wallet", wallet=wallet)
        raise AuthenticationError("Wallet is not registered")

    return user


async def require_internal_api_key(
    api_key: Optional[str] = Header(None, alias="X-API-Key")
) -> None:
    """Guard for internal endpoints called by schedulers and operators."""
    if not settings.internal_api_key:
        logger.warning("Internal endpoint called but INTERNAL_API_KEY is not configured")
        raise AuthenticationError("Internal API key not configured")

    if not api_key or not hmac.compare_digest(api_key, settings.internal_api_key):
        logger.warning("Invalid internal API key")
        raise AuthenticationError("Invalid API key")
