"""
Transaction routes: tips and the caller's payment history.
"""

from typing import Optional

from dateutil.relativedelta import relativedelta
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import structlog

from orrbit.api.dependencies import (
    get_current_user,
    get_reconciliation_service,
    get_session_factory,
    get_verifier,
)
from orrbit.api.schemas.common import (
    PaginatedResponse,
    SuccessResponse,
    create_paginated_response,
    create_success_response,
)
from orrbit.api.schemas.transactions import (
    TipRequest,
    TipResponse,
    TransactionResponse,
    TransactionStatsResponse,
)
from orrbit.core.config import settings
from orrbit.core.exceptions import CreatorNotFoundError, TransactionNotFoundError
from orrbit.models.transaction import TransactionStatus, TransactionType
from orrbit.models.user import User
from orrbit.services.ledger_repository import LedgerRepository, TransactionFilter
from orrbit.services.reconciliation_service import ReconciliationService
from orrbit.services.stellar_verifier import HorizonVerifier
from orrbit.utils.billing_calendar import start_of_month, utcnow

logger = structlog.get_logger(__name__)

router = APIRouter()

STATS_MONTHS = 6


@router.post(
    "/tip",
    response_model=SuccessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send Tip",
    description="Record a one-off on-chain payment to a creator"
)
async def tip(
    request: TipRequest,
    user: User = Depends(get_current_user),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    verifier: HorizonVerifier = Depends(get_verifier),
):
    if settings.verify_client_payments:
        async with session_factory() as session:
            creator_wallet = await LedgerRepository(session).get_creator_wallet(request.creator_id)
        if creator_wallet is None:
            raise CreatorNotFoundError(request.creator_id)
        await verifier.require_payment(
            request.tx_hash, user.wallet_address, creator_wallet, request.amount_xlm
        )

    result = await reconciliation.record_tip(
        sender_id=user.id,
        creator_id=request.creator_id,
        amount=request.amount_xlm,
        tx_hash=request.tx_hash,
        message=request.message,
    )

    payload = TipResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        duplicate=result.duplicate,
    )
    return create_success_response(
        data=payload.model_dump(mode="json"),
        message="Payment already recorded" if result.duplicate else "Tip recorded"
    )


@router.get(
    "",
    response_model=PaginatedResponse,
    summary="List Transactions",
    description="Transactions sent or received by the caller"
)
async def list_transactions(
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    subscription_id: Optional[int] = Query(None, ge=1),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    filters = TransactionFilter(
        user_id=user.id,
        subscription_id=subscription_id,
        type=transaction_type,
        status=transaction_status,
        page=page,
        limit=limit,
    )
    async with session_factory() as session:
        rows, total = await LedgerRepository(session).list_transactions(filters)

    data = [TransactionResponse.model_validate(row).model_dump(mode="json") for row in rows]
    return create_paginated_response(data, total, page, limit)


@router.get(
    "/stats",
    response_model=SuccessResponse,
    summary="Transaction Stats",
    description="Earnings, spending and a monthly breakdown for the caller"
)
async def transaction_stats(
    months: int = Query(STATS_MONTHS, ge=1, le=24),
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    since = start_of_month(utcnow()) - relativedelta(months=months - 1)
    async with session_factory() as session:
        stats = await LedgerRepository(session).user_transaction_stats(user.id, since)

    payload = TransactionStatsResponse.model_validate(stats)
    return create_success_response(data=payload.model_dump(mode="json"))


@router.get(
    "/{transaction_id}",
    response_model=SuccessResponse,
    summary="Get Transaction",
    description="A single transaction sent or received by the caller"
)
async def get_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    async with session_factory() as session:
        transaction = await LedgerRepository(session).get_transaction_for_party(transaction_id, user.id)
    if transaction is None:
        raise TransactionNotFoundError(transaction_id)

    return create_success_response(
        data=TransactionResponse.model_validate(transaction).model_dump(mode="json")
    )
