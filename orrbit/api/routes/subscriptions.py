"""
Subscription routes.
Client-submitted subscribe, renew and cancel calls plus lookups.
"""

from typing import Optional

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
from orrbit.api.schemas.subscriptions import (
    CancelRequest,
    RenewRequest,
    SubscribeRequest,
    SubscriptionPaymentResponse,
    SubscriptionResponse,
)
from orrbit.api.schemas.transactions import TransactionResponse
from orrbit.core.config import settings
from orrbit.core.exceptions import CreatorNotFoundError, SubscriptionNotFoundError
from orrbit.models.subscription import SubscriptionStatus
from orrbit.models.user import User
from orrbit.services.ledger_repository import LedgerRepository, SubscriptionFilter
from orrbit.services.reconciliation_service import PaymentResult, ReconciliationService
from orrbit.services.stellar_verifier import HorizonVerifier

logger = structlog.get_logger(__name__)

router = APIRouter()


def _payment_payload(result: PaymentResult) -> dict:
    return SubscriptionPaymentResponse(
        subscription=SubscriptionResponse.model_validate(result.subscription) if result.subscription else None,
        transaction=TransactionResponse.model_validate(result.transaction),
        duplicate=result.duplicate,
    ).model_dump(mode="json")


@router.post(
    "",
    response_model=SuccessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Subscribe",
    description="Record the first on-chain payment of a new subscription"
)
async def subscribe(
    request: SubscribeRequest,
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

    result = await reconciliation.record_subscription_payment(
        subscriber_id=user.id,
        creator_id=request.creator_id,
        tier_id=request.tier_id,
        gross_amount=request.amount_xlm,
        tx_hash=request.tx_hash,
    )

    logger.info(
        "Subscribe request handled",
        subscriber_id=user.id,
        creator_id=request.creator_id,
        duplicate=result.duplicate,
    )
    return create_success_response(
        data=_payment_payload(result),
        message="Payment already recorded" if result.duplicate else "Subscription created"
    )


@router.post(
    "/{subscription_id}/renew",
    response_model=SuccessResponse,
    summary="Renew Subscription",
    description="Record a renewal payment and advance the billing date"
)
async def renew(
    subscription_id: int,
    request: RenewRequest,
    user: User = Depends(get_current_user),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    verifier: HorizonVerifier = Depends(get_verifier),
):
    if settings.verify_client_payments:
        async with session_factory() as session:
            repo = LedgerRepository(session)
            subscription = await repo.get_subscription(subscription_id)
            if subscription is None or subscription.subscriber_id != user.id:
                raise SubscriptionNotFoundError(subscription_id)
            creator_wallet = await repo.get_creator_wallet(subscription.creator_id)
        await verifier.require_payment(
            request.tx_hash, user.wallet_address, creator_wallet, subscription.amount
        )

    result = await reconciliation.record_renewal_payment(
        subscription_id, request.tx_hash, subscriber_id=user.id
    )
    return create_success_response(
        data=_payment_payload(result),
        message="Payment already recorded" if result.duplicate else "Subscription renewed"
    )


@router.post(
    "/{subscription_id}/cancel",
    response_model=SuccessResponse,
    summary="Cancel Subscription"
)
async def cancel(
    subscription_id: int,
    request: Optional[CancelRequest] = None,
    user: User = Depends(get_current_user),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
):
    subscription = await reconciliation.cancel_subscription(
        subscription_id,
        reason=request.reason if request else None,
        subscriber_id=user.id,
    )
    return create_success_response(
        data=SubscriptionResponse.model_validate(subscription).model_dump(mode="json"),
        message="Subscription cancelled"
    )


@router.get(
    "",
    response_model=PaginatedResponse,
    summary="List Subscriptions",
    description="Subscriptions of the caller, or of the caller's creator profile with as_creator=true"
)
async def list_subscriptions(
    subscription_status: Optional[SubscriptionStatus] = Query(None, alias="status"),
    as_creator: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    async with session_factory() as session:
        repo = LedgerRepository(session)
        filters = SubscriptionFilter(status=subscription_status, page=page, limit=limit)
        if as_creator:
            creator = await repo.get_creator_by_user(user.id)
            if creator is None:
                return create_paginated_response([], 0, page, limit)
            filters.creator_id = creator.id
        else:
            filters.subscriber_id = user.id
        rows, total = await repo.list_subscriptions(filters)

    data = [SubscriptionResponse.model_validate(row).model_dump(mode="json") for row in rows]
    return create_paginated_response(data, total, page, limit)


@router.get(
    "/{subscription_id}",
    response_model=SuccessResponse,
    summary="Get Subscription"
)
async def get_subscription(
    subscription_id: int,
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    async with session_factory() as session:
        repo = LedgerRepository(session)
        subscription = await repo.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        creator = await repo.get_creator(subscription.creator_id)

    # Visible to the subscriber and to the creator
    if user.id not in (subscription.subscriber_id, creator.user_id if creator else None):
        raise SubscriptionNotFoundError(subscription_id)

    return create_success_response(
        data=SubscriptionResponse.model_validate(subscription).model_dump(mode="json")
    )
