"""
Platform earnings routes (operator only).
"""

from fastapi import APIRouter, Depends

import structlog

from orrbit.api.dependencies import get_reconciliation_service, require_internal_api_key
from orrbit.api.schemas.common import SuccessResponse, create_success_response
from orrbit.api.schemas.transactions import (
    PlatformEarningsResponse,
    WithdrawRequest,
    WithdrawResponse,
)
from orrbit.services.reconciliation_service import ReconciliationService

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_internal_api_key)])


@router.get(
    "/earnings",
    response_model=SuccessResponse,
    summary="Platform Earnings",
    description="Collected, withdrawn and total platform fees"
)
async def get_platform_earnings(
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
):
    balance = await reconciliation.get_platform_balance()
    payload = PlatformEarningsResponse(
        collected=balance.collected,
        withdrawn=balance.withdrawn,
        total_fees=balance.total_fees,
    )
    return create_success_response(data=payload.model_dump(mode="json"))


@router.post(
    "/earnings/withdraw",
    response_model=SuccessResponse,
    summary="Withdraw Platform Earnings",
    description="Mark collected fees as withdrawn, oldest first"
)
async def withdraw_platform_earnings(
    request: WithdrawRequest,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await reconciliation.withdraw_platform_earnings(
        request.amount, request.destination, request.reference
    )
    payload = WithdrawResponse(
        amount=result.amount,
        destination=result.destination,
        reference=result.reference,
        earning_ids=result.earning_ids,
        remaining_balance=result.remaining_balance,
    )
    return create_success_response(
        data=payload.model_dump(mode="json"),
        message="Platform earnings withdrawn"
    )
