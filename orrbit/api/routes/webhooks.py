"""
Webhook routes.

Inbound chain payment events and the internal renewal trigger.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

import structlog

from orrbit.api.dependencies import get_ingestion_service, get_renewal_worker, require_internal_api_key
from orrbit.api.schemas.webhooks import WebhookOutcomeResponse, WorkerRunResponse
from orrbit.scheduler.renewal_worker import RenewalWorker
from orrbit.services.payment_ingestion import PaymentIngestionService
from orrbit.utils.billing_calendar import utcnow

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/stellar",
    response_model=WebhookOutcomeResponse,
    summary="Stellar Payment Webhook",
    description="Signed payment event pushed by the Horizon watcher"
)
async def stellar_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    ingestion: PaymentIngestionService = Depends(get_ingestion_service),
):
    # Signature covers the exact bytes received
    raw_body = await request.body()
    outcome = await ingestion.handle_webhook(raw_body, x_signature)
    return WebhookOutcomeResponse(
        status=outcome.status,
        reason=outcome.reason,
        transaction_id=outcome.transaction_id,
    )


@router.post(
    "/subscription-renewal",
    response_model=WorkerRunResponse,
    dependencies=[Depends(require_internal_api_key)],
    summary="Run Renewal Worker",
    description="Run one renewal pass; called by an external scheduler"
)
async def run_renewal_worker(worker: RenewalWorker = Depends(get_renewal_worker)):
    logger.info("Renewal pass triggered via webhook")
    report = await worker.run()
    return WorkerRunResponse(**report.to_dict())


@router.get("/health", summary="Webhook Health")
async def webhook_health():
    return {"status": "ok", "timestamp": utcnow().isoformat()}
