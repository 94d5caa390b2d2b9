"""
Webhook ingestion of confirmed Stellar payments.

Each event is authenticated, filtered, and applied through the
reconciliation service; this module never writes ledger rows itself.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orrbit.api.schemas.webhooks import StellarPaymentEvent
from orrbit.core.config import settings
from orrbit.core.exceptions import (
    DuplicatePaymentError,
    InvalidPayloadError,
    ValidationError,
    WebhookSignatureError,
)
from orrbit.services.ledger_repository import LedgerRepository
from orrbit.services.reconciliation_service import ReconciliationService
from orrbit.utils.validation import StellarValidator

logger = structlog.get_logger(__name__)

_unsigned_warning_logged = False


@dataclass
class WebhookOutcome:
    status: str  # ignored, processed, already_processed, recorded
    reason: Optional[str] = None
    transaction_id: Optional[int] = None


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


class PaymentIngestionService:
    """Push path: turns signed payment events into reconciliation calls."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reconciliation: ReconciliationService,
        webhook_secret: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.reconciliation = reconciliation
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stellar_webhook_secret
        self.logger = logger.bind(service="payment_ingestion")

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Check the X-Signature header against the shared secret.

        Verification is skipped when no secret is configured.
        """
        global _unsigned_warning_logged

        if not self.webhook_secret:
            if not _unsigned_warning_logged:
                self.logger.warning("Webhook secret not configured; signature verification disabled")
                _unsigned_warning_logged = True
            return

        if not signature:
            raise WebhookSignatureError("Missing webhook signature")

        expected = compute_signature(raw_body, self.webhook_secret)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            self.logger.warning("Webhook signature mismatch")
            raise WebhookSignatureError()

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Apply one payment event.

        Raises:
            WebhookSignatureError: signature missing or wrong
            InvalidPayloadError: body is not a valid payment event
        """
        self.verify_signature(raw_body, signature)

        try:
            event = StellarPaymentEvent.model_validate_json(raw_body)
        except PydanticValidationError as e:
            raise InvalidPayloadError(
                "Invalid payment event payload",
                {"errors": e.errors(include_url=False, include_context=False, include_input=False)}
            )

        log = self.logger.bind(tx_hash=event.transaction_hash, event_id=event.id)

        if not event.is_successful_native_payment:
            log.info("Ignoring webhook event", asset_type=event.asset_type)
            return WebhookOutcome(status="ignored", reason="not a successful native payment")

        try:
            amount = StellarValidator.parse_amount(event.amount)
        except ValidationError:
            log.warning("Ignoring webhook event with invalid amount", amount=event.amount)
            return WebhookOutcome(status="ignored", reason="invalid amount")

        tx_hash = event.transaction_hash.lower()

        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            existing = await repo.get_transaction_by_hash(tx_hash)
            creator = await repo.get_creator_by_wallet(event.to_account)
            sender = await repo.get_user_by_wallet(event.from_account)

        if existing is not None:
            result = await self.reconciliation.confirm_payment(tx_hash, amount)
            log.info("Webhook matched stored transaction", status=result.status, transaction_id=result.transaction.id)
            return WebhookOutcome(status=result.status, transaction_id=result.transaction.id)

        if creator is None or not creator.is_active:
            log.info("Ignoring payment to unknown recipient", to=event.to_account)
            return WebhookOutcome(status="ignored", reason="recipient is not a registered creator")

        sender_id = sender.id if sender else None

        if sender_id is not None:
            matched = await self.reconciliation.match_pending_renewal(sender_id, creator.id, amount, tx_hash)
            if matched is not None:
                log.info("Webhook completed renewal request", transaction_id=matched.transaction.id)
                return WebhookOutcome(status=matched.status, transaction_id=matched.transaction.id)

        try:
            result = await self.reconciliation.record_tip(sender_id, creator.id, amount, tx_hash)
        except DuplicatePaymentError as e:
            # Another path recorded this hash between lookup and insert
            log.info("Webhook payment recorded concurrently", transaction_id=e.details.get("transaction_id"))
            return WebhookOutcome(status="already_processed", transaction_id=e.details.get("transaction_id"))

        if result.duplicate:
            return WebhookOutcome(status="already_processed", transaction_id=result.transaction.id)

        log.info("Webhook payment recorded as tip", transaction_id=result.transaction.id, amount=str(amount))
        return WebhookOutcome(status="recorded", transaction_id=result.transaction.id)
