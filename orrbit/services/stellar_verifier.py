"""
Horizon-backed verification of Stellar payments.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from orrbit.core.config import settings, StellarConfig
from orrbit.core.exceptions import ChainVerificationError, PaymentVerificationError

logger = structlog.get_logger(__name__)

AMOUNT_TOLERANCE = Decimal("0.0000001")


@dataclass
class VerifiedPayment:
    from_account: str
    to_account: str
    amount: Decimal


@dataclass
class VerificationResult:
    valid: bool
    payment: Optional[VerifiedPayment] = None
    error: Optional[str] = None


class HorizonVerifier:
    """
    Validates a transaction hash against an expected native payment.

    Only reads Horizon; never submits transactions.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = (base_url or StellarConfig.get_horizon_url()).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.horizon_timeout)
        self.logger = logger.bind(service="horizon_verifier")

    async def verify(
        self,
        tx_hash: str,
        expected_from: Optional[str] = None,
        expected_to: Optional[str] = None,
        expected_amount: Optional[Decimal] = None,
    ) -> VerificationResult:
        """
        Check that a transaction succeeded and contains a matching native payment.

        Raises:
            ChainVerificationError: Horizon unreachable or returned an unexpected status
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                transaction = await self._get_json(session, f"/transactions/{tx_hash}")
                if transaction is None:
                    return VerificationResult(valid=False, error="transaction not found")
                if not transaction.get("successful", False):
                    return VerificationResult(valid=False, error="transaction was not successful")

                operations = await self._get_json(
                    session, f"/transactions/{tx_hash}/operations", params={"limit": 200}
                )
        except asyncio.TimeoutError:
            self.logger.warning("Horizon request timed out", tx_hash=tx_hash)
            raise ChainVerificationError("Horizon request timed out", {"tx_hash": tx_hash})
        except aiohttp.ClientError as e:
            self.logger.error("Horizon request failed", tx_hash=tx_hash, error=str(e))
            raise ChainVerificationError(f"Horizon request failed: {e}", {"tx_hash": tx_hash})

        records: List[Dict[str, Any]] = (operations or {}).get("_embedded", {}).get("records", [])
        payment = self.match_payment(records, expected_from, expected_to, expected_amount)
        if payment is None:
            return VerificationResult(valid=False, error="no matching payment operation found")

        self.logger.debug("Payment verified", tx_hash=tx_hash, amount=str(payment.amount))
        return VerificationResult(valid=True, payment=payment)

    async def require_payment(
        self,
        tx_hash: str,
        expected_from: Optional[str] = None,
        expected_to: Optional[str] = None,
        expected_amount: Optional[Decimal] = None,
    ) -> VerifiedPayment:
        """Like verify(), but raises PaymentVerificationError when the payment does not check out."""
        result = await self.verify(tx_hash, expected_from, expected_to, expected_amount)
        if not result.valid:
            self.logger.warning("Client payment failed verification", tx_hash=tx_hash, reason=result.error)
            raise PaymentVerificationError(tx_hash, result.error or "unverified")
        return result.payment

    async def _get_json(
        self,
        session: aiohttp.ClientSession,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        async with session.get(f"{self.base_url}{path}", params=params) as response:
            if response.status == 404:
                return None
            if response.status != 200:
                raise ChainVerificationError(
                    f"Horizon returned HTTP {response.status}",
                    {"path": path, "status": response.status}
                )
            return await response.json()

    @staticmethod
    def match_payment(
        records: List[Dict[str, Any]],
        expected_from: Optional[str] = None,
        expected_to: Optional[str] = None,
        expected_amount: Optional[Decimal] = None,
    ) -> Optional[VerifiedPayment]:
        """First native payment operation satisfying every given expectation."""
        for op in records:
            if op.get("type") != "payment" or op.get("asset_type") != StellarConfig.NATIVE_ASSET_TYPE:
                continue
            try:
                amount = Decimal(str(op.get("amount")))
            except InvalidOperation:
                continue

            if expected_from and op.get("from") != expected_from:
                continue
            if expected_to and op.get("to") != expected_to:
                continue
            if expected_amount is not None and abs(amount - Decimal(expected_amount)) >= AMOUNT_TOLERANCE:
                continue

            return VerifiedPayment(from_account=op["from"], to_account=op["to"], amount=amount)
        return None


_verifier: Optional[HorizonVerifier] = None


def get_horizon_verifier() -> HorizonVerifier:
    global _verifier
    if _verifier is None:
        _verifier = HorizonVerifier()
    return _verifier
