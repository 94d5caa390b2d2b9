"""
Stellar data validation utilities.
Provides validation functions for account ids, transaction hashes and amounts.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from orrbit.core.config import StellarConfig
from orrbit.core.exceptions import ValidationError


logger = structlog.get_logger(__name__)

STELLAR_ACCOUNT_RE = re.compile(r"^G[A-Z2-7]{55}$")
TX_HASH_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class StellarValidator:
    """Validator for Stellar ledger data."""

    @staticmethod
    def is_valid_account(address: Optional[str]) -> bool:
        """
        Validate a Stellar account id (StrKey 'G...' public key).

        Args:
            address: String to validate

        Returns:
            True if valid, False otherwise
        """
        return bool(address) and STELLAR_ACCOUNT_RE.match(address) is not None

    @staticmethod
    def is_valid_tx_hash(tx_hash: Optional[str]) -> bool:
        """
        Validate a transaction hash (64 hex characters).

        Args:
            tx_hash: String to validate

        Returns:
            True if valid, False otherwise
        """
        return bool(tx_hash) and TX_HASH_RE.match(tx_hash) is not None

    @staticmethod
    def normalize_tx_hash(tx_hash: str) -> str:
        """Lower-case a hash after validating it."""
        if not StellarValidator.is_valid_tx_hash(tx_hash):
            raise ValidationError(
                "Transaction hash must be 64 hex characters",
                {"tx_hash": tx_hash}
            )
        return tx_hash.lower()

    @staticmethod
    def parse_amount(value: Any) -> Decimal:
        """
        Parse a native-asset amount into a Decimal with 7 decimal places.

        Raises:
            ValidationError: if the value is not a positive number or carries
                more precision than the ledger supports
        """
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError("Amount must be a number", {"amount": str(value)})

        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Amount must be positive", {"amount": str(value)})

        if amount != amount.quantize(StellarConfig.AMOUNT_QUANTUM):
            raise ValidationError(
                f"Amount supports at most {StellarConfig.AMOUNT_DECIMALS} decimal places",
                {"amount": str(value)}
            )

        return amount.quantize(StellarConfig.AMOUNT_QUANTUM)
