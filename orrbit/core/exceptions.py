"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from decimal import Decimal
from typing import Any, Optional, Dict


class OrrbitException(Exception):
    """Base exception class for Orrbit billing backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(OrrbitException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(OrrbitException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class SchedulerError(OrrbitException):
    """Raised when there's a scheduler error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SCHEDULER_ERROR", details)


class ValidationError(OrrbitException):
    """Raised when data validation fails."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR"
    ):
        super().__init__(message, code, details)


class NotFoundError(OrrbitException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class AuthenticationError(OrrbitException):
    """Raised when authentication fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHENTICATION_ERROR", details)


class ConflictError(OrrbitException):
    """Raised when a write collides with existing ledger state."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class ExternalServiceError(OrrbitException):
    """Raised when an external service error occurs."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "EXTERNAL_SERVICE_ERROR"
    ):
        super().__init__(message, code, details)


# Lookup failures
class SubscriptionNotFoundError(NotFoundError):
    """Raised when a subscription is not found."""

    def __init__(self, subscription_id: int):
        super().__init__(
            f"Subscription not found: {subscription_id}",
            {"subscription_id": subscription_id}
        )


class CreatorNotFoundError(NotFoundError):
    """Raised when a creator is not found or inactive."""

    def __init__(self, creator_id: int):
        super().__init__(
            f"Creator not found: {creator_id}",
            {"creator_id": creator_id}
        )


class TierNotFoundError(NotFoundError):
    """Raised when a tier does not exist for the creator."""

    def __init__(self, tier_id: int, creator_id: int):
        super().__init__(
            f"Tier {tier_id} not found for creator {creator_id}",
            {"tier_id": tier_id, "creator_id": creator_id}
        )


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction is not found."""

    def __init__(self, reference: Any):
        super().__init__(
            f"Transaction not found: {reference}",
            {"reference": reference}
        )


# Webhook authentication
class WebhookSignatureError(AuthenticationError):
    """Raised when a webhook signature does not match the shared secret."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class InvalidPayloadError(ValidationError):
    """Raised when an inbound payload cannot be parsed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="INVALID_PAYLOAD")


# Ledger business rules
class AlreadySubscribedError(ConflictError):
    """Raised when a live subscription exists for the subscriber/creator pair."""

    def __init__(self, subscriber_id: int, creator_id: int):
        super().__init__(
            "Already subscribed to this creator",
            "ALREADY_SUBSCRIBED",
            {"subscriber_id": subscriber_id, "creator_id": creator_id}
        )


class DuplicatePaymentError(ConflictError):
    """Raised when a tx hash is already recorded for a different payment."""

    def __init__(self, tx_hash: str, existing_transaction_id: int):
        super().__init__(
            "Transaction hash already recorded for another payment",
            "DUPLICATE_PAYMENT",
            {"tx_hash": tx_hash, "transaction_id": existing_transaction_id}
        )


class NotActiveError(ValidationError):
    """Raised when a subscription is not in a state that allows the operation."""

    def __init__(self, subscription_id: int, status: str):
        super().__init__(
            f"Subscription {subscription_id} is {status}",
            {"subscription_id": subscription_id, "status": status},
            code="NOT_ACTIVE"
        )


class InsufficientPlatformBalanceError(ValidationError):
    """Raised when a withdrawal exceeds collected platform fees."""

    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient platform balance: requested {requested}, available {available}",
            {"requested": str(requested), "available": str(available)},
            code="INSUFFICIENT_PLATFORM_BALANCE"
        )


# Chain verification
class ChainVerificationError(ExternalServiceError):
    """Raised when the chain cannot be queried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="CHAIN_VERIFICATION_ERROR")


class PaymentVerificationError(OrrbitException):
    """Raised when a submitted payment does not match the chain record."""

    def __init__(self, tx_hash: str, reason: str):
        super().__init__(
            f"Payment verification failed: {reason}",
            "PAYMENT_VERIFICATION_FAILED",
            {"tx_hash": tx_hash, "reason": reason}
        )
