"""
Subscription-related Pydantic schemas for API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from orrbit.models.subscription import SubscriptionStatus
from .common import TxHash, XlmAmount
from .transactions import TransactionResponse


class SubscribeRequest(BaseModel):
    """First payment for a new subscription."""
    model_config = ConfigDict(populate_by_name=True)

    creator_id: int = Field(alias="creatorId", gt=0)
    tier_id: Optional[int] = Field(default=None, alias="tierId", gt=0)
    amount_xlm: XlmAmount = Field(alias="amountXlm")
    tx_hash: TxHash = Field(alias="txHash")


class RenewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: TxHash = Field(alias="txHash")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class SubscriptionResponse(BaseModel):
    """Subscription as stored in the ledger."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscriber_id: int
    creator_id: int
    tier_id: Optional[int] = None
    amount: Decimal
    status: SubscriptionStatus
    started_at: datetime
    next_billing_at: datetime
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    expired_at: Optional[datetime] = None


class SubscriptionPaymentResponse(BaseModel):
    """Result of a subscribe or renew call."""
    subscription: Optional[SubscriptionResponse] = None
    transaction: TransactionResponse
    duplicate: bool = False
