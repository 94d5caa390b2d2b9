"""
Transaction and platform earnings schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from orrbit.models.transaction import TransactionStatus, TransactionType
from .common import StellarAccountField, TxHash, XlmAmount


class TipRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    creator_id: int = Field(alias="creatorId", gt=0)
    amount_xlm: XlmAmount = Field(alias="amountXlm")
    tx_hash: TxHash = Field(alias="txHash")
    message: Optional[str] = Field(default=None, max_length=500)


class TransactionResponse(BaseModel):
    """Ledger transaction with its stored fee split."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: Optional[int] = None
    recipient_id: int
    subscription_id: Optional[int] = None
    type: TransactionType
    amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    tx_hash: Optional[str] = None
    status: TransactionStatus
    memo: Optional[str] = None
    settled_at: Optional[datetime] = None
    created_at: datetime


class TipResponse(BaseModel):
    transaction: TransactionResponse
    duplicate: bool = False


class PlatformEarningsResponse(BaseModel):
    collected: Decimal
    withdrawn: Decimal
    total_fees: Decimal


class WithdrawRequest(BaseModel):
    amount: XlmAmount
    destination: str = StellarAccountField
    reference: Optional[str] = Field(default=None, max_length=128)


class WithdrawResponse(BaseModel):
    amount: Decimal
    destination: str
    reference: str
    earning_ids: List[int]
    remaining_balance: Decimal


class EarningsSummary(BaseModel):
    total: Decimal
    subscriptions: Decimal
    tips: Decimal


class SpendingSummary(BaseModel):
    total: Decimal
    transaction_count: int


class MonthlyActivity(BaseModel):
    month: str = Field(description="Calendar month as YYYY-MM")
    earnings: Decimal
    spent: Decimal


class TransactionStatsResponse(BaseModel):
    """Completed-payment totals for the caller, newest month first."""
    earnings: EarningsSummary
    spent: SpendingSummary
    monthly: List[MonthlyActivity]
