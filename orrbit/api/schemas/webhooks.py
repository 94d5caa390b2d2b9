"""
Webhook payload and response schemas.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import TxHashField


class StellarPaymentEvent(BaseModel):
    """Payment operation pushed by the Horizon watcher."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    paging_token: Optional[str] = None
    transaction_successful: bool
    source_account: str
    asset_type: str
    from_account: str = Field(alias="from")
    to_account: str = Field(alias="to")
    amount: str
    transaction_hash: str = TxHashField

    @property
    def is_successful_native_payment(self) -> bool:
        return self.transaction_successful and self.asset_type == "native"


class WebhookOutcomeResponse(BaseModel):
    status: str = Field(description="ignored, processed, already_processed or recorded")
    reason: Optional[str] = None
    transaction_id: Optional[int] = None


class WorkerRunResponse(BaseModel):
    """Summary of one renewal worker pass."""
    skipped: bool
    started_at: str
    finished_at: Optional[str] = None
    phases: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    daily_stats: Dict[str, Any] = Field(default_factory=dict)
