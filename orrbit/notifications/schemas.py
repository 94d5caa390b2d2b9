"""
Notification payloads and WebSocket message schemas.

Every notification kind has its own payload model, discriminated on `type`,
so the stored JSON can be parsed back into a typed value.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from orrbit.utils.billing_calendar import utcnow


class NotificationKind(str, Enum):
    NEW_SUBSCRIBER = "new_subscriber"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    TIP_RECEIVED = "tip_received"
    RENEWAL_REMINDER = "renewal_reminder"
    RENEWAL_DUE = "renewal_due"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIBER_EXPIRED = "subscriber_expired"
    TRANSACTION_CONFIRMED = "transaction_confirmed"
    PAYMENT_RECEIVED = "payment_received"
    RENEWAL_CONFIRMED = "renewal_confirmed"


def _xlm(amount: Decimal) -> str:
    return f"{amount.normalize():f} XLM"


class NotificationPayloadBase(BaseModel):
    """Shared behaviour of notification payloads."""

    def title(self) -> str:
        raise NotImplementedError

    def message(self) -> str:
        raise NotImplementedError

    def dedup_key(self) -> Optional[str]:
        """Key for one-time notifications; None means always insert."""
        return None

    @property
    def subscription_ref(self) -> Optional[int]:
        return getattr(self, "subscription_id", None)


class NewSubscriberPayload(NotificationPayloadBase):
    type: Literal["new_subscriber"] = "new_subscriber"
    subscription_id: int
    subscriber_id: int
    tier_id: Optional[int] = None
    amount: Decimal

    def title(self) -> str:
        return "New Subscriber"

    def message(self) -> str:
        return f"You have a new subscriber paying {_xlm(self.amount)} per period"


class SubscriptionCancelledPayload(NotificationPayloadBase):
    type: Literal["subscription_cancelled"] = "subscription_cancelled"
    subscription_id: int
    subscriber_id: int
    reason: Optional[str] = None

    def title(self) -> str:
        return "Subscription Cancelled"

    def message(self) -> str:
        if self.reason:
            return f"A subscriber cancelled their subscription: {self.reason}"
        return "A subscriber cancelled their subscription"


class TipReceivedPayload(NotificationPayloadBase):
    type: Literal["tip_received"] = "tip_received"
    transaction_id: int
    sender_id: Optional[int] = None
    amount: Decimal
    tip_message: Optional[str] = None

    def title(self) -> str:
        return "Tip Received"

    def message(self) -> str:
        return f"You received a tip of {_xlm(self.amount)}"


class RenewalReminderPayload(NotificationPayloadBase):
    type: Literal["renewal_reminder"] = "renewal_reminder"
    subscription_id: int
    creator_id: int
    days_until: int
    amount: Decimal
    next_billing_at: datetime

    def title(self) -> str:
        return "Subscription Renewal Reminder"

    def message(self) -> str:
        unit = "day" if self.days_until == 1 else "days"
        return f"Your subscription renews in {self.days_until} {unit} for {_xlm(self.amount)}"

    def dedup_key(self) -> Optional[str]:
        # One reminder per threshold per billing cycle
        return (
            f"renewal_reminder:{self.subscription_id}:{self.days_until}:"
            f"{self.next_billing_at:%Y-%m-%d}"
        )


class RenewalDuePayload(NotificationPayloadBase):
    type: Literal["renewal_due"] = "renewal_due"
    subscription_id: int
    creator_id: int
    transaction_id: int
    amount: Decimal

    def title(self) -> str:
        return "Subscription Renewal Due"

    def message(self) -> str:
        return f"Your subscription renewal of {_xlm(self.amount)} is due"


class SubscriptionExpiredPayload(NotificationPayloadBase):
    type: Literal["subscription_expired"] = "subscription_expired"
    subscription_id: int
    creator_id: int

    def title(self) -> str:
        return "Subscription Expired"

    def message(self) -> str:
        return "Your subscription expired after the grace period without a renewal payment"


class SubscriberExpiredPayload(NotificationPayloadBase):
    type: Literal["subscriber_expired"] = "subscriber_expired"
    subscription_id: int
    subscriber_id: int

    def title(self) -> str:
        return "Subscriber Expired"

    def message(self) -> str:
        return "A subscription to your content expired without renewal"


class TransactionConfirmedPayload(NotificationPayloadBase):
    type: Literal["transaction_confirmed"] = "transaction_confirmed"
    transaction_id: int
    tx_hash: str
    amount: Decimal

    def title(self) -> str:
        return "Transaction Confirmed"

    def message(self) -> str:
        return f"Your payment of {_xlm(self.amount)} has been confirmed"


class PaymentReceivedPayload(NotificationPayloadBase):
    type: Literal["payment_received"] = "payment_received"
    transaction_id: int
    tx_hash: str
    amount: Decimal
    sender_id: Optional[int] = None

    def title(self) -> str:
        return "Payment Received"

    def message(self) -> str:
        return f"You received a payment of {_xlm(self.amount)}"


class RenewalConfirmedPayload(NotificationPayloadBase):
    type: Literal["renewal_confirmed"] = "renewal_confirmed"
    subscription_id: int
    transaction_id: int
    subscriber_id: int
    next_billing_at: datetime

    def title(self) -> str:
        return "Subscription Renewed"

    def message(self) -> str:
        return f"A subscription was renewed until {self.next_billing_at:%Y-%m-%d}"


NotificationPayload = Annotated[
    Union[
        NewSubscriberPayload,
        SubscriptionCancelledPayload,
        TipReceivedPayload,
        RenewalReminderPayload,
        RenewalDuePayload,
        SubscriptionExpiredPayload,
        SubscriberExpiredPayload,
        TransactionConfirmedPayload,
        PaymentReceivedPayload,
        RenewalConfirmedPayload,
    ],
    Field(discriminator="type"),
]

_payload_adapter: TypeAdapter = TypeAdapter(NotificationPayload)


def parse_payload(data: Dict[str, Any]) -> NotificationPayloadBase:
    """Rebuild a typed payload from its stored JSON form."""
    return _payload_adapter.validate_python(data)


class MessageType(str, Enum):
    """WebSocket message types."""
    NOTIFICATION = "notification"
    CONNECTION_STATUS = "connection_status"
    PONG = "pong"
    ERROR = "error"


class WebSocketMessage(BaseModel):
    """Base WebSocket message schema."""
    type: MessageType
    timestamp: str = Field(default_factory=lambda: utcnow().isoformat())
    data: Dict[str, Any] = Field(default_factory=dict)


class NotificationMessage(WebSocketMessage):
    """Stored notification pushed to a connected user."""
    type: MessageType = MessageType.NOTIFICATION
    data: Dict[str, Any] = Field(
        description="Notification id, kind, title, message and payload"
    )


class ConnectionStatusMessage(WebSocketMessage):
    type: MessageType = MessageType.CONNECTION_STATUS


class PongMessage(WebSocketMessage):
    type: MessageType = MessageType.PONG


class ErrorMessage(WebSocketMessage):
    """Error message schema."""
    type: MessageType = MessageType.ERROR
    data: Dict[str, Any] = Field(
        description="Error information including code and description"
    )
