"""LSP domain entities: Order, Payment, Channel and HoldInvoiceSecret."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer

ORDER_LIFETIME = timedelta(hours=24)
MIN_FEE_FOR_0CONF = 253


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderState(str, Enum):
    CREATED = "CREATED"


class PaymentState(str, Enum):
    EXPECT_PAYMENT = "EXPECT_PAYMENT"
    HOLD = "HOLD"
    PAID = "PAID"

    @property
    def rank(self) -> int:
        return _PAYMENT_STATE_ORDER.index(self)


_PAYMENT_STATE_ORDER = [
    PaymentState.EXPECT_PAYMENT,
    PaymentState.HOLD,
    PaymentState.PAID,
]


class OnchainPayment(BaseModel):
    """A wallet output observed at the order's on-chain address."""

    outpoint: str
    sat: int = Field(..., ge=0)
    confirmed: bool = False

    @field_serializer("sat")
    def serialize_sat(self, value: int) -> str:
        return str(value)

    @property
    def txid(self) -> str:
        return self.outpoint.split(":", 1)[0]

    def confirm(self) -> None:
        self.confirmed = True


class Payment(BaseModel):
    """Settlement progress of an order's cost."""

    state: PaymentState = PaymentState.EXPECT_PAYMENT
    fee_total_sat: int = Field(..., ge=0)
    order_total_sat: int = Field(..., ge=0)
    bolt11_invoice: str
    onchain_address: str
    min_onchain_payment_confirmations: int = Field(..., ge=0)
    min_fee_for_0conf: int = MIN_FEE_FOR_0CONF
    onchain_payment: Optional[OnchainPayment] = None

    @field_serializer("fee_total_sat", "order_total_sat")
    def serialize_sat(self, value: int) -> str:
        return str(value)

    def advance_to(self, state: PaymentState) -> None:
        """Move forward to ``state``. Regressions are rejected."""
        if state.rank < self.state.rank:
            raise ValueError(
                f"Payment state cannot move from {self.state.value} to {state.value}"
            )
        self.state = state


class Channel(BaseModel):
    """Channel funded for a paid order."""

    funded_at: datetime
    funding_outpoint: str
    expires_at: datetime

    @field_serializer("funded_at", "expires_at")
    def serialize_datetime(self, value: datetime) -> str:
        return value.isoformat()


class Order(BaseModel):
    """A client's channel-purchase request and its fulfillment progress."""

    order_id: str = Field(default_factory=lambda: str(uuid4()))
    lsp_balance_sat: int = Field(..., ge=0)
    client_balance_sat: int = Field(..., ge=0)
    client_node_pubkey: str
    required_channel_confirmations: Optional[int] = None
    funding_confirms_within_blocks: Optional[int] = None
    channel_expiry_blocks: Optional[int] = None
    token: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    expires_at: Optional[datetime] = None
    announce_channel: bool = False
    order_state: OrderState = OrderState.CREATED
    payment: Payment
    channel: Optional[Channel] = None

    def model_post_init(self, __context: object) -> None:
        if self.expires_at is None:
            self.expires_at = self.created_at + ORDER_LIFETIME

    @field_serializer("lsp_balance_sat", "client_balance_sat")
    def serialize_sat(self, value: int) -> str:
        return str(value)

    @field_serializer("created_at", "expires_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    @property
    def is_paid_or_held(self) -> bool:
        return self.payment.state in (PaymentState.HOLD, PaymentState.PAID)

    def set_channel(self, channel: Channel) -> None:
        """Record the funded channel. A channel is recorded only once."""
        if self.channel is not None:
            raise ValueError("Channel already recorded for this order")
        if not self.is_paid_or_held:
            raise ValueError("Channel requires a held or paid order")
        self.channel = channel


class HoldInvoiceSecret(BaseModel):
    """Preimage and payment hash of an order's hold invoice (never exposed)."""

    order_id: str
    preimage_hex: str
    payment_hash_hex: str

    @property
    def preimage(self) -> bytes:
        return bytes.fromhex(self.preimage_hex)

    @property
    def payment_hash(self) -> bytes:
        return bytes.fromhex(self.payment_hash_hex)
