"""Pure pricing and payment-threshold functions for LSPS1 orders.

These functions contain business rules that can be tested in isolation
without dependencies on repositories or the Lightning node. Satoshi
arithmetic is done with ``decimal.Decimal``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_CEILING, Decimal
from typing import Union

FLAT_FEE_SAT = Decimal("5000")
FEE_PERCENT = Decimal("0.1")
BLOCK_INTERVAL = timedelta(minutes=10)

SatAmount = Union[int, str, Decimal]


def compute_fee_sat(client_balance_sat: SatAmount) -> int:
    """Fee charged for an order. Pure function.

    ``client_balance_sat * 0.1 / 100 + 5000``, rounded up to a whole satoshi.
    """
    amount = Decimal(client_balance_sat)
    fee = amount * FEE_PERCENT / Decimal(100) + FLAT_FEE_SAT
    return int(fee.to_integral_value(rounding=ROUND_CEILING))


def compute_order_total_sat(client_balance_sat: SatAmount) -> int:
    """Total the client pays: the pushed balance plus the fee. Pure function."""
    return int(Decimal(client_balance_sat)) + compute_fee_sat(client_balance_sat)


def meets_payment_threshold(
    *,
    amount_sat: SatAmount,
    num_confirmations: int,
    order_total_sat: SatAmount,
    min_confirmations: int,
) -> bool:
    """Whether an on-chain payment settles the order. Pure function."""
    return num_confirmations >= min_confirmations and Decimal(
        amount_sat
    ) >= Decimal(order_total_sat)


def channel_expiry(funded_at: datetime, channel_expiry_blocks: int) -> datetime:
    """Expiry timestamp assuming one block every ten minutes."""
    return funded_at + BLOCK_INTERVAL * channel_expiry_blocks
