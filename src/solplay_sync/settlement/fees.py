"""Platform fee split.

One policy covers both batch settlements and legacy per-chunk payments:
``platform_fee = floor(total * fee_bps / 10_000)`` and the creator receives
the remainder, so ``creator_amount + platform_fee == total_payment`` always.
"""

from __future__ import annotations

from dataclasses import dataclass

BASIS_POINTS = 10_000


@dataclass(slots=True, frozen=True)
class PaymentSplit:
    total_payment: int
    platform_fee: int
    creator_amount: int


def split_payment(chunk_count: int, price_per_chunk: int, fee_bps: int) -> PaymentSplit:
    """Price ``chunk_count`` chunks and split the total between platform and creator.

    Raises:
        ValueError: On negative counts/prices or a fee outside 0..10000 bps.
    """
    if chunk_count < 0 or price_per_chunk < 0:
        raise ValueError("chunk_count and price_per_chunk must be non-negative")
    if not 0 <= fee_bps <= BASIS_POINTS:
        raise ValueError(f"fee_bps must be within 0..{BASIS_POINTS}, got {fee_bps}")

    total = chunk_count * price_per_chunk
    fee = total * fee_bps // BASIS_POINTS
    return PaymentSplit(total_payment=total, platform_fee=fee, creator_amount=total - fee)
