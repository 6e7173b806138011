from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.billing.errors import FeeSplitInvariantError
from app.billing.types import FeeSplit

_ONE_UNIT = Decimal("1")


def split_amount(total: int, fee_rate: float | Decimal) -> FeeSplit:
    """Splits a minor-unit amount into platform fee and creator earnings.

    The fee is rounded half-up on whole minor units and the creator share is
    always derived as the remainder, so both parts add up to ``total``.
    """
    if isinstance(total, bool) or not isinstance(total, int):
        raise TypeError("total must be an integer amount of minor units")
    if total < 0:
        raise ValueError("total must be non-negative")

    rate = fee_rate if isinstance(fee_rate, Decimal) else Decimal(str(fee_rate))
    if not (Decimal(0) <= rate <= Decimal(1)):
        raise ValueError("fee_rate must be within [0, 1]")

    platform_fee = int((Decimal(total) * rate).quantize(_ONE_UNIT, rounding=ROUND_HALF_UP))
    return FeeSplit(
        total_amount=total,
        platform_fee=platform_fee,
        creator_earnings=total - platform_fee,
    )


def assert_split_invariant(*, total_amount: int, platform_fee: int, creator_earnings: int) -> None:
    if platform_fee < 0 or creator_earnings < 0 or platform_fee + creator_earnings != total_amount:
        raise FeeSplitInvariantError(
            f"fee split broken: {platform_fee} + {creator_earnings} != {total_amount}"
        )
