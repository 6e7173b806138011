from __future__ import annotations

from decimal import Decimal

import pytest

from app.billing.errors import FeeSplitInvariantError
from app.billing.fees import assert_split_invariant, split_amount


def test_split_amount_rounds_platform_fee_half_up() -> None:
    split = split_amount(1999, 0.30)

    assert split.platform_fee == 600
    assert split.creator_earnings == 1399
    assert split.platform_fee + split.creator_earnings == 1999


@pytest.mark.parametrize(
    ("total", "rate", "expected_fee"),
    [
        (0, 0.30, 0),
        (1000, 0.0, 0),
        (1000, 1.0, 1000),
        (5, 0.5, 3),
        (3, 0.5, 2),
        (1, 0.30, 0),
        (2, 0.25, 1),
    ],
)
def test_split_amount_boundaries(total: int, rate: float, expected_fee: int) -> None:
    split = split_amount(total, rate)

    assert split.platform_fee == expected_fee
    assert split.creator_earnings == total - expected_fee


def test_split_amount_accepts_decimal_rate() -> None:
    split = split_amount(1000, Decimal("0.125"))
    assert (split.platform_fee, split.creator_earnings) == (125, 875)


@pytest.mark.parametrize("rate", [-0.01, 1.01])
def test_split_amount_rejects_rate_outside_unit_interval(rate: float) -> None:
    with pytest.raises(ValueError):
        split_amount(1000, rate)


def test_split_amount_rejects_negative_total() -> None:
    with pytest.raises(ValueError):
        split_amount(-1, 0.30)


@pytest.mark.parametrize("total", [19.99, True, "1999"])
def test_split_amount_rejects_non_integer_total(total: object) -> None:
    with pytest.raises(TypeError):
        split_amount(total, 0.30)  # type: ignore[arg-type]


def test_assert_split_invariant_raises_on_mismatch() -> None:
    assert_split_invariant(total_amount=1999, platform_fee=600, creator_earnings=1399)

    with pytest.raises(FeeSplitInvariantError):
        assert_split_invariant(total_amount=1999, platform_fee=600, creator_earnings=1400)
    with pytest.raises(FeeSplitInvariantError):
        assert_split_invariant(total_amount=10, platform_fee=-1, creator_earnings=11)
