from decimal import Decimal

import pytest

from forecastcore.services.allocation import allocate_by_pattern, allocate_weight_points, equal_weight
from forecastcore.utils.decimal_math import money


def test_allocate_by_pattern_remainder_goes_to_last_slot() -> None:
    shares = allocate_by_pattern(Decimal("100"), [Decimal("1"), Decimal("1"), Decimal("1")])
    assert shares == [money("33.33"), money("33.33"), money("33.34")]
    assert sum(shares) == money("100")


def test_allocate_by_pattern_follows_seasonal_shape() -> None:
    pattern = [Decimal("10")] + [Decimal("90") / Decimal(11)] * 11
    shares = allocate_by_pattern(Decimal("50000"), pattern)
    assert shares[0] == money("5000.00")
    assert sum(shares) == money("50000.00")


def test_allocate_by_pattern_zero_pattern_splits_evenly() -> None:
    shares = allocate_by_pattern(Decimal("12000"), [Decimal("0")] * 12)
    assert shares == [money("1000.00")] * 12


def test_allocate_by_pattern_negative_total_keeps_exact_sum() -> None:
    shares = allocate_by_pattern(Decimal("-10.00"), [Decimal("1"), Decimal("2")])
    assert shares == [money("-3.33"), money("-6.67")]
    assert sum(shares) == money("-10.00")


def test_allocate_by_pattern_empty_pattern() -> None:
    assert allocate_by_pattern(Decimal("10"), []) == []


def test_weight_points_largest_remainder_ties_go_to_earlier_slot() -> None:
    shares = allocate_weight_points(Decimal("100"), [Decimal("1"), Decimal("1"), Decimal("1")])
    assert shares == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]


def test_weight_points_sum_exactly_and_never_go_negative() -> None:
    basis = [Decimal("3"), Decimal("0"), Decimal("7"), Decimal("11")]
    shares = allocate_weight_points(Decimal("61.5"), basis)
    assert sum(shares) == Decimal("61.50")
    assert shares[1] == Decimal("0.00")
    assert all(share >= 0 for share in shares)


@pytest.mark.parametrize("total", [Decimal("0"), Decimal("-5")])
def test_weight_points_non_positive_total_yields_zeros(total: Decimal) -> None:
    assert allocate_weight_points(total, [Decimal("1"), Decimal("2")]) == [Decimal("0.00"), Decimal("0.00")]


def test_equal_weight_is_a_twelfth_of_one_hundred() -> None:
    assert money(equal_weight() * 12) == money("100")
