"""Tests for the revenue split."""

import pytest

from revenue.split import calculate_split


def test_ten_sol_split():
    """Test 10 SOL splits 60/20/10/10."""
    split = calculate_split(10_000_000_000)
    assert split.developer_pool == 6_000_000_000
    assert split.treasury_reserve == 2_000_000_000
    assert split.burn_amount == 1_000_000_000
    assert split.maintenance_amount == 1_000_000_000


@pytest.mark.parametrize("total", [0, 1, 7, 9_999, 10_001, 123_456_789, 2 ** 63 - 1])
def test_shares_sum_to_total(total):
    """Test no units are lost to rounding."""
    split = calculate_split(total)
    shares = split.developer_pool + split.treasury_reserve + split.burn_amount + split.maintenance_amount
    assert shares == total


def test_remainder_goes_to_developers():
    split = calculate_split(7)
    assert split.treasury_reserve == 1
    assert split.burn_amount == 0
    assert split.maintenance_amount == 0
    assert split.developer_pool == 6


def test_as_columns():
    columns = calculate_split(100).as_columns()
    assert columns == {
        "total_amount": 100,
        "developer_pool": 60,
        "treasury_reserve": 20,
        "burn_amount": 10,
        "maintenance_amount": 10,
    }


def test_negative_total_rejected():
    with pytest.raises(ValueError):
        calculate_split(-1)
