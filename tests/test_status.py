"""
Tests for the derived status predicates and deposit calculation.
"""

from decimal import Decimal

import pytest

from vault_monitor.status import (
    compute_deposit_info,
    is_expired,
    is_filled,
    is_live,
    threshold_basis_points,
    utilization,
)

WAD = 10 ** 18


@pytest.mark.parametrize(
    "supply, cap, expected",
    [
        (980, 1000, True),
        (979, 1000, False),
        (1000, 1000, True),
        (0, 1000, False),
        (1960, 2000, True),
        (1959, 2000, False),
    ],
)
def test_filled_threshold_boundaries(supply, cap, expected):
    assert is_filled(supply, cap, 98) is expected


def test_zero_cap_is_never_filled():
    assert is_filled(0, 0, 98) is False
    assert is_filled(10 ** 30, 0, 98) is False


def test_filled_uses_integer_arithmetic_for_large_values():
    cap = 10 ** 40
    assert is_filled(cap * 98 // 100, cap, 98) is True
    assert is_filled(cap * 98 // 100 - 10 ** 20, cap, 98) is False


def test_fractional_threshold_is_floored():
    assert threshold_basis_points(98) == 9800
    assert threshold_basis_points(97.555) == 9755
    # 9755 bp is enough at a 97.555% threshold
    assert is_filled(9755, 10000, 97.555) is True


def test_expired_includes_equality():
    assert is_expired(100, 100) is True
    assert is_expired(101, 100) is True
    assert is_expired(99, 100) is False


def test_live_requires_not_expired_and_not_filled():
    assert is_live(500, 1000, 10, 100, 98) is True
    assert is_live(990, 1000, 10, 100, 98) is False
    assert is_live(500, 1000, 100, 100, 98) is False


def test_utilization():
    assert utilization(500, 2000) == 25.0
    assert utilization(1, 0) == 0.0


def test_deposit_info():
    info = compute_deposit_info(
        total_supply=100 * WAD,
        total_supply_cap=150 * WAD,
        amm_cash=200 * WAD,
    )
    assert info.lpPrice == Decimal(2)
    assert info.availableLpCapacity == Decimal(50)
    assert info.availableDeposit == Decimal(100)


def test_deposit_info_unavailable_without_supply_or_cash():
    assert compute_deposit_info(0, 100 * WAD, 10 * WAD) is None
    assert compute_deposit_info(10 * WAD, 100 * WAD, 0) is None
    assert compute_deposit_info(10 * WAD, 100 * WAD, -5) is None
