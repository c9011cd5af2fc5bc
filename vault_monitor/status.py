"""
Derived vault status.

Filled, Expired and utilization are always recomputed from cap, supply,
maturity and the market time-index; nothing here reads a stored flag.
"""

import math
from decimal import Decimal
from typing import Optional

BASIS_POINTS = 10000
WAD = Decimal(10) ** 18


def threshold_basis_points(threshold_percent: float) -> int:
    """Fill threshold in basis points, floored (98 -> 9800, 97.555 -> 9755)."""
    return math.floor(Decimal(str(threshold_percent)) * 100)


def is_filled(supply: int, cap: int, threshold_percent: float) -> bool:
    """
    Check whether a vault is filled.

    Uses integer basis-point arithmetic: floor(supply * 10000 / cap) must reach
    floor(threshold * 100). A vault with a zero cap is never filled.

    Args:
        supply: Current total supply
        cap: Total supply cap
        threshold_percent: Fill threshold in percent (e.g. 98)

    Returns:
        True if utilization is at or above the threshold
    """
    if cap <= 0:
        return False
    return (supply * BASIS_POINTS) // cap >= threshold_basis_points(threshold_percent)


def is_expired(latest_time: int, maturity: int) -> bool:
    """A vault is expired once the market time-index reaches its maturity."""
    return latest_time >= maturity


def is_live(supply: int, cap: int, latest_time: int, maturity: int, threshold_percent: float) -> bool:
    return not is_expired(latest_time, maturity) and not is_filled(supply, cap, threshold_percent)


def utilization(supply: int, cap: int) -> float:
    """Utilization in percent, display only."""
    if cap <= 0:
        return 0.0
    return supply / cap * 100


def compute_deposit_info(
    total_supply: int,
    total_supply_cap: int,
    amm_cash: int,
) -> Optional["DepositInfo"]:
    """
    Work out how much can still be deposited into a vault.

    The vault's cash balance is an 18-decimal amount of the deposit token, so
    the LP price is cash / supply and the remaining deposit is the unused LP
    capacity priced at that rate.

    Args:
        total_supply: Current LP supply (18 decimals)
        total_supply_cap: LP supply cap (18 decimals)
        amm_cash: Cash held by the vault's own account (18 decimals)

    Returns:
        DepositInfo, or None when the price cannot be derived
    """
    from .api.models import DepositInfo

    if total_supply <= 0 or amm_cash <= 0:
        return None

    lp_price = Decimal(amm_cash) / Decimal(total_supply)
    available_lp = Decimal(max(total_supply_cap - total_supply, 0)) / WAD
    return DepositInfo(
        lpPrice=lp_price,
        availableLpCapacity=available_lp,
        availableDeposit=available_lp * lp_price,
    )
