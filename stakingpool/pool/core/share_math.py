"""
Conversions between staked balance and stake shares.

price = total_staked_balance / total_stake_shares

Every call site picks the rounding direction that favors the pool over its
counterparty: credit shares rounded down, debit shares rounded up, pay out
balance rounded down, collect balance rounded up. Together with the
guarantee fund this keeps the share price from ever decreasing.

Python integers do not overflow, so multiply-before-divide is exact; results
are still checked against the 128-bit balance range.
"""

from ...protocol.types.common import DegenerateStateError
from ...protocol.config.params import U128_MAX

def _checked(value: int) -> int:
    if value > U128_MAX:
        raise DegenerateStateError(f"Integer overflow: {value} does not fit into 128 bits")
    return value

def _div_ceil(a: int, b: int) -> int:
    return (a + b - 1) // b

def num_shares_from_staked_amount_rounded_down(total_stake_shares: int, total_staked_balance: int, amount: int) -> int:
    if total_staked_balance <= 0:
        raise DegenerateStateError("The total staked balance can't be 0")
    return _checked(total_stake_shares * amount // total_staked_balance)

def num_shares_from_staked_amount_rounded_up(total_stake_shares: int, total_staked_balance: int, amount: int) -> int:
    if total_staked_balance <= 0:
        raise DegenerateStateError("The total staked balance can't be 0")
    return _checked(_div_ceil(total_stake_shares * amount, total_staked_balance))

def staked_amount_from_num_shares_rounded_down(total_stake_shares: int, total_staked_balance: int, num_shares: int) -> int:
    if total_stake_shares <= 0:
        raise DegenerateStateError("The total number of stake shares can't be 0")
    return _checked(total_staked_balance * num_shares // total_stake_shares)

def staked_amount_from_num_shares_rounded_up(total_stake_shares: int, total_staked_balance: int, num_shares: int) -> int:
    if total_stake_shares <= 0:
        raise DegenerateStateError("The total number of stake shares can't be 0")
    return _checked(_div_ceil(total_staked_balance * num_shares, total_stake_shares))

def share_price_not_lower(before: tuple, after: tuple) -> bool:
    """
    Compares two (total_staked_balance, total_stake_shares) pairs by
    cross-multiplication. True if the price after is at least the price before.
    """
    balance_before, shares_before = before
    balance_after, shares_after = after
    return balance_after * shares_before >= balance_before * shares_after
