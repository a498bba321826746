# MIT License
# Copyright (c) 2025 Hashborn

import logging
from .state import PoolState
from ..runtime.context import Context

logger = logging.getLogger(__name__)


def observed_total_balance(ctx: Context) -> int:
    """
    Locked + liquid balance of the pool account before this call.

    The attached deposit is already in the liquid balance but is not part of
    the last checkpoint yet, so it is excluded.
    """
    return ctx.account_locked_balance + ctx.account_balance - ctx.attached_deposit


def internal_ping(state: PoolState, ctx: Context) -> bool:
    """
    Distributes rewards accrued since the last epoch checkpoint.

    The reward is the growth of the total balance since the last checkpoint;
    a decrease (e.g. slashing) counts as zero reward. The owner's fee is
    minted as stake shares at the price after the remaining reward has been
    folded in, so the owner doesn't earn on its own fee.

    Args:
        state: Pool state to update
        ctx: Invocation context

    Returns:
        True if a new epoch was processed, i.e. the caller should restake.
    """
    pool = state.pool
    epoch_height = ctx.epoch_height
    if pool.last_epoch_height == epoch_height:
        return False
    pool.last_epoch_height = epoch_height

    total_balance = observed_total_balance(ctx)

    if total_balance > pool.last_total_balance:
        total_reward = total_balance - pool.last_total_balance
        owners_fee = pool.reward_fee_fraction.multiply(total_reward)

        # Distributing the remaining reward to the delegators first.
        remaining_reward = total_reward - owners_fee
        pool.total_staked_balance += remaining_reward

        # Now buying "stake" shares for the contract owner at the new share price.
        num_shares = state.num_shares_from_staked_amount_rounded_down(owners_fee)
        if num_shares > 0:
            owner_account = state.get_account(pool.owner_id)
            owner_account.stake_shares += num_shares
            state.save_account(pool.owner_id, owner_account)
            pool.total_stake_shares += num_shares

        # Increasing the total staked balance by the owners fee, no matter whether the owner
        # received any shares or not.
        pool.total_staked_balance += owners_fee

        ctx.log(
            f"Epoch {epoch_height}: Contract received total rewards of {total_reward} tokens. "
            f"New total staked balance is {pool.total_staked_balance}. Total number of shares {pool.total_stake_shares}",
            event_type="rewards",
            epoch_height=epoch_height,
            total_reward=total_reward,
            owners_fee=owners_fee,
            owner_shares=num_shares,
        )
        if num_shares > 0:
            ctx.log(f"Total rewards fee is {num_shares} stake shares.")
    elif total_balance < pool.last_total_balance:
        logger.warning(
            f"Epoch {epoch_height}: total balance decreased by {pool.last_total_balance - total_balance}, "
            f"no reward distributed"
        )

    pool.last_total_balance = total_balance
    return True
