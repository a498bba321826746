from pydantic import BaseModel
from ...protocol.types.pool import RewardFeeFraction

class Account(BaseModel):
    """Ledger record of a single delegator."""
    # Liquid balance, can be staked or withdrawn once the unlock epoch is reached
    unstaked: int = 0
    # Staked balance is never stored, it is derived from the share count
    stake_shares: int = 0
    # The minimum epoch height when the withdrawal is allowed
    unstaked_available_epoch_height: int = 0

    def is_empty(self) -> bool:
        return self.unstaked == 0 and self.stake_shares == 0

class Pool(BaseModel):
    owner_id: str
    stake_public_key: str
    # The last epoch height when rewards were folded in
    last_epoch_height: int
    # Locked + liquid balance of the pool account at the last checkpoint
    last_total_balance: int
    total_stake_shares: int
    # The desired total stake of the validator
    total_staked_balance: int
    reward_fee_fraction: RewardFeeFraction
    paused: bool = False
