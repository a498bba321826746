from pydantic import BaseModel
from .common import ValidationError

class RewardFeeFraction(BaseModel):
    """Owner's cut of every reward, as numerator / denominator."""
    numerator: int
    denominator: int

    def assert_valid(self):
        if self.denominator == 0:
            raise ValidationError("Denominator must be a positive number")
        if self.numerator < 0 or self.denominator < 0:
            raise ValidationError("Reward fee fraction must be non-negative")
        if self.numerator > self.denominator:
            raise ValidationError("The reward fee must be less or equal to 1")

    def multiply(self, value: int) -> int:
        # Rounds down, the remainder stays with the delegators
        return self.numerator * value // self.denominator

class HumanReadableAccount(BaseModel):
    """Account view returned by `get_account` and `get_accounts`."""
    account_id: str
    unstaked_balance: int   # Liquid, withdrawable once can_withdraw is set
    staked_balance: int     # Derived from shares, rounded down
    can_withdraw: bool

class PoolInfo(BaseModel):
    owner_id: str
    stake_public_key: str
    epoch_height: int
    last_epoch_height: int
    total_staked_balance: int
    total_stake_shares: int
    reward_fee_fraction: RewardFeeFraction
    paused: bool
    number_of_accounts: int
