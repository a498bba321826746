# MIT License
# Copyright (c) 2025 Hashborn

from typing import Optional, List, Dict, Any, Union
import logging
import threading

from ...protocol.types.common import ValidationError, UnauthorizedError, PromiseStatus
from ...protocol.types.pool import RewardFeeFraction, HumanReadableAccount, PoolInfo
from ...protocol.types.action import Action, Promise
from ...protocol.crypto.keys import is_valid_public_key
from ...protocol.crypto.addresses import is_valid_address
from ...protocol.config.params import CURRENT_NETWORK, NetworkConfig, ON_STAKE_ACTION_GAS, VOTE_GAS
from ..storage.db import StorageDB
from ..runtime.context import Context
from ..observability import metrics
from .accounts import Account, Pool
from .state import PoolState
from .rewards import internal_ping
from .events import EventBus, event_bus

logger = logging.getLogger(__name__)


def _parse_amount(value: Union[int, str]) -> int:
    """Amounts arrive as ints or as decimal strings (JSON can't carry 128-bit ints)."""
    if isinstance(value, (bool, float)):
        raise ValidationError("Amount must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")


def _parse_fee_fraction(value: Union[RewardFeeFraction, Dict[str, Any]]) -> RewardFeeFraction:
    if isinstance(value, RewardFeeFraction):
        fraction = value.model_copy()
    elif isinstance(value, dict):
        try:
            fraction = RewardFeeFraction(
                numerator=_parse_amount(value["numerator"]),
                denominator=_parse_amount(value["denominator"]),
            )
        except KeyError as e:
            raise ValidationError(f"Reward fee fraction is missing {e}")
    else:
        raise ValidationError("Invalid reward fee fraction")
    fraction.assert_valid()
    return fraction


class StakingContract:
    """
    Staking pool: many delegators behind one validator stake.

    Every change method runs against a clone of the committed state. Only if
    it returns normally is the clone committed, persisted and its promises
    handed to the host; any exception restores the previous state and drops
    the issued promises.
    """

    CHANGE_METHODS = {
        "new", "ping", "deposit", "deposit_and_stake", "withdraw", "withdraw_all",
        "stake", "stake_all", "unstake", "unstake_all", "on_stake_action",
        "update_staking_key", "update_reward_fee_fraction", "vote",
        "pause_staking", "resume_staking",
    }
    VIEW_METHODS = {
        "get_account_unstaked_balance", "get_account_staked_balance",
        "get_account_total_balance", "is_account_unstaked_balance_available",
        "get_total_staked_balance", "get_owner_id", "get_reward_fee_fraction",
        "get_staking_key", "is_staking_paused", "get_account",
        "get_number_of_accounts", "get_accounts", "get_pool_info",
    }

    def __init__(self, db: StorageDB, config: NetworkConfig = CURRENT_NETWORK, events: EventBus = event_bus):
        self.db = db
        self.config = config
        self.events = events
        self.state = PoolState(db)
        self._lock = threading.RLock()

    # --- Invocation ---

    def call(self, ctx: Context, method: str, **args) -> Any:
        """Runs a change method. Raises on failure, leaving no trace of the call."""
        if method not in self.CHANGE_METHODS:
            raise ValidationError(f"Method {method} not found")

        with self._lock:
            if method != "new" and not self.state.is_initialized():
                raise ValidationError("Staking contract should be initialized before usage")

            committed = self.state
            self.state = committed.clone()
            try:
                result = getattr(self, method)(ctx, **args)
            except Exception as e:
                self.state = committed
                ctx.discard()
                metrics.contract_calls_total.labels(method=method, outcome="failed").inc()
                logger.debug(f"{method} by {ctx.predecessor_id} rolled back: {e}")
                raise

            self.state.persist()
            metrics.contract_calls_total.labels(method=method, outcome="ok").inc()
            metrics.update_metrics(self.state)

        self._publish(ctx)
        return result

    def view(self, ctx: Context, method: str, **args) -> Any:
        if method not in self.VIEW_METHODS:
            raise ValidationError(f"Method {method} not found")
        with self._lock:
            if not self.state.is_initialized():
                raise ValidationError("Staking contract should be initialized before usage")
            return getattr(self, method)(ctx, **args)

    def _publish(self, ctx: Context):
        for event_type, data in ctx.events:
            logger.info(data["message"])
            if event_type == "rewards":
                metrics.rewards_distributed_total.inc(data["total_reward"])
                metrics.owner_fees_total.inc(data["owners_fee"])
        self.events.publish(ctx.events)

    @property
    def pool(self) -> Pool:
        return self.state.pool

    # --- Initialization ---

    def new(self, ctx: Context, owner_id: str, stake_public_key: str,
            reward_fee_fraction: Union[RewardFeeFraction, Dict[str, Any]]):
        """
        Initializes the pool with the balance of the contract account.

        The guarantee fund is kept out of the staked total, so the initial share
        price is 1 and the fund absorbs the rounding of later stake operations.
        """
        if self.state.is_initialized():
            raise ValidationError("Already initialized")
        fraction = _parse_fee_fraction(reward_fee_fraction)
        if not is_valid_address(owner_id):
            raise ValidationError("The owner account ID is invalid")
        if not is_valid_public_key(stake_public_key):
            raise ValidationError("The staking public key is invalid")
        if ctx.account_locked_balance != 0:
            raise ValidationError("The staking pool shouldn't be staking at the initialization")

        account_balance = ctx.account_balance
        total_staked_balance = account_balance - self.config.price_guarantee_fund
        if total_staked_balance <= 0:
            raise ValidationError("The initial balance must exceed the price guarantee fund")

        self.state.pool = Pool(
            owner_id=owner_id,
            stake_public_key=stake_public_key,
            last_epoch_height=ctx.epoch_height,
            last_total_balance=account_balance,
            total_staked_balance=total_staked_balance,
            total_stake_shares=total_staked_balance,
            reward_fee_fraction=fraction,
        )
        ctx.log(f"Pool initialized by {owner_id} with staked balance {total_staked_balance}",
                event_type="initialized", owner_id=owner_id)
        # Staking with the current pool to make sure the staking key is valid.
        self.internal_restake(ctx)

    # --- Public change methods ---

    def ping(self, ctx: Context):
        """Distributes rewards and restakes if needed."""
        if internal_ping(self.state, ctx):
            self.internal_restake(ctx)

    def deposit(self, ctx: Context):
        """Deposits the attached amount into the inner account of the predecessor."""
        need_to_restake = internal_ping(self.state, ctx)
        self.internal_deposit(ctx)
        if need_to_restake:
            self.internal_restake(ctx)

    def deposit_and_stake(self, ctx: Context):
        """Deposits the attached amount and stakes it right away."""
        internal_ping(self.state, ctx)
        amount = self.internal_deposit(ctx)
        self.internal_stake(ctx, amount)
        self.internal_restake(ctx)

    def withdraw_all(self, ctx: Context):
        need_to_restake = internal_ping(self.state, ctx)
        account = self.state.get_account(ctx.predecessor_id)
        self.internal_withdraw(ctx, account.unstaked)
        if need_to_restake:
            self.internal_restake(ctx)

    def withdraw(self, ctx: Context, amount: Union[int, str]):
        """
        Withdraws the non staked balance for the predecessor.
        Only allowed once the unstaking delay of the last unstake has passed.
        """
        need_to_restake = internal_ping(self.state, ctx)
        self.internal_withdraw(ctx, _parse_amount(amount))
        if need_to_restake:
            self.internal_restake(ctx)

    def stake_all(self, ctx: Context):
        internal_ping(self.state, ctx)
        account = self.state.get_account(ctx.predecessor_id)
        self.internal_stake(ctx, account.unstaked)
        self.internal_restake(ctx)

    def stake(self, ctx: Context, amount: Union[int, str]):
        """Stakes the given amount from the inner unstaked balance."""
        internal_ping(self.state, ctx)
        self.internal_stake(ctx, _parse_amount(amount))
        self.internal_restake(ctx)

    def unstake_all(self, ctx: Context):
        internal_ping(self.state, ctx)
        account = self.state.get_account(ctx.predecessor_id)
        amount = self.state.staked_amount_from_num_shares_rounded_down(account.stake_shares)
        self.inner_unstake(ctx, amount)
        self.internal_restake(ctx)

    def unstake(self, ctx: Context, amount: Union[int, str]):
        """
        Unstakes the given amount from the inner staked balance. The amount
        becomes withdrawable after NUM_EPOCHS_TO_UNLOCK epochs.
        """
        internal_ping(self.state, ctx)
        self.inner_unstake(ctx, _parse_amount(amount))
        self.internal_restake(ctx)

    def on_stake_action(self, ctx: Context):
        """
        Callback after the stake action. Only the contract itself may call it.

        If the stake action failed and some balance is still locked, the pool
        asks to unstake everything. The stake amount is never retried.
        """
        if ctx.current_account_id != ctx.predecessor_id:
            raise UnauthorizedError("Can be called only as a callback")
        if len(ctx.promise_results) != 1:
            raise ValidationError("Contract expected a result on the callback")

        stake_action_succeeded = ctx.promise_results[0] == PromiseStatus.SUCCESSFUL

        if not stake_action_succeeded and ctx.account_locked_balance > 0:
            ctx.promise(ctx.current_account_id, Action.stake(0, self.pool.stake_public_key))
            ctx.log(
                f"Stake action failed while {ctx.account_locked_balance} is locked. Unstaking everything",
                event_type="stake_action_failed",
                locked_balance=ctx.account_locked_balance,
            )

    # --- Owner methods ---

    def assert_owner(self, ctx: Context):
        if ctx.predecessor_id != self.pool.owner_id:
            raise UnauthorizedError("Can only be called by the owner")

    def update_staking_key(self, ctx: Context, stake_public_key: str):
        self.assert_owner(ctx)
        if not is_valid_public_key(stake_public_key):
            raise ValidationError("The staking public key is invalid")
        self.pool.stake_public_key = stake_public_key
        ctx.log(f"Staking key updated to {stake_public_key}", event_type="staking_key_updated")
        self.internal_restake(ctx)

    def update_reward_fee_fraction(self, ctx: Context, reward_fee_fraction: Union[RewardFeeFraction, Dict[str, Any]]):
        """Rewards accrued so far are still distributed at the old fee."""
        self.assert_owner(ctx)
        fraction = _parse_fee_fraction(reward_fee_fraction)

        need_to_restake = internal_ping(self.state, ctx)
        self.pool.reward_fee_fraction = fraction
        ctx.log(f"Reward fee fraction updated to {fraction.numerator}/{fraction.denominator}",
                event_type="reward_fee_updated")
        if need_to_restake:
            self.internal_restake(ctx)

    def vote(self, ctx: Context, voting_account_id: str, is_vote: bool) -> Promise:
        """Casts the pool's vote on the given voting contract."""
        self.assert_owner(ctx)
        if not is_valid_address(voting_account_id):
            raise ValidationError("Invalid voting account ID")
        if not isinstance(is_vote, bool):
            raise ValidationError("is_vote must be a boolean")
        return ctx.promise(voting_account_id, Action.function_call("vote", {"is_vote": is_vote}, VOTE_GAS))

    def pause_staking(self, ctx: Context):
        """Unstakes everything from the validator. Ledger accounting continues."""
        self.assert_owner(ctx)
        if self.pool.paused:
            raise ValidationError("The staking is already paused")

        internal_ping(self.state, ctx)
        self.pool.paused = True
        ctx.log("Staking paused", event_type="paused")
        ctx.promise(ctx.current_account_id, Action.stake(0, self.pool.stake_public_key))

    def resume_staking(self, ctx: Context):
        self.assert_owner(ctx)
        if not self.pool.paused:
            raise ValidationError("The staking is not paused")

        internal_ping(self.state, ctx)
        self.pool.paused = False
        ctx.log("Staking resumed", event_type="resumed")
        self.internal_restake(ctx)

    # --- Internal methods ---

    def internal_restake(self, ctx: Context):
        """
        Asks the validator to stake `total_staked_balance`, then checks the outcome.
        Nothing is sent while paused.
        """
        if self.pool.paused:
            return
        ctx.promise(
            ctx.current_account_id,
            Action.stake(self.pool.total_staked_balance, self.pool.stake_public_key),
        ).then(Action.function_call("on_stake_action", gas=ON_STAKE_ACTION_GAS))

    def internal_deposit(self, ctx: Context) -> int:
        account_id = ctx.predecessor_id
        account = self.state.get_account(account_id)
        amount = ctx.attached_deposit
        account.unstaked += amount
        self.state.save_account(account_id, account)
        # The deposit is not a reward, the next ping must not count it.
        self.pool.last_total_balance += amount

        ctx.log(
            f"@{account_id} deposited {amount}. New unstaked balance is {account.unstaked}",
            event_type="deposit", account_id=account_id, amount=amount,
        )
        return amount

    def internal_withdraw(self, ctx: Context, amount: int):
        if amount <= 0:
            raise ValidationError("Withdrawal amount should be positive")

        account_id = ctx.predecessor_id
        account = self.state.get_account(account_id)
        if account.unstaked < amount:
            raise ValidationError("Not enough unstaked balance to withdraw")
        if not self.can_withdraw(ctx, account):
            raise ValidationError("The unstaked balance is not yet available due to unstaking delay")

        account.unstaked -= amount
        self.state.save_account(account_id, account)
        self.pool.last_total_balance -= amount

        ctx.log(
            f"@{account_id} withdrawing {amount}. New unstaked balance is {account.unstaked}",
            event_type="withdraw", account_id=account_id, amount=amount,
        )

        ctx.promise(account_id, Action.transfer(amount))

    def internal_stake(self, ctx: Context, amount: int):
        if amount <= 0:
            raise ValidationError("Staking amount should be positive")

        account_id = ctx.predecessor_id
        account = self.state.get_account(account_id)

        # Shares received are rounded down, the account never gets more than it pays for.
        num_shares = self.state.num_shares_from_staked_amount_rounded_down(amount)
        if num_shares <= 0:
            raise ValidationError("The calculated number of \"stake\" shares received for staking should be positive")
        # The amount charged is derived back from the shares.
        charge_amount = self.state.staked_amount_from_num_shares_rounded_down(num_shares)
        if charge_amount <= 0:
            raise ValidationError("Invariant violation. Calculated staked amount must be positive, "
                                  "because \"stake\" share price should be at least 1")
        if account.unstaked < charge_amount:
            raise ValidationError("Not enough unstaked balance to stake")

        account.unstaked -= charge_amount
        account.stake_shares += num_shares
        self.state.save_account(account_id, account)

        # The pool total grows by the rounded up amount; the guarantee fund covers the difference.
        stake_amount = self.state.staked_amount_from_num_shares_rounded_up(num_shares)
        self.pool.total_staked_balance += stake_amount
        self.pool.total_stake_shares += num_shares

        ctx.log(
            f"@{account_id} staking {charge_amount}. Received {num_shares} new staking shares. "
            f"Total {account.unstaked} unstaked balance and {account.stake_shares} staking shares",
            event_type="stake", account_id=account_id, amount=charge_amount, shares=num_shares,
        )
        ctx.log(
            f"Contract total staked balance is {self.pool.total_staked_balance}. "
            f"Total number of shares {self.pool.total_stake_shares}"
        )

    def inner_unstake(self, ctx: Context, amount: int):
        if amount <= 0:
            raise ValidationError("Unstaking amount should be positive")

        account_id = ctx.predecessor_id
        account = self.state.get_account(account_id)

        if self.pool.total_staked_balance <= 0:
            raise ValidationError("The contract doesn't have staked balance")

        # Shares paid are rounded up, the account pays at least the fair price.
        num_shares = self.state.num_shares_from_staked_amount_rounded_up(amount)
        if num_shares <= 0:
            raise ValidationError("Invariant violation. The calculated number of \"stake\" shares for unstaking should be positive")
        if account.stake_shares < num_shares:
            raise ValidationError("Not enough staked balance to unstake")

        # The account receives the rounded up amount, the pool total shrinks by the
        # rounded down amount. Both keep the share price from decreasing.
        receive_amount = self.state.staked_amount_from_num_shares_rounded_up(num_shares)
        if receive_amount <= 0:
            raise ValidationError("Invariant violation. Calculated staked amount must be positive, "
                                  "because \"stake\" share price should be at least 1")
        unstake_amount = self.state.staked_amount_from_num_shares_rounded_down(num_shares)

        account.stake_shares -= num_shares
        account.unstaked += receive_amount
        account.unstaked_available_epoch_height = ctx.epoch_height + self.config.num_epochs_to_unlock
        self.state.save_account(account_id, account)

        self.pool.total_staked_balance -= unstake_amount
        self.pool.total_stake_shares -= num_shares

        ctx.log(
            f"@{account_id} unstaking {receive_amount}. Spent {num_shares} staking shares. "
            f"Total {account.unstaked} unstaked balance and {account.stake_shares} staking shares",
            event_type="unstake", account_id=account_id, amount=receive_amount, shares=num_shares,
            available_epoch_height=account.unstaked_available_epoch_height,
        )
        ctx.log(
            f"Contract total staked balance is {self.pool.total_staked_balance}. "
            f"Total number of shares {self.pool.total_stake_shares}"
        )

    @staticmethod
    def can_withdraw(ctx: Context, account: Account) -> bool:
        """Unstake delay gate."""
        return account.unstaked_available_epoch_height <= ctx.epoch_height

    # --- Views ---

    def get_account_unstaked_balance(self, ctx: Context, account_id: str) -> int:
        return self.state.get_account(account_id).unstaked

    def get_account_staked_balance(self, ctx: Context, account_id: str) -> int:
        account = self.state.get_account(account_id)
        return self.state.staked_amount_from_num_shares_rounded_down(account.stake_shares)

    def get_account_total_balance(self, ctx: Context, account_id: str) -> int:
        account = self.state.get_account(account_id)
        return account.unstaked + self.state.staked_amount_from_num_shares_rounded_down(account.stake_shares)

    def is_account_unstaked_balance_available(self, ctx: Context, account_id: str) -> bool:
        return self.can_withdraw(ctx, self.state.get_account(account_id))

    def get_total_staked_balance(self, ctx: Context) -> int:
        return self.pool.total_staked_balance

    def get_owner_id(self, ctx: Context) -> str:
        return self.pool.owner_id

    def get_reward_fee_fraction(self, ctx: Context) -> RewardFeeFraction:
        return self.pool.reward_fee_fraction.model_copy()

    def get_staking_key(self, ctx: Context) -> str:
        return self.pool.stake_public_key

    def is_staking_paused(self, ctx: Context) -> bool:
        return self.pool.paused

    def get_account(self, ctx: Context, account_id: str) -> HumanReadableAccount:
        account = self.state.get_account(account_id)
        return HumanReadableAccount(
            account_id=account_id,
            unstaked_balance=account.unstaked,
            staked_balance=self.state.staked_amount_from_num_shares_rounded_down(account.stake_shares),
            can_withdraw=self.can_withdraw(ctx, account),
        )

    def get_number_of_accounts(self, ctx: Context) -> int:
        return self.state.get_number_of_accounts()

    def get_accounts(self, ctx: Context, from_index: int = 0, limit: Optional[int] = None) -> List[HumanReadableAccount]:
        """Accounts ordered by account id, `limit` capped at the configured page size."""
        if from_index < 0:
            raise ValidationError("from_index must be non-negative")
        page = self.config.max_accounts_page if limit is None else min(limit, self.config.max_accounts_page)
        if page < 0:
            raise ValidationError("limit must be non-negative")
        ids = self.state.get_account_ids()[from_index:from_index + page]
        return [self.get_account(ctx, account_id) for account_id in ids]

    def get_pool_info(self, ctx: Context) -> PoolInfo:
        return PoolInfo(
            owner_id=self.pool.owner_id,
            stake_public_key=self.pool.stake_public_key,
            epoch_height=ctx.epoch_height,
            last_epoch_height=self.pool.last_epoch_height,
            total_staked_balance=self.pool.total_staked_balance,
            total_stake_shares=self.pool.total_stake_shares,
            reward_fee_fraction=self.pool.reward_fee_fraction,
            paused=self.pool.paused,
            number_of_accounts=self.state.get_number_of_accounts(),
        )
