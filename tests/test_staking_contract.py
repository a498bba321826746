# MIT License
# Copyright (c) 2025 Hashborn

"""
Staking pool end-to-end tests

Runs the contract inside the in-process host: deposits, staking,
rewards, unstaking delay, withdrawals, owner methods and rollback.
"""
import pytest

from stakingpool.pool.storage.db import StorageDB
from stakingpool.pool.core.contract import StakingContract
from stakingpool.pool.core.events import EventBus
from stakingpool.pool.core.share_math import share_price_not_lower
from stakingpool.pool.runtime.host import Host
from stakingpool.pool.runtime.context import Context
from stakingpool.protocol.types.common import ValidationError, UnauthorizedError, DegenerateStateError, PromiseStatus
from stakingpool.protocol.crypto.keys import generate_private_key, public_key_from_private
from stakingpool.protocol.crypto.addresses import address_from_pubkey
from stakingpool.protocol.config.params import NETWORKS


DEVNET = NETWORKS["devnet"]

POOL_ID = address_from_pubkey(b"pool-account")
OWNER = address_from_pubkey(b"owner")
ALICE = address_from_pubkey(b"alice")
BOB = address_from_pubkey(b"bob")
STAKE_KEY = public_key_from_private(generate_private_key()).hex()


def make_host(initial_balance: int, fee=(0, 1), events: EventBus = None) -> Host:
    contract = StakingContract(StorageDB(), config=DEVNET, events=events or EventBus())
    host = Host(contract, POOL_ID, initial_balance=initial_balance, config=DEVNET)
    host.call(OWNER, "new", owner_id=OWNER, stake_public_key=STAKE_KEY,
              reward_fee_fraction={"numerator": fee[0], "denominator": fee[1]})
    host.run_until_idle()
    return host


def call(host: Host, signer: str, method: str, attached_deposit: int = 0, **args):
    result = host.call(signer, method, attached_deposit=attached_deposit, **args)
    host.run_until_idle()
    return result


def deposit_and_stake(host: Host, account_id: str, amount: int):
    host.fund(account_id, amount)
    call(host, account_id, "deposit_and_stake", attached_deposit=amount)


def staked(host: Host, account_id: str) -> int:
    return host.view("get_account_staked_balance", account_id=account_id)


def unstaked(host: Host, account_id: str) -> int:
    return host.view("get_account_unstaked_balance", account_id=account_id)


# ═══════════════════════════════════════════════════════════════════
# INITIALIZATION
# ═══════════════════════════════════════════════════════════════════

def test_new_keeps_guarantee_fund_unstaked():
    host = make_host(1_000_010)
    pool = host.contract.pool

    assert pool.total_staked_balance == 1_000_000
    assert pool.total_stake_shares == 1_000_000
    assert pool.last_total_balance == 1_000_010
    assert host.staked == 1_000_000
    assert host.liquid == 10
    assert host.view("get_number_of_accounts") == 0


def test_new_twice_rejected():
    host = make_host(1_000_010)
    with pytest.raises(ValidationError, match="Already initialized"):
        host.call(OWNER, "new", owner_id=OWNER, stake_public_key=STAKE_KEY,
                  reward_fee_fraction={"numerator": 0, "denominator": 1})


def test_new_validates_arguments():
    contract = StakingContract(StorageDB(), config=DEVNET, events=EventBus())
    host = Host(contract, POOL_ID, initial_balance=1_000_010, config=DEVNET)

    with pytest.raises(ValidationError, match="owner account ID is invalid"):
        host.call(OWNER, "new", owner_id="not an account", stake_public_key=STAKE_KEY,
                  reward_fee_fraction={"numerator": 0, "denominator": 1})
    with pytest.raises(ValidationError, match="staking public key is invalid"):
        host.call(OWNER, "new", owner_id=OWNER, stake_public_key="abcd",
                  reward_fee_fraction={"numerator": 0, "denominator": 1})
    with pytest.raises(ValidationError, match="less or equal to 1"):
        host.call(OWNER, "new", owner_id=OWNER, stake_public_key=STAKE_KEY,
                  reward_fee_fraction={"numerator": 2, "denominator": 1})
    assert not contract.state.is_initialized()


def test_uninitialized_pool_rejects_calls():
    contract = StakingContract(StorageDB(), config=DEVNET, events=EventBus())
    host = Host(contract, POOL_ID, initial_balance=1_000_010, config=DEVNET)
    with pytest.raises(ValidationError, match="should be initialized"):
        host.call(ALICE, "ping")


def test_initial_stake_below_minimum_fails_quietly():
    host = make_host(510)
    receipts = host.promise_store.all()

    assert host.staked == 0
    assert receipts[0].status == PromiseStatus.FAILED
    # Nothing was locked, so the callback issues no unstake
    assert len(receipts) == 1


# ═══════════════════════════════════════════════════════════════════
# DELEGATOR FLOW
# ═══════════════════════════════════════════════════════════════════

def test_deposit_stake_reward_unstake_withdraw():
    host = make_host(1_000_010)

    deposit_and_stake(host, BOB, 1_000_000)
    assert staked(host, BOB) == 1_000_000
    assert host.staked == 2_000_000
    assert host.liquid == 10

    host.add_reward(20)
    host.advance_epochs(1)
    call(host, BOB, "ping")
    assert staked(host, BOB) == 1_000_010
    assert host.view("get_total_staked_balance") == 2_000_020

    call(host, BOB, "unstake", amount=500_005)
    assert staked(host, BOB) == 500_005
    assert unstaked(host, BOB) == 500_005
    assert host.contract.state.get_account(BOB).unstaked_available_epoch_height == 5
    assert not host.view("is_account_unstaked_balance_available", account_id=BOB)

    with pytest.raises(ValidationError, match="unstaking delay"):
        call(host, BOB, "withdraw", amount=500_005)

    # The host releases unbonding stake one epoch before the pool allows withdrawal
    host.advance_epochs(3)
    assert host.liquid == 500_015
    with pytest.raises(ValidationError, match="unstaking delay"):
        call(host, BOB, "withdraw_all")

    host.advance_epochs(1)
    assert host.view("is_account_unstaked_balance_available", account_id=BOB)
    call(host, BOB, "withdraw", amount=500_005)

    assert host.balance_of(BOB) == 500_005
    assert unstaked(host, BOB) == 0
    assert staked(host, BOB) == 500_005
    assert host.liquid == 10


def test_deposit_then_stake_separately():
    host = make_host(1_000_010)
    host.fund(ALICE, 3000)

    call(host, ALICE, "deposit", attached_deposit=3000)
    assert unstaked(host, ALICE) == 3000
    # Same epoch: a plain deposit does not touch the validator stake
    assert host.staked == 1_000_000

    call(host, ALICE, "stake", amount="1000")
    assert staked(host, ALICE) == 1000
    assert unstaked(host, ALICE) == 2000

    call(host, ALICE, "stake_all")
    assert staked(host, ALICE) == 3000
    assert unstaked(host, ALICE) == 0
    assert host.staked == 1_003_000


def test_deposit_is_not_counted_as_reward():
    events = EventBus()
    rewards = []
    events.subscribe("rewards", lambda **data: rewards.append(data))
    host = make_host(1_000_010, events=events)

    host.advance_epochs(1)
    host.fund(ALICE, 5000)
    call(host, ALICE, "deposit", attached_deposit=5000)

    assert rewards == []
    assert host.view("get_total_staked_balance") == 1_000_000


def test_withdraw_all_removes_account():
    host = make_host(1_000_010)
    host.fund(ALICE, 3000)
    call(host, ALICE, "deposit", attached_deposit=3000)
    assert host.view("get_number_of_accounts") == 1

    call(host, ALICE, "withdraw_all")
    assert host.view("get_number_of_accounts") == 0
    assert host.balance_of(ALICE) == 3000


def test_unstake_all_after_reward():
    host = make_host(1_000_010)
    deposit_and_stake(host, ALICE, 100_000)

    host.add_reward(11_000)
    host.advance_epochs(1)
    call(host, ALICE, "unstake_all")

    acc = host.contract.state.get_account(ALICE)
    assert acc.stake_shares == 0
    assert acc.unstaked == 101_000


def test_amount_validation():
    host = make_host(1_000_010)
    with pytest.raises(ValidationError, match="Staking amount should be positive"):
        call(host, ALICE, "stake", amount=0)
    with pytest.raises(ValidationError, match="Unstaking amount should be positive"):
        call(host, ALICE, "unstake", amount=0)
    with pytest.raises(ValidationError, match="Withdrawal amount should be positive"):
        call(host, ALICE, "withdraw", amount=0)
    with pytest.raises(ValidationError, match="Not enough unstaked balance to stake"):
        call(host, ALICE, "stake", amount=10)
    with pytest.raises(ValidationError, match="Not enough staked balance to unstake"):
        call(host, ALICE, "unstake", amount=10)
    with pytest.raises(ValidationError, match="Not enough unstaked balance to withdraw"):
        call(host, ALICE, "withdraw", amount=10)
    with pytest.raises(ValidationError, match="Invalid amount"):
        call(host, ALICE, "stake", amount="ten")


def test_fractional_amount_rejected():
    host = make_host(1_000_010)
    host.fund(ALICE, 5000)
    call(host, ALICE, "deposit", attached_deposit=5000)

    with pytest.raises(ValidationError, match="must be an integer"):
        call(host, ALICE, "stake", amount=1000.9)

    assert staked(host, ALICE) == 0
    assert unstaked(host, ALICE) == 5000


def test_unknown_method_rejected():
    host = make_host(1_000_010)
    with pytest.raises(ValidationError, match="not found"):
        host.call(ALICE, "assert_owner")
    with pytest.raises(ValidationError, match="not found"):
        host.view("internal_restake")


# ═══════════════════════════════════════════════════════════════════
# ROLLBACK
# ═══════════════════════════════════════════════════════════════════

def test_failed_call_leaves_no_trace():
    host = make_host(1_000_010)
    deposit_and_stake(host, BOB, 1_000_000)
    host.add_reward(1000)
    host.advance_epochs(1)

    pool_before = host.contract.pool.model_copy(deep=True)
    receipts_before = len(host.promise_store.all())

    # ping runs first inside withdraw, then the withdrawal fails
    with pytest.raises(ValidationError):
        host.call(BOB, "withdraw", amount=10)

    assert host.contract.pool == pool_before
    assert host.contract.pool.last_epoch_height == 0
    assert len(host.promise_store.all()) == receipts_before

    # The reward is still there for the next successful ping
    call(host, BOB, "ping")
    assert host.view("get_total_staked_balance") == 2_001_000


def test_failed_call_keeps_attached_deposit_with_signer():
    host = make_host(1_000_010)
    host.fund(ALICE, 500)
    with pytest.raises(ValidationError):
        host.call(ALICE, "deposit_and_stake", attached_deposit=0)
    assert host.balance_of(ALICE) == 500
    assert host.liquid == 10


def test_not_enough_wallet_balance_for_deposit():
    host = make_host(1_000_010)
    with pytest.raises(ValidationError, match="Not enough balance to attach"):
        host.call(ALICE, "deposit", attached_deposit=1)


# ═══════════════════════════════════════════════════════════════════
# REWARD FEE
# ═══════════════════════════════════════════════════════════════════

def test_owner_fee_scenario():
    host = make_host(5_010, fee=(10, 100))
    deposit_and_stake(host, ALICE, 5000)

    host.add_reward(100_000)
    host.advance_epochs(1)
    call(host, ALICE, "ping")

    assert staked(host, OWNER) == 10_000
    assert staked(host, ALICE) == 50_000
    assert host.contract.pool.total_stake_shares == 11_000
    assert host.view("get_total_staked_balance") == 110_000


def test_fee_update_applies_old_fee_to_pending_rewards():
    host = make_host(5_010, fee=(0, 1))
    deposit_and_stake(host, ALICE, 5000)
    host.add_reward(100_000)
    host.advance_epochs(1)

    call(host, OWNER, "update_reward_fee_fraction", reward_fee_fraction={"numerator": 10, "denominator": 100})

    assert staked(host, OWNER) == 0
    fee = host.view("get_reward_fee_fraction")
    assert (fee.numerator, fee.denominator) == (10, 100)


def test_fee_update_validation():
    host = make_host(5_010)
    with pytest.raises(ValidationError, match="Denominator must be a positive number"):
        call(host, OWNER, "update_reward_fee_fraction", reward_fee_fraction={"numerator": 0, "denominator": 0})
    with pytest.raises(ValidationError, match="less or equal to 1"):
        call(host, OWNER, "update_reward_fee_fraction", reward_fee_fraction={"numerator": 3, "denominator": 2})
    with pytest.raises(UnauthorizedError, match="only be called by the owner"):
        call(host, ALICE, "update_reward_fee_fraction", reward_fee_fraction={"numerator": 0, "denominator": 1})


# ═══════════════════════════════════════════════════════════════════
# OWNER METHODS
# ═══════════════════════════════════════════════════════════════════

def test_pause_and_resume_staking():
    host = make_host(1_000_010)
    deposit_and_stake(host, ALICE, 10_000)

    with pytest.raises(UnauthorizedError):
        call(host, ALICE, "pause_staking")

    call(host, OWNER, "pause_staking")
    assert host.view("is_staking_paused")
    assert host.staked == 0
    assert host.locked == 1_010_000

    with pytest.raises(ValidationError, match="already paused"):
        call(host, OWNER, "pause_staking")

    # Ledger keeps working, no stake action is sent while paused
    issued = len(host.promise_store.all())
    host.fund(BOB, 2000)
    host.call(BOB, "deposit_and_stake", attached_deposit=2000)
    call(host, ALICE, "unstake", amount=1000)
    assert len(host.promise_store.all()) == issued
    assert host.promise_store.pending() == []
    assert host.staked == 0
    assert staked(host, BOB) == 2000

    call(host, OWNER, "resume_staking")
    assert not host.view("is_staking_paused")
    assert host.staked == 1_011_000

    with pytest.raises(ValidationError, match="not paused"):
        call(host, OWNER, "resume_staking")


def test_update_staking_key():
    host = make_host(1_000_010)
    new_key = public_key_from_private(generate_private_key()).hex()

    with pytest.raises(ValidationError, match="staking public key is invalid"):
        call(host, OWNER, "update_staking_key", stake_public_key="00" * 33)

    call(host, OWNER, "update_staking_key", stake_public_key=new_key)
    assert host.view("get_staking_key") == new_key
    assert host.stake_public_key == new_key


def test_views():
    host = make_host(1_000_010, fee=(5, 100))
    deposit_and_stake(host, BOB, 2000)
    host.fund(ALICE, 300)
    call(host, ALICE, "deposit", attached_deposit=300)

    assert host.view("get_owner_id") == OWNER
    assert host.view("get_account_total_balance", account_id=BOB) == 2000

    info = host.view("get_pool_info")
    assert info.number_of_accounts == 2
    assert info.total_staked_balance == 1_002_000
    assert info.paused is False

    accounts = host.view("get_accounts", from_index=0, limit=10)
    assert [a.account_id for a in accounts] == sorted([ALICE, BOB])
    assert host.view("get_accounts", from_index=1, limit=10)[0].account_id == sorted([ALICE, BOB])[1]
    assert host.view("get_accounts", from_index=5) == []

    acc = host.view("get_account", account_id=ALICE)
    assert acc.unstaked_balance == 300
    assert acc.staked_balance == 0
    assert acc.can_withdraw is True


# ═══════════════════════════════════════════════════════════════════
# INVARIANTS
# ═══════════════════════════════════════════════════════════════════

def test_share_price_never_decreases_and_balances_conserved():
    host = make_host(1_000_010, fee=(7, 100))
    state = host.contract.state
    steps = [
        lambda: deposit_and_stake(host, ALICE, 333_333),
        lambda: (host.add_reward(77_777), host.advance_epochs(1)),
        lambda: call(host, ALICE, "ping"),
        lambda: deposit_and_stake(host, BOB, 123_457),
        lambda: call(host, ALICE, "unstake", amount=100_001),
        lambda: (host.add_reward(5), host.advance_epochs(1)),
        lambda: call(host, BOB, "unstake_all"),
        lambda: call(host, ALICE, "stake", amount=33_333),
        lambda: host.advance_epochs(4),
        lambda: call(host, BOB, "withdraw_all"),
        lambda: call(host, ALICE, "unstake", amount=1),
    ]

    for step in steps:
        price_before = host.contract.state.share_price()
        step()
        state = host.contract.state
        assert share_price_not_lower(price_before, state.share_price())

        accounts = [state.get_account(a) for a in state.get_account_ids()]
        total_unstaked = sum(a.unstaked for a in accounts)
        total_account_stake = sum(state.staked_amount_from_num_shares_rounded_down(a.stake_shares) for a in accounts)
        assert total_account_stake <= state.pool.total_staked_balance
        assert state.pool.total_staked_balance + total_unstaked <= host.locked + host.liquid


@pytest.mark.parametrize("amount", [1000, 4321, 99_999])
def test_stake_unstake_never_pays_out_more(amount):
    host = make_host(1_000_010)
    host.add_reward(333)
    host.advance_epochs(1)
    call(host, ALICE, "ping")

    deposit_and_stake(host, ALICE, amount)
    # Price is not 1, so part of the deposit stays unstaked
    remainder = unstaked(host, ALICE)
    price_before = host.contract.state.share_price()

    call(host, ALICE, "unstake_all")

    assert unstaked(host, ALICE) - remainder <= amount
    assert share_price_not_lower(price_before, host.contract.state.share_price())


# ═══════════════════════════════════════════════════════════════════
# CALLBACK
# ═══════════════════════════════════════════════════════════════════

def test_callback_only_from_contract_itself():
    host = make_host(1_000_010)
    with pytest.raises(UnauthorizedError, match="only as a callback"):
        host.call(ALICE, "on_stake_action")


def test_callback_requires_one_result():
    host = make_host(1_000_010)
    ctx = Context(current_account_id=POOL_ID, predecessor_id=POOL_ID, epoch_height=0,
                  account_balance=10, account_locked_balance=1_000_000)
    with pytest.raises(ValidationError, match="expected a result on the callback"):
        host.contract.call(ctx, "on_stake_action")


def test_degenerate_error_propagates_with_rollback():
    host = make_host(1_000_010)
    host.contract.state.pool.total_staked_balance = 0
    host.fund(ALICE, 1000)
    with pytest.raises(DegenerateStateError):
        host.call(ALICE, "deposit_and_stake", attached_deposit=1000)
    assert host.view("get_account_unstaked_balance", account_id=ALICE) == 0
