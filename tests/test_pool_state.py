"""
Tests for PoolState: account overlay, removal of empty accounts,
clone-based rollback and sqlite persistence.
"""
import os
import shutil
import pytest

from stakingpool.pool.storage.db import StorageDB
from stakingpool.pool.core.state import PoolState, ACCOUNT_PREFIX
from stakingpool.pool.core.accounts import Account, Pool
from stakingpool.protocol.types.pool import RewardFeeFraction


TEST_DB_DIR = "./test_pool_state_db"


@pytest.fixture
def db():
    database = StorageDB()
    yield database
    database.close()


@pytest.fixture
def state(db):
    s = PoolState(db)
    s.pool = Pool(
        owner_id="owner",
        stake_public_key="key",
        last_epoch_height=0,
        last_total_balance=1010,
        total_stake_shares=1000,
        total_staked_balance=1000,
        reward_fee_fraction=RewardFeeFraction(numerator=0, denominator=1),
    )
    return s


def test_missing_account_is_zero(state):
    acc = state.get_account("nobody")
    assert acc.is_empty()
    assert state.get_number_of_accounts() == 0


def test_get_account_returns_copy(state):
    state.save_account("alice", Account(unstaked=10))
    acc = state.get_account("alice")
    acc.unstaked = 999
    assert state.get_account("alice").unstaked == 10


def test_empty_account_removed_from_storage(state, db):
    state.save_account("alice", Account(unstaked=10))
    state.persist()
    assert db.get_state(f"{ACCOUNT_PREFIX}alice") is not None

    state.save_account("alice", Account())
    assert state.get_account_ids() == []
    state.persist()
    assert db.get_state(f"{ACCOUNT_PREFIX}alice") is None


def test_account_ids_sorted(state):
    for name in ["carol", "alice", "bob"]:
        state.save_account(name, Account(unstaked=1))
    state.persist()
    state.save_account("aaron", Account(unstaked=1))
    assert state.get_account_ids() == ["aaron", "alice", "bob", "carol"]


def test_clone_is_isolated(state):
    state.save_account("alice", Account(unstaked=10))
    clone = state.clone()

    clone.save_account("alice", Account(unstaked=20))
    clone.save_account("bob", Account(unstaked=5))
    clone.pool.total_staked_balance += 100
    clone.pool.reward_fee_fraction.numerator = 1

    assert state.get_account("alice").unstaked == 10
    assert state.get_account("bob").is_empty()
    assert state.pool.total_staked_balance == 1000
    assert state.pool.reward_fee_fraction.numerator == 0


def test_uncommitted_clone_does_not_reach_db(state, db):
    state.persist()
    clone = state.clone()
    clone.save_account("alice", Account(unstaked=10))
    clone.pool.paused = True

    fresh = PoolState(db)
    assert fresh.get_account("alice").is_empty()
    assert fresh.pool.paused is False


def test_share_conversions_use_pool_totals(state):
    state.pool.total_staked_balance = 3
    state.pool.total_stake_shares = 2
    assert state.num_shares_from_staked_amount_rounded_down(10) == 6
    assert state.num_shares_from_staked_amount_rounded_up(10) == 7
    assert state.share_price() == (3, 2)


def test_state_survives_restart(state):
    """Pool and accounts are reloaded from the sqlite file."""
    if os.path.exists(TEST_DB_DIR):
        shutil.rmtree(TEST_DB_DIR)
    os.makedirs(TEST_DB_DIR)
    db_path = os.path.join(TEST_DB_DIR, "pool.db")

    try:
        db = StorageDB(db_path)
        s = PoolState(db, pool=state.pool.model_copy(deep=True))
        s.save_account("alice", Account(unstaked=7, stake_shares=3, unstaked_available_epoch_height=9))
        s.persist()
        db.close()

        db = StorageDB(db_path)
        reloaded = PoolState(db)
        assert reloaded.is_initialized()
        assert reloaded.pool == state.pool
        assert reloaded.get_account("alice") == Account(unstaked=7, stake_shares=3, unstaked_available_epoch_height=9)
        db.close()
    finally:
        shutil.rmtree(TEST_DB_DIR)


def test_transaction_rolls_back_all_writes(state, db):
    state.persist()

    with pytest.raises(RuntimeError):
        with db.transaction():
            state.save_account("alice", Account(unstaked=10))
            state.persist()
            db.set_state("host", "{}")
            raise RuntimeError("crash before commit")

    assert db.get_state(f"{ACCOUNT_PREFIX}alice") is None
    assert db.get_state("host") is None


def test_nested_transaction_commits_once(db):
    with db.transaction():
        db.set_state("a", "1")
        with db.transaction():
            db.set_state("b", "2")
        assert db.conn.in_transaction
    assert not db.conn.in_transaction
    assert db.get_state("b") == "2"
