from typing import Dict, Optional, List, Set
from .accounts import Account, Pool
from . import share_math
from ..storage.db import StorageDB

POOL_KEY = "pool"
ACCOUNT_PREFIX = "acc:"

class PoolState:
    """
    Account ledger and pool ledger of a staking pool.

    Reads fall through an in-memory overlay to the DB. Nothing reaches the DB
    before `persist()`, so dropping a clone is a full rollback.
    """

    def __init__(self, db: StorageDB, pool: Optional[Pool] = None,
                 accounts: Dict[str, Account] = None, removed: Set[str] = None):
        self.db = db
        self.pool: Optional[Pool] = pool
        # Cache for modified/accessed accounts: account_id -> Account
        self._accounts: Dict[str, Account] = accounts if accounts is not None else {}
        # Accounts drained to zero, deleted from the DB on persist
        self._removed: Set[str] = removed if removed is not None else set()

        if self.pool is None:
            self.load_pool()

    def clone(self) -> 'PoolState':
        """Creates a copy of the state (for rollback)."""
        new_accounts = {k: v.model_copy() for k, v in self._accounts.items()}
        new_pool = self.pool.model_copy(deep=True) if self.pool else None
        return PoolState(self.db, new_pool, new_accounts, set(self._removed))

    def load_pool(self):
        raw_json = self.db.get_state(POOL_KEY)
        if raw_json:
            self.pool = Pool.model_validate_json(raw_json)

    def is_initialized(self) -> bool:
        return self.pool is not None

    def get_account(self, account_id: str) -> Account:
        """Returns a copy of the account, or a zero account if it doesn't exist."""
        if account_id in self._accounts:
            return self._accounts[account_id].model_copy()
        if account_id in self._removed:
            return Account()

        raw_json = self.db.get_state(f"{ACCOUNT_PREFIX}{account_id}")
        if raw_json:
            acc = Account.model_validate_json(raw_json)
            self._accounts[account_id] = acc
            return acc.model_copy()

        return Account()

    def save_account(self, account_id: str, account: Account):
        """Stores the account. A zero account is removed instead to release storage."""
        if account.is_empty():
            self._accounts.pop(account_id, None)
            self._removed.add(account_id)
        else:
            self._accounts[account_id] = account
            self._removed.discard(account_id)

    def get_account_ids(self) -> List[str]:
        """All stored account ids in ascending order (DB + cache overlay)."""
        ids = {k[len(ACCOUNT_PREFIX):] for k in self.db.get_keys_by_prefix(ACCOUNT_PREFIX)}
        ids -= self._removed
        ids |= set(self._accounts.keys())
        return sorted(ids)

    def get_number_of_accounts(self) -> int:
        return len(self.get_account_ids())

    def persist(self):
        """Writes the pool and modified accounts to DB."""
        for account_id in self._removed:
            self.db.delete_state(f"{ACCOUNT_PREFIX}{account_id}")
        for account_id, acc in self._accounts.items():
            self.db.set_state(f"{ACCOUNT_PREFIX}{account_id}", acc.model_dump_json())
        if self.pool is not None:
            self.db.set_state(POOL_KEY, self.pool.model_dump_json())
        self._removed.clear()

    # --- Share math at the current pool totals ---

    def num_shares_from_staked_amount_rounded_down(self, amount: int) -> int:
        return share_math.num_shares_from_staked_amount_rounded_down(
            self.pool.total_stake_shares, self.pool.total_staked_balance, amount)

    def num_shares_from_staked_amount_rounded_up(self, amount: int) -> int:
        return share_math.num_shares_from_staked_amount_rounded_up(
            self.pool.total_stake_shares, self.pool.total_staked_balance, amount)

    def staked_amount_from_num_shares_rounded_down(self, num_shares: int) -> int:
        return share_math.staked_amount_from_num_shares_rounded_down(
            self.pool.total_stake_shares, self.pool.total_staked_balance, num_shares)

    def staked_amount_from_num_shares_rounded_up(self, num_shares: int) -> int:
        return share_math.staked_amount_from_num_shares_rounded_up(
            self.pool.total_stake_shares, self.pool.total_staked_balance, num_shares)

    def share_price(self) -> tuple:
        """(total_staked_balance, total_stake_shares), compare with share_math.share_price_not_lower."""
        return self.pool.total_staked_balance, self.pool.total_stake_shares
