"""
In-process host for the staking pool.

Holds the balances of the pool account (liquid, validator stake, unbonding
queue), the epoch counter and the wallets of the other accounts. Contract
invocations are run through `call`; promises they issue are queued in the
PromiseStore and executed by `process_pending`.
"""

from typing import Dict, List, Tuple, Callable, Any, Optional
import json
import logging
import threading

from ...protocol.types.common import ActionType, PromiseStatus, ValidationError, ProtocolError
from ...protocol.types.action import Action, Promise
from ...protocol.crypto.keys import is_valid_public_key
from ...protocol.config.params import CURRENT_NETWORK, NetworkConfig
from ..core.contract import StakingContract
from ..core.promises import PromiseStore, PromiseReceipt
from ..observability import metrics
from .context import Context

logger = logging.getLogger(__name__)

HOST_KEY = "host"

# (predecessor_id, method_name, args) -> result
ExternalContract = Callable[[str, str, Dict[str, Any]], Any]


class ActionError(Exception):
    """An external action was rejected by the host."""
    pass


class FakeVotingContract:
    """Records the last vote cast by each account."""

    def __init__(self):
        self.votes: Dict[str, bool] = {}

    def __call__(self, predecessor_id: str, method_name: str, args: Dict[str, Any]):
        if method_name != "vote":
            raise ActionError(f"Method {method_name} not found on voting contract")
        self.votes[predecessor_id] = bool(args.get("is_vote"))
        logger.info(f"Vote from {predecessor_id}: {self.votes[predecessor_id]}")


class Host:
    def __init__(self, contract: StakingContract, account_id: str,
                 initial_balance: int = 0, epoch_height: int = 0,
                 config: NetworkConfig = CURRENT_NETWORK,
                 promise_store: Optional[PromiseStore] = None):
        self.contract = contract
        self.account_id = account_id
        self.config = config
        self.promise_store = promise_store or PromiseStore()

        self.epoch_height = epoch_height
        self.liquid = initial_balance
        self.staked = 0
        self.stake_public_key: Optional[str] = None
        # (release_epoch, amount), still part of the locked balance
        self.unbonding: List[Tuple[int, int]] = []
        self.wallets: Dict[str, int] = {}
        self.contracts: Dict[str, ExternalContract] = {}
        # Last used call nonce per signer
        self.nonces: Dict[str, int] = {}

        self._nonce = 0
        self._fail_next_stake = False
        self._lock = threading.RLock()

        self.load()

    # --- Persistence ---

    def load(self):
        raw_json = self.contract.db.get_state(HOST_KEY)
        if not raw_json:
            return
        data = json.loads(raw_json)
        self.epoch_height = data["epoch_height"]
        self.liquid = int(data["liquid"])
        self.staked = int(data["staked"])
        self.stake_public_key = data.get("stake_public_key")
        self.unbonding = [(e, int(a)) for e, a in data["unbonding"]]
        self.wallets = {k: int(v) for k, v in data["wallets"].items()}
        self._nonce = data["nonce"]
        self.nonces = data.get("call_nonces", {})

    def save(self):
        data = {
            "epoch_height": self.epoch_height,
            "liquid": str(self.liquid),
            "staked": str(self.staked),
            "stake_public_key": self.stake_public_key,
            "unbonding": [[e, str(a)] for e, a in self.unbonding],
            "wallets": {k: str(v) for k, v in self.wallets.items()},
            "nonce": self._nonce,
            "call_nonces": self.nonces,
        }
        self.contract.db.set_state(HOST_KEY, json.dumps(data))

    # --- Balances ---

    @property
    def locked(self) -> int:
        return self.staked + sum(amount for _, amount in self.unbonding)

    def balance_of(self, account_id: str) -> int:
        return self.wallets.get(account_id, 0)

    def fund(self, account_id: str, amount: int):
        if amount < 0:
            raise ValidationError("Amount must be non-negative")
        with self._lock:
            self.wallets[account_id] = self.wallets.get(account_id, 0) + amount
            self.save()

    def use_nonce(self, account_id: str, nonce: int):
        """Consumes the next call nonce of `account_id`."""
        with self._lock:
            expected = self.nonces.get(account_id, 0) + 1
            if nonce != expected:
                raise ValidationError(f"Invalid nonce: expected {expected}, got {nonce}")
            self.nonces[account_id] = nonce
            self.save()

    def register_contract(self, account_id: str, handler: ExternalContract):
        self.contracts[account_id] = handler

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "account_id": self.account_id,
                "epoch_height": self.epoch_height,
                "liquid_balance": self.liquid,
                "locked_balance": self.locked,
                "validator_stake": self.staked,
                "unbonding": [{"release_epoch": e, "amount": a} for e, a in self.unbonding],
                "pending_promises": len(self.promise_store.pending()),
            }

    # --- Invocation ---

    def _context(self, predecessor_id: str, attached_deposit: int = 0,
                 promise_results: Optional[List[PromiseStatus]] = None) -> Context:
        return Context(
            current_account_id=self.account_id,
            predecessor_id=predecessor_id,
            epoch_height=self.epoch_height,
            account_balance=self.liquid + attached_deposit,
            account_locked_balance=self.locked,
            attached_deposit=attached_deposit,
            promise_results=list(promise_results or []),
        )

    def call(self, signer_id: str, method: str, attached_deposit: int = 0, **args) -> Any:
        """
        Invokes a change method on behalf of `signer_id`.

        The attached deposit moves from the signer's wallet to the pool only if
        the invocation succeeds. Contract errors are re-raised after rollback.
        """
        if attached_deposit < 0:
            raise ValidationError("Attached deposit must be non-negative")
        with self._lock:
            if self.balance_of(signer_id) < attached_deposit:
                raise ValidationError(f"Not enough balance to attach {attached_deposit}")
            # Pool ledger and host balances land in one commit
            with self.contract.db.transaction():
                result = self._invoke(self._context(signer_id, attached_deposit), method, args)
                if attached_deposit:
                    self.wallets[signer_id] -= attached_deposit
                    self.liquid += attached_deposit
                self.save()
            return result

    def view(self, method: str, **args) -> Any:
        with self._lock:
            return self.contract.view(self._context(self.account_id), method, **args)

    def _invoke(self, ctx: Context, method: str, args: Dict[str, Any]) -> Any:
        result = self.contract.call(ctx, method, **args)
        for promise in ctx.promises:
            self._enqueue(promise)
        return result

    def _enqueue(self, promise: Promise) -> PromiseReceipt:
        self._nonce += 1
        promise.nonce = self._nonce
        return self.promise_store.add_pending(promise)

    # --- Promise execution ---

    def process_pending(self) -> int:
        """Executes the promises pending right now. Returns how many ran."""
        with self._lock:
            receipts = self.promise_store.pending()
            with self.contract.db.transaction():
                for receipt in receipts:
                    self._execute(receipt)
                self.save()
            metrics.update_metrics(self.contract.state, self.promise_store)
            return len(receipts)

    def run_until_idle(self, max_rounds: int = 100) -> int:
        """Executes promises, including those issued by callbacks, until none are pending."""
        total = 0
        for _ in range(max_rounds):
            executed = self.process_pending()
            if executed == 0:
                return total
            total += executed
        raise RuntimeError(f"Promises still pending after {max_rounds} rounds")

    def _execute(self, receipt: PromiseReceipt):
        promise = receipt.promise
        try:
            for action in promise.actions:
                self._apply(promise, action)
        except ActionError as e:
            logger.warning(f"Promise {receipt.promise_id[:16]}... to {promise.receiver_id} failed: {e}")
            self.promise_store.mark_failed(receipt.promise_id, self.epoch_height, str(e))
        else:
            self.promise_store.mark_successful(receipt.promise_id, self.epoch_height)

        if promise.callback is not None:
            self._run_callback(promise, receipt.status)

    def _run_callback(self, promise: Promise, status: PromiseStatus):
        if promise.predecessor_id != self.account_id:
            raise ValueError(f"Callback for unknown contract {promise.predecessor_id}")
        callback = promise.callback
        ctx = self._context(promise.receiver_id, promise_results=[status])
        try:
            self._invoke(ctx, callback.method_name, callback.args)
        except ProtocolError as e:
            logger.error(f"Callback {callback.method_name} failed: {e}")

    def _apply(self, promise: Promise, action: Action):
        if action.action_type == ActionType.STAKE:
            self._apply_stake(action)
        elif action.action_type == ActionType.TRANSFER:
            if self.liquid < action.amount:
                raise ActionError(f"Not enough liquid balance to transfer {action.amount}")
            self.liquid -= action.amount
            self.wallets[promise.receiver_id] = self.wallets.get(promise.receiver_id, 0) + action.amount
        elif action.action_type == ActionType.FUNCTION_CALL:
            self._apply_function_call(promise, action)
        else:
            raise ActionError(f"Unknown action type {action.action_type}")

    def _apply_stake(self, action: Action):
        """Sets the validator stake to `action.amount`."""
        try:
            amount = action.amount
            if self._fail_next_stake:
                self._fail_next_stake = False
                raise ActionError("Stake action rejected")
            if not action.public_key or not is_valid_public_key(action.public_key):
                raise ActionError("Invalid staking public key")
            if 0 < amount < self.config.min_validator_stake:
                raise ActionError(f"Stake {amount} is below the validator minimum {self.config.min_validator_stake}")
            if amount > self.locked + self.liquid:
                raise ActionError(f"Stake {amount} exceeds the account balance")
        except ActionError:
            metrics.stake_actions_total.labels(outcome="failed").inc()
            raise

        if amount > self.staked:
            needed = amount - self.staked
            # Unbonding balance is restaked first, newest first
            while needed > 0 and self.unbonding:
                release_epoch, unbonding_amount = self.unbonding.pop()
                taken = min(needed, unbonding_amount)
                if unbonding_amount > taken:
                    self.unbonding.append((release_epoch, unbonding_amount - taken))
                needed -= taken
            self.liquid -= needed
        elif amount < self.staked:
            self.unbonding.append((self.epoch_height + self.config.unbonding_period_epochs, self.staked - amount))

        self.staked = amount
        self.stake_public_key = action.public_key
        metrics.stake_actions_total.labels(outcome="ok").inc()
        logger.info(f"Validator stake set to {amount} (locked {self.locked}, liquid {self.liquid})")

    def _apply_function_call(self, promise: Promise, action: Action):
        if promise.receiver_id == self.account_id:
            ctx = self._context(promise.predecessor_id)
            try:
                self._invoke(ctx, action.method_name, action.args)
            except ProtocolError as e:
                raise ActionError(str(e))
            return

        handler = self.contracts.get(promise.receiver_id)
        if handler is None:
            raise ActionError(f"Account {promise.receiver_id} has no contract")
        handler(promise.predecessor_id, action.method_name, action.args)

    # --- Epochs and balance hooks ---

    def advance_epochs(self, n: int = 1):
        """Moves the epoch counter forward and releases matured unbonding balance."""
        if n < 0:
            raise ValidationError("Cannot move epochs backwards")
        with self._lock:
            self.epoch_height += n
            released = sum(a for e, a in self.unbonding if e <= self.epoch_height)
            self.unbonding = [(e, a) for e, a in self.unbonding if e > self.epoch_height]
            self.liquid += released
            if released:
                logger.info(f"Epoch {self.epoch_height}: released {released} from unbonding")
            self.save()

    def add_reward(self, amount: int):
        """Validator reward: grows the staked balance."""
        with self._lock:
            self.staked += amount
            self.save()

    def slash(self, amount: int):
        with self._lock:
            self.staked -= min(amount, self.staked)
            self.save()

    def fail_next_stake(self):
        self._fail_next_stake = True
