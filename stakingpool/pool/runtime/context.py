"""Per-invocation view of the host, handed to every contract method."""

from dataclasses import dataclass, field
from typing import List, Tuple, Dict, Any
import logging

from ...protocol.types.common import PromiseStatus
from ...protocol.types.action import Action, Promise

logger = logging.getLogger(__name__)


@dataclass
class Context:
    """
    Attributes:
        current_account_id: Account the contract runs on
        predecessor_id: Immediate caller
        epoch_height: Current epoch
        account_balance: Liquid balance of the contract account, including attached_deposit
        account_locked_balance: Balance locked by the validator stake (incl. unbonding)
        attached_deposit: Amount sent with this call
        promise_results: Results delivered to a callback
        promises: Promises issued by this invocation, dispatched only if it commits
        events: (event_type, data) pairs, published only if it commits
    """
    current_account_id: str
    predecessor_id: str
    epoch_height: int
    account_balance: int = 0
    account_locked_balance: int = 0
    attached_deposit: int = 0
    promise_results: List[PromiseStatus] = field(default_factory=list)
    promises: List[Promise] = field(default_factory=list)
    events: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    def promise(self, receiver_id: str, *actions: Action) -> Promise:
        p = Promise(predecessor_id=self.current_account_id, receiver_id=receiver_id, actions=list(actions))
        self.promises.append(p)
        return p

    def log(self, message: str, event_type: str = "log", **data: Any):
        logger.debug(message)
        self.events.append((event_type, dict(data, message=message)))

    def discard(self):
        """Drops everything this invocation would have published."""
        self.promises.clear()
        self.events.clear()
