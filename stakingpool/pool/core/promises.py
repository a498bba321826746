"""
Pending-request table for external actions.

Every promise issued by a committed invocation gets a receipt. The receipt
starts as pending and is resolved by the host exactly once; a callback
attached to the promise receives the resolved status as its only result.
"""
from dataclasses import dataclass
from typing import Optional, Dict, List
import time
import logging
from threading import RLock

from ...protocol.types.common import PromiseStatus
from ...protocol.types.action import Promise

logger = logging.getLogger(__name__)


@dataclass
class PromiseReceipt:
    """
    Outcome of a promise.

    Attributes:
        promise_id: Promise hash
        promise: The issued request, kept so the callback can be resumed
        status: PENDING until executed, then SUCCESSFUL or FAILED
        epoch_height: Epoch in which the promise was executed
        timestamp: When the receipt was last updated (unix timestamp)
        error: Failure reason if FAILED
    """
    promise_id: str
    promise: Promise
    status: PromiseStatus = PromiseStatus.PENDING
    epoch_height: Optional[int] = None
    timestamp: int = 0
    error: Optional[str] = None

    def __post_init__(self):
        if self.timestamp == 0:
            self.timestamp = int(time.time())

    def to_dict(self) -> dict:
        return {
            "promise_id": self.promise_id,
            "receiver_id": self.promise.receiver_id,
            "actions": [a.action_type.value for a in self.promise.actions],
            "status": self.status.value,
            "epoch_height": self.epoch_height,
            "timestamp": self.timestamp,
            "error": self.error,
        }


class PromiseStore:
    """
    Thread-safe store of promise receipts, in issue order.

    Resolved receipts beyond `max_receipts` are dropped oldest first;
    pending receipts are never dropped.
    """

    def __init__(self, max_receipts: int = 10000):
        self.receipts: Dict[str, PromiseReceipt] = {}
        self.max_receipts = max_receipts
        self.lock = RLock()

    def add_pending(self, promise: Promise) -> PromiseReceipt:
        with self.lock:
            promise_id = promise.hash()
            if promise_id in self.receipts:
                raise ValueError(f"Duplicate promise {promise_id[:16]}")

            receipt = PromiseReceipt(promise_id=promise_id, promise=promise)
            self.receipts[promise_id] = receipt

            if len(self.receipts) > self.max_receipts:
                self._cleanup_old_receipts()

            logger.debug(f"Added pending promise: {promise_id[:16]}... -> {promise.receiver_id}")
            return receipt

    def mark_successful(self, promise_id: str, epoch_height: int) -> PromiseReceipt:
        return self._resolve(promise_id, PromiseStatus.SUCCESSFUL, epoch_height)

    def mark_failed(self, promise_id: str, epoch_height: int, error: str) -> PromiseReceipt:
        return self._resolve(promise_id, PromiseStatus.FAILED, epoch_height, error)

    def _resolve(self, promise_id: str, status: PromiseStatus, epoch_height: int,
                 error: Optional[str] = None) -> PromiseReceipt:
        with self.lock:
            receipt = self.receipts.get(promise_id)
            if receipt is None:
                raise KeyError(f"Unknown promise {promise_id[:16]}")
            if receipt.status != PromiseStatus.PENDING:
                raise ValueError(f"Promise {promise_id[:16]} already resolved as {receipt.status.value}")

            receipt.status = status
            receipt.epoch_height = epoch_height
            receipt.error = error
            receipt.timestamp = int(time.time())

            logger.debug(f"Resolved promise {promise_id[:16]}... as {status.value}" +
                         (f": {error}" if error else ""))
            return receipt

    def get(self, promise_id: str) -> Optional[PromiseReceipt]:
        with self.lock:
            return self.receipts.get(promise_id)

    def pending(self) -> List[PromiseReceipt]:
        """Pending receipts in issue order."""
        with self.lock:
            return [r for r in self.receipts.values() if r.status == PromiseStatus.PENDING]

    def all(self) -> List[PromiseReceipt]:
        with self.lock:
            return list(self.receipts.values())

    def _cleanup_old_receipts(self) -> None:
        """Remove the oldest 10% of resolved receipts."""
        resolved = [pid for pid, r in self.receipts.items() if r.status != PromiseStatus.PENDING]
        num_to_remove = min(len(resolved), len(self.receipts) // 10)

        for promise_id in resolved[:num_to_remove]:
            del self.receipts[promise_id]

        logger.info(f"Cleaned up {num_to_remove} old receipts (total: {len(self.receipts)})")

    def clear(self) -> None:
        """Clear all receipts (for testing)."""
        with self.lock:
            self.receipts.clear()
