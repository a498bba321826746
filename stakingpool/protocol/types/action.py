from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
import json
from ..crypto.hash import sha256_hex
from ..crypto.keys import sign as crypto_sign
from .common import ActionType

class Action(BaseModel):
    action_type: ActionType
    amount: int = 0                    # STAKE: desired total stake, TRANSFER: amount sent
    public_key: Optional[str] = None   # STAKE only
    method_name: Optional[str] = None  # FUNCTION_CALL only
    args: Dict[str, Any] = Field(default_factory=dict)
    gas: int = 0

    @classmethod
    def stake(cls, amount: int, public_key: str) -> 'Action':
        return cls(action_type=ActionType.STAKE, amount=amount, public_key=public_key)

    @classmethod
    def transfer(cls, amount: int) -> 'Action':
        return cls(action_type=ActionType.TRANSFER, amount=amount)

    @classmethod
    def function_call(cls, method_name: str, args: Optional[Dict[str, Any]] = None, gas: int = 0) -> 'Action':
        return cls(action_type=ActionType.FUNCTION_CALL, method_name=method_name, args=args or {}, gas=gas)

class Promise(BaseModel):
    """
    An external action issued by a contract invocation.

    The actions run on `receiver_id` once the issuing invocation has
    committed. If `callback` is set, it runs afterwards as a function call on
    the issuer, with this promise's outcome as its only promise result.
    """
    predecessor_id: str
    receiver_id: str
    actions: List[Action]
    callback: Optional[Action] = None
    nonce: int = 0    # Assigned by the host

    def then(self, callback: Action) -> 'Promise':
        self.callback = callback
        return self

    def hash(self) -> str:
        payload_str = (
            self.predecessor_id
            + self.receiver_id
            + json.dumps([a.model_dump(mode="json") for a in self.actions], sort_keys=True)
            + str(self.nonce)
        )
        return sha256_hex(payload_str.encode("utf-8"))

class ContractCall(BaseModel):
    """Signed request to invoke a pool method on behalf of `signer_id`."""
    method: str
    signer_id: str
    args: Dict[str, Any] = Field(default_factory=dict)
    attached_deposit: int = 0
    nonce: int
    signature: str = ""  # hex ECDSA, default empty
    pub_key: str = ""    # hex public key of signer

    def hash(self) -> str:
        payload_str = (
            self.method
            + self.signer_id
            + json.dumps(self.args, sort_keys=True)
            + str(self.attached_deposit)
            + str(self.nonce)
            + self.pub_key
        )
        return sha256_hex(payload_str.encode("utf-8"))

    def sign(self, priv_key_bytes: bytes):
        """Signs the call hash."""
        msg_hash = bytes.fromhex(self.hash())
        self.signature = crypto_sign(msg_hash, priv_key_bytes).hex()
