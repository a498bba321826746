from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Optional, Any
from ...protocol.types.action import ContractCall
from ...protocol.types.common import ValidationError, DegenerateStateError
from ...protocol.crypto.keys import verify
from ...protocol.crypto.addresses import address_from_pubkey
from ..runtime.host import Host
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Staking Pool Node RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
host: Optional[Host] = None

class AdvanceEpochsRequest(BaseModel):
    epochs: int = 1

class FundRequest(BaseModel):
    account_id: str
    amount: int

def _require_host() -> Host:
    if not host:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return host

def _require_pool(h: Host):
    if not h.contract.state.is_initialized():
        raise HTTPException(status_code=503, detail="Pool not initialized")

def _encode(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value

def _account_dict(account) -> dict:
    # 128-bit amounts are sent as strings
    return {
        "account_id": account.account_id,
        "unstaked_balance": str(account.unstaked_balance),
        "staked_balance": str(account.staked_balance),
        "can_withdraw": account.can_withdraw,
    }

@app.get("/status")
async def get_status():
    h = _require_host()
    status = h.status()
    for key in ("liquid_balance", "locked_balance", "validator_stake"):
        status[key] = str(status[key])
    for entry in status["unbonding"]:
        entry["amount"] = str(entry["amount"])
    status["network"] = h.config.network_id
    status["initialized"] = h.contract.state.is_initialized()
    return status

@app.get("/pool")
async def get_pool():
    h = _require_host()
    _require_pool(h)
    info = h.view("get_pool_info")
    data = info.model_dump(mode="json")
    data["total_staked_balance"] = str(info.total_staked_balance)
    data["total_stake_shares"] = str(info.total_stake_shares)
    return data

@app.get("/accounts")
async def get_accounts(from_index: int = 0, limit: Optional[int] = None):
    h = _require_host()
    _require_pool(h)
    try:
        accounts = h.view("get_accounts", from_index=from_index, limit=limit)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "from_index": from_index,
        "total": h.view("get_number_of_accounts"),
        "accounts": [_account_dict(a) for a in accounts],
    }

@app.get("/account/{account_id}")
async def get_account(account_id: str):
    h = _require_host()
    _require_pool(h)
    data = _account_dict(h.view("get_account", account_id=account_id))
    data["wallet_balance"] = str(h.balance_of(account_id))
    data["nonce"] = h.nonces.get(account_id, 0)
    return data

@app.post("/call")
async def send_call(call: ContractCall):
    """
    Executes a signed contract call, then runs the promises it issued.

    The signer must be the account derived from `pub_key`, and `nonce` must
    be the signer's next nonce. A failed call still consumes the nonce.
    """
    h = _require_host()

    try:
        pub_bytes = bytes.fromhex(call.pub_key)
        signature = bytes.fromhex(call.signature)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed public key or signature")
    if address_from_pubkey(pub_bytes, prefix=h.config.bech32_prefix_acc) != call.signer_id:
        raise HTTPException(status_code=400, detail="Public key does not match signer")
    if not verify(bytes.fromhex(call.hash()), signature, pub_bytes):
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        h.use_nonce(call.signer_id, call.nonce)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = h.call(call.signer_id, call.method, attached_deposit=call.attached_deposit, **call.args)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TypeError as e:
        # Wrong or missing method arguments
        raise HTTPException(status_code=400, detail=f"Invalid arguments for {call.method}: {e}")
    except DegenerateStateError as e:
        logger.error(f"Call {call.method} by {call.signer_id} hit a degenerate state: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    promise_ids = [r.promise_id for r in h.promise_store.pending()]
    h.run_until_idle()

    return {
        "call_hash": call.hash(),
        "status": "ok",
        "result": _encode(result),
        "promises": [h.promise_store.get(pid).to_dict() for pid in promise_ids],
    }

@app.get("/promise/{promise_id}")
async def get_promise(promise_id: str):
    h = _require_host()
    receipt = h.promise_store.get(promise_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Promise not found")
    return receipt.to_dict()

# ═══════════════════════════════════════════════════════════════════
# HOST CONTROL (devnet only)
# ═══════════════════════════════════════════════════════════════════

def _require_host_control() -> Host:
    h = _require_host()
    if not h.config.allow_host_control:
        raise HTTPException(status_code=403, detail="Host control is disabled on this network")
    return h

@app.post("/host/advance_epochs")
async def advance_epochs(req: AdvanceEpochsRequest):
    h = _require_host_control()
    try:
        h.advance_epochs(req.epochs)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"epoch_height": h.epoch_height}

@app.post("/host/fund")
async def fund_account(req: FundRequest):
    h = _require_host_control()
    try:
        h.fund(req.account_id, req.amount)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"account_id": req.account_id, "wallet_balance": str(h.balance_of(req.account_id))}

@app.get("/metrics")
async def get_metrics():
    """Prometheus metrics endpoint."""
    try:
        from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
        from ..observability.metrics import metrics_registry, update_metrics

        if host and host.contract.state.is_initialized():
            update_metrics(host.contract.state, host.promise_store)

        return Response(
            content=generate_latest(metrics_registry),
            media_type=CONTENT_TYPE_LATEST
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Metrics error: {str(e)}")

def start_rpc_server(host_instance: Host, bind: str = "0.0.0.0", port: int = 8000):
    global host
    host = host_instance
    import uvicorn
    uvicorn.run(app, host=bind, port=port)
