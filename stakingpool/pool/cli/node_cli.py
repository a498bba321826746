import argparse
import os
import logging
import asyncio
import json
from uvicorn import Config, Server
from ...protocol.crypto.keys import generate_private_key, public_key_from_private
from ...protocol.crypto.addresses import address_from_pubkey
from ...protocol.config.params import CURRENT_NETWORK, DECIMALS
from ..storage.db import StorageDB
from ..core.contract import StakingContract
from ..runtime.host import Host, FakeVotingContract
from ..rpc import api # import module to set globals

logger = logging.getLogger(__name__)

VOTING_ACCOUNT_SEED = b"voting-contract"

def _load_or_create_key(path: str) -> bytes:
    if os.path.exists(path):
        with open(path, "r") as f:
            return bytes.fromhex(f.read().strip())
    priv = generate_private_key()
    with open(path, "w") as f:
        f.write(priv.hex())
    os.chmod(path, 0o600)
    return priv

def cmd_init(args):
    """Initialize node: pool account key, staking key, owner key, pool config."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)
    prefix = CURRENT_NETWORK.bech32_prefix_acc

    pool_priv = _load_or_create_key(os.path.join(data_dir, "pool_account_key.hex"))
    staking_priv = _load_or_create_key(os.path.join(data_dir, "staking_key.hex"))
    owner_priv = _load_or_create_key(os.path.join(data_dir, "owner_key.hex"))

    pool_account = address_from_pubkey(public_key_from_private(pool_priv), prefix=prefix)
    staking_pub = public_key_from_private(staking_priv).hex()
    owner_account = address_from_pubkey(public_key_from_private(owner_priv), prefix=prefix)

    config_path = os.path.join(data_dir, "pool.json")
    if os.path.exists(config_path):
        print(f"Pool config already exists at {config_path}")
        return

    initial_balance = args.initial_balance
    if initial_balance is None:
        initial_balance = CURRENT_NETWORK.price_guarantee_fund + CURRENT_NETWORK.min_validator_stake

    pool_config = {
        "account_id": pool_account,
        "owner_id": owner_account,
        "stake_public_key": staking_pub,
        "initial_balance": str(initial_balance),
        "reward_fee_fraction": {
            "numerator": args.fee_numerator if args.fee_numerator is not None else CURRENT_NETWORK.default_reward_fee_numerator,
            "denominator": args.fee_denominator if args.fee_denominator is not None else CURRENT_NETWORK.default_reward_fee_denominator,
        },
        "voting_account_id": address_from_pubkey(VOTING_ACCOUNT_SEED, prefix=prefix),
    }
    with open(config_path, "w") as f:
        json.dump(pool_config, f, indent=2)

    print(f"Pool account: {pool_account}")
    print(f"Owner:        {owner_account}")
    print(f"Staking key:  {staking_pub}")
    print(f"Initial balance: {initial_balance / 10**DECIMALS}")
    print(f"\nNode initialized in {data_dir}")
    print(f"Import the owner key with: stakingpool keys import owner --private-key {owner_priv.hex()}")

def build_host(data_dir: str) -> Host:
    """Opens the pool DB and initializes the pool on first start."""
    with open(os.path.join(data_dir, "pool.json"), "r") as f:
        pool_config = json.load(f)

    db = StorageDB(os.path.join(data_dir, "pool.db"))
    contract = StakingContract(db, config=CURRENT_NETWORK)
    host = Host(contract, pool_config["account_id"],
                initial_balance=int(pool_config["initial_balance"]),
                config=CURRENT_NETWORK)
    host.register_contract(pool_config["voting_account_id"], FakeVotingContract())

    if not contract.state.is_initialized():
        logger.info(f"Initializing pool {pool_config['account_id']}")
        host.call(
            pool_config["owner_id"], "new",
            owner_id=pool_config["owner_id"],
            stake_public_key=pool_config["stake_public_key"],
            reward_fee_fraction=pool_config["reward_fee_fraction"],
        )
        host.run_until_idle()

    return host

async def run_node_async(args):
    data_dir = args.datadir
    if not os.path.exists(os.path.join(data_dir, "pool.json")):
        logger.error(f"No pool config in {data_dir}. Run 'init' first.")
        return

    print(f"Starting staking pool node ({CURRENT_NETWORK.network_id})...")
    print(f"Data DB: {os.path.join(data_dir, 'pool.db')}")
    print(f"RPC: {args.host}:{args.port}")

    host = build_host(data_dir)

    # Inject into RPC module (global vars)
    api.host = host

    config = Config(app=api.app, host=args.host, port=args.port, log_level="info")
    server = Server(config)
    try:
        await server.serve()
    finally:
        host.contract.db.close()

def cmd_run(args):
    """Wrapper to run async main."""
    try:
        asyncio.run(run_node_async(args))
    except KeyboardInterrupt:
        pass

def main():
    parser = argparse.ArgumentParser(description="Staking Pool Node CLI")
    parser.add_argument("--datadir", default="./.stakingpool", help="Data directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Initialize node configuration")
    init_parser.add_argument("--initial-balance", type=int, help="Initial pool account balance (raw units)")
    init_parser.add_argument("--fee-numerator", type=int, help="Reward fee numerator")
    init_parser.add_argument("--fee-denominator", type=int, help="Reward fee denominator")

    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
