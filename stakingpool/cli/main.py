# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import requests
import os
from decimal import Decimal, InvalidOperation
from typing import Dict, Any
from .keystore import KeyStore
from ..protocol.types.action import ContractCall
from ..protocol.config.params import DECIMALS, DENOM

DEFAULT_NODE = "http://localhost:8000"

def get_node_url(args):
    return args.node or os.environ.get("STAKINGPOOL_NODE", DEFAULT_NODE)

def to_units(amount: str) -> int:
    """Token amount ("1.5") to raw units."""
    try:
        units = Decimal(amount) * 10**DECIMALS
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}")
    if units != units.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {DECIMALS} decimals")
    return int(units)

def fmt_units(raw: str) -> str:
    return f"{Decimal(int(raw)) / 10**DECIMALS} {DENOM}"

def _get(url: str, path: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
    try:
        resp = requests.get(f"{url}{path}", params=params)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

def _post(url: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        resp = requests.post(f"{url}{path}", json=payload)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.json().get('detail', resp.text)}")
        sys.exit(1)
    return resp.json()

# --- Keys Commands ---
def cmd_keys_add(args):
    ks = KeyStore()
    try:
        key = ks.create_key(args.name)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Key '{args.name}' created.")
    print(f"Account: {key['account_id']}")
    print(f"Pubkey:  {key['public_key']}")
    print("Important: Private key saved unencrypted. Do not share!")

def cmd_keys_import(args):
    ks = KeyStore()
    try:
        key = ks.import_key(args.name, args.private_key)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Key '{args.name}' imported.")
    print(f"Account: {key['account_id']}")

def cmd_keys_list(args):
    keys = KeyStore().list_keys()
    if not keys:
        print("No keys found.")
        return

    print(f"{'Name':<15} {'Account':<45}")
    print("-" * 60)
    for k in keys:
        print(f"{k['name']:<15} {k['account_id']:<45}")

def cmd_keys_show(args):
    key = KeyStore().get_key(args.name)
    if not key:
        print(f"Key '{args.name}' not found.")
        sys.exit(1)
    print(json.dumps({k: v for k, v in key.items() if k != 'private_key'}, indent=2))

# --- Query Commands ---
def cmd_query_status(args):
    print(json.dumps(_get(get_node_url(args), "/status"), indent=2))

def cmd_query_pool(args):
    data = _get(get_node_url(args), "/pool")
    fee = data['reward_fee_fraction']
    print(f"Owner:          {data['owner_id']}")
    print(f"Staking key:    {data['stake_public_key']}")
    print(f"Epoch:          {data['epoch_height']} (last ping {data['last_epoch_height']})")
    print(f"Total staked:   {fmt_units(data['total_staked_balance'])}")
    print(f"Total shares:   {data['total_stake_shares']}")
    print(f"Reward fee:     {fee['numerator']}/{fee['denominator']}")
    print(f"Paused:         {data['paused']}")
    print(f"Accounts:       {data['number_of_accounts']}")

def cmd_query_account(args):
    data = _get(get_node_url(args), f"/account/{args.account_id}")
    print(f"Account:   {data['account_id']}")
    print(f"Unstaked:  {fmt_units(data['unstaked_balance'])}")
    print(f"Staked:    {fmt_units(data['staked_balance'])}")
    print(f"Can withdraw: {data['can_withdraw']}")
    print(f"Wallet:    {fmt_units(data['wallet_balance'])}")
    print(f"Nonce:     {data['nonce']}")

def cmd_query_accounts(args):
    data = _get(get_node_url(args), "/accounts", {"from_index": args.from_index, "limit": args.limit})
    print(f"Total accounts: {data['total']}")
    print(f"{'Account':<45} {'Staked':>24} {'Unstaked':>24}")
    print("-" * 95)
    for a in data['accounts']:
        print(f"{a['account_id']:<45} {a['staked_balance']:>24} {a['unstaked_balance']:>24}")

# --- Call Commands ---
def send_call(args, method: str, call_args: Dict[str, Any] = None, attached_deposit: int = 0):
    key = KeyStore().get_key(args.from_name)
    if not key:
        print(f"Key '{args.from_name}' not found.")
        sys.exit(1)

    url = get_node_url(args)
    account = _get(url, f"/account/{key['account_id']}")

    call = ContractCall(
        method=method,
        signer_id=key['account_id'],
        args=call_args or {},
        attached_deposit=attached_deposit,
        nonce=account['nonce'] + 1,
        pub_key=key['public_key'],
    )
    call.sign(bytes.fromhex(key['private_key']))

    res = _post(url, "/call", call.model_dump())
    print(f"Success! CallHash: {res['call_hash']}")
    for p in res['promises']:
        line = f"  {', '.join(p['actions'])} -> {p['receiver_id']}: {p['status']}"
        if p['error']:
            line += f" ({p['error']})"
        print(line)
    if res['result'] is not None:
        print(json.dumps(res['result'], indent=2))

def cmd_call(args):
    """Generic call with JSON args, amounts in raw units."""
    try:
        call_args = json.loads(args.args)
    except json.JSONDecodeError as e:
        print(f"Error: invalid JSON args: {e}")
        sys.exit(1)
    send_call(args, args.method, call_args, attached_deposit=args.deposit)

def _amount(args) -> int:
    try:
        return to_units(args.amount)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def cmd_deposit(args):
    send_call(args, "deposit", attached_deposit=_amount(args))

def cmd_deposit_and_stake(args):
    send_call(args, "deposit_and_stake", attached_deposit=_amount(args))

def cmd_stake(args):
    if args.amount == "all":
        send_call(args, "stake_all")
    else:
        send_call(args, "stake", {"amount": str(_amount(args))})

def cmd_unstake(args):
    if args.amount == "all":
        send_call(args, "unstake_all")
    else:
        send_call(args, "unstake", {"amount": str(_amount(args))})

def cmd_withdraw(args):
    if args.amount == "all":
        send_call(args, "withdraw_all")
    else:
        send_call(args, "withdraw", {"amount": str(_amount(args))})

def cmd_ping(args):
    send_call(args, "ping")

# --- Owner Commands ---
def cmd_owner_update_fee(args):
    send_call(args, "update_reward_fee_fraction",
              {"reward_fee_fraction": {"numerator": args.numerator, "denominator": args.denominator}})

def cmd_owner_update_key(args):
    send_call(args, "update_staking_key", {"stake_public_key": args.stake_public_key})

def cmd_owner_vote(args):
    send_call(args, "vote", {"voting_account_id": args.voting_account_id, "is_vote": args.is_vote == "yes"})

def cmd_owner_pause(args):
    send_call(args, "pause_staking")

def cmd_owner_resume(args):
    send_call(args, "resume_staking")

# --- Devnet Host Commands ---
def cmd_host_advance(args):
    res = _post(get_node_url(args), "/host/advance_epochs", {"epochs": args.epochs})
    print(f"Epoch height: {res['epoch_height']}")

def cmd_host_fund(args):
    try:
        amount = to_units(args.amount)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    res = _post(get_node_url(args), "/host/fund", {"account_id": args.account_id, "amount": amount})
    print(f"Wallet of {res['account_id']}: {fmt_units(res['wallet_balance'])}")

def _add_from(p):
    p.add_argument("--from", dest="from_name", required=True, help="Signer key name")

def main():
    parser = argparse.ArgumentParser(description="Staking Pool CLI")
    parser.add_argument("--node", help=f"Node URL (default: {DEFAULT_NODE})")

    subparsers = parser.add_subparsers(dest="command")

    # Keys
    p_keys = subparsers.add_parser("keys", help="Manage keys")
    sp_keys = p_keys.add_subparsers(dest="subcommand")

    pk_add = sp_keys.add_parser("add", help="Create new key")
    pk_add.add_argument("name", help="Key name")

    pk_imp = sp_keys.add_parser("import", help="Import private key")
    pk_imp.add_argument("name", help="Key name")
    pk_imp.add_argument("--private-key", required=True, help="Hex private key")

    sp_keys.add_parser("list", help="List keys")

    pk_show = sp_keys.add_parser("show", help="Show key details")
    pk_show.add_argument("name", help="Key name")

    # Query
    p_query = subparsers.add_parser("query", help="Query pool state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    sp_query.add_parser("status", help="Host status")
    sp_query.add_parser("pool", help="Pool summary")

    pq_acc = sp_query.add_parser("account", help="Account balances")
    pq_acc.add_argument("account_id", help="Account ID")

    pq_accs = sp_query.add_parser("accounts", help="List accounts")
    pq_accs.add_argument("--from-index", type=int, default=0)
    pq_accs.add_argument("--limit", type=int, default=None)

    # Delegator calls
    p_call = subparsers.add_parser("call", help="Call the pool contract")
    sp_call = p_call.add_subparsers(dest="subcommand")

    for name, help_text in [("deposit", "Deposit tokens"),
                            ("deposit-and-stake", "Deposit and stake tokens")]:
        pc = sp_call.add_parser(name, help=help_text)
        pc.add_argument("amount", help=f"Amount in {DENOM}")
        _add_from(pc)

    for name, help_text in [("stake", "Stake unstaked balance"),
                            ("unstake", "Unstake staked balance"),
                            ("withdraw", "Withdraw unstaked balance")]:
        pc = sp_call.add_parser(name, help=help_text)
        pc.add_argument("amount", help=f"Amount in {DENOM}, or 'all'")
        _add_from(pc)

    pc_ping = sp_call.add_parser("ping", help="Distribute rewards")
    _add_from(pc_ping)

    pc_raw = sp_call.add_parser("raw", help="Call any method with JSON args")
    pc_raw.add_argument("method", help="Method name")
    pc_raw.add_argument("--args", default="{}", help="JSON args")
    pc_raw.add_argument("--deposit", type=int, default=0, help="Attached deposit (raw units)")
    _add_from(pc_raw)

    # Owner calls
    p_owner = subparsers.add_parser("owner", help="Owner-only pool management")
    sp_owner = p_owner.add_subparsers(dest="subcommand")

    po_fee = sp_owner.add_parser("update-fee", help="Update reward fee fraction")
    po_fee.add_argument("numerator", type=int)
    po_fee.add_argument("denominator", type=int)
    _add_from(po_fee)

    po_key = sp_owner.add_parser("update-key", help="Update staking public key")
    po_key.add_argument("stake_public_key", help="Hex compressed public key")
    _add_from(po_key)

    po_vote = sp_owner.add_parser("vote", help="Vote on a voting contract")
    po_vote.add_argument("voting_account_id")
    po_vote.add_argument("is_vote", choices=["yes", "no"])
    _add_from(po_vote)

    _add_from(sp_owner.add_parser("pause", help="Pause staking"))
    _add_from(sp_owner.add_parser("resume", help="Resume staking"))

    # Devnet host control
    p_host = subparsers.add_parser("host", help="Devnet host control")
    sp_host = p_host.add_subparsers(dest="subcommand")

    ph_adv = sp_host.add_parser("advance", help="Advance epochs")
    ph_adv.add_argument("epochs", type=int, nargs="?", default=1)

    ph_fund = sp_host.add_parser("fund", help="Credit an account wallet")
    ph_fund.add_argument("account_id")
    ph_fund.add_argument("amount", help=f"Amount in {DENOM}")

    args = parser.parse_args()

    if args.command == "keys":
        if args.subcommand == "add": cmd_keys_add(args)
        elif args.subcommand == "import": cmd_keys_import(args)
        elif args.subcommand == "list": cmd_keys_list(args)
        elif args.subcommand == "show": cmd_keys_show(args)
        else: p_keys.print_help()

    elif args.command == "query":
        if args.subcommand == "status": cmd_query_status(args)
        elif args.subcommand == "pool": cmd_query_pool(args)
        elif args.subcommand == "account": cmd_query_account(args)
        elif args.subcommand == "accounts": cmd_query_accounts(args)
        else: p_query.print_help()

    elif args.command == "call":
        if args.subcommand == "deposit": cmd_deposit(args)
        elif args.subcommand == "deposit-and-stake": cmd_deposit_and_stake(args)
        elif args.subcommand == "stake": cmd_stake(args)
        elif args.subcommand == "unstake": cmd_unstake(args)
        elif args.subcommand == "withdraw": cmd_withdraw(args)
        elif args.subcommand == "ping": cmd_ping(args)
        elif args.subcommand == "raw": cmd_call(args)
        else: p_call.print_help()

    elif args.command == "owner":
        if args.subcommand == "update-fee": cmd_owner_update_fee(args)
        elif args.subcommand == "update-key": cmd_owner_update_key(args)
        elif args.subcommand == "vote": cmd_owner_vote(args)
        elif args.subcommand == "pause": cmd_owner_pause(args)
        elif args.subcommand == "resume": cmd_owner_resume(args)
        else: p_owner.print_help()

    elif args.command == "host":
        if args.subcommand == "advance": cmd_host_advance(args)
        elif args.subcommand == "fund": cmd_host_fund(args)
        else: p_host.print_help()

    else:
        parser.print_help()

if __name__ == "__main__":
    main()
