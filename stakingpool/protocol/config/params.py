# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict

# Global Constants
DENOM = "spn"
DECIMALS = 24

# The number of epochs an unstaked balance stays locked. One more than the
# host's unbonding period: the stake action may land in the next epoch.
NUM_EPOCHS_TO_UNLOCK = 4

# Balance kept out of the staked total at initialization so that
# total_stake_shares never starts at zero.
STAKE_SHARE_PRICE_GUARANTEE_FUND = 10**DECIMALS

# Gas attached to the callback after a stake action
ON_STAKE_ACTION_GAS = 20_000_000_000_000
VOTE_GAS = 100_000_000_000_000

U128_MAX = 2**128 - 1

class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 bech32_prefix_acc: str = "pool",
                 # Host params
                 min_validator_stake: int = 1000,
                 unbonding_period_epochs: int = 3,
                 # Pool params
                 num_epochs_to_unlock: int = NUM_EPOCHS_TO_UNLOCK,
                 price_guarantee_fund: int = STAKE_SHARE_PRICE_GUARANTEE_FUND,
                 default_reward_fee_numerator: int = 10,
                 default_reward_fee_denominator: int = 100,
                 max_accounts_page: int = 100,
                 # Devnet only: allow epoch control through RPC
                 allow_host_control: bool = False):
        self.network_id = network_id
        self.bech32_prefix_acc = bech32_prefix_acc
        self.min_validator_stake = min_validator_stake
        self.unbonding_period_epochs = unbonding_period_epochs
        self.num_epochs_to_unlock = num_epochs_to_unlock
        self.price_guarantee_fund = price_guarantee_fund
        self.default_reward_fee_numerator = default_reward_fee_numerator
        self.default_reward_fee_denominator = default_reward_fee_denominator
        self.max_accounts_page = max_accounts_page
        self.allow_host_control = allow_host_control

NETWORKS: Dict[str, NetworkConfig] = {
    "devnet": NetworkConfig(
        network_id="devnet",
        min_validator_stake=1000,
        price_guarantee_fund=10,
        allow_host_control=True,
    ),
    "testnet": NetworkConfig(
        network_id="testnet",
        min_validator_stake=10_000 * 10**DECIMALS,
    ),
    "mainnet": NetworkConfig(
        network_id="mainnet",
        min_validator_stake=50_000 * 10**DECIMALS,
        default_reward_fee_numerator=5,
    ),
}

def get_network(name: str) -> NetworkConfig:
    if name not in NETWORKS:
        raise ValueError(f"Unknown network '{name}' (expected one of {', '.join(NETWORKS)})")
    return NETWORKS[name]

# Default to devnet, override with STAKINGPOOL_NETWORK
CURRENT_NETWORK = get_network(os.environ.get("STAKINGPOOL_NETWORK", "devnet"))
