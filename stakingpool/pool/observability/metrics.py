# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports staking pool metrics in Prometheus format.

Metrics:
- Pool totals: staked balance, stake shares, share price, accounts
- Contract calls by method and outcome
- Stake actions by outcome, pending promises
- Rewards and owner fees distributed
"""

from prometheus_client import Counter, Gauge, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# POOL METRICS
# ═══════════════════════════════════════════════════════════════════

total_staked_balance = Gauge(
    'stakingpool_total_staked_balance',
    'Desired total stake of the pool',
    registry=metrics_registry
)

total_stake_shares = Gauge(
    'stakingpool_total_stake_shares',
    'Total stake shares outstanding',
    registry=metrics_registry
)

share_price = Gauge(
    'stakingpool_share_price',
    'Staked balance per stake share',
    registry=metrics_registry
)

accounts_total = Gauge(
    'stakingpool_accounts_total',
    'Number of delegator accounts with a non-zero balance',
    registry=metrics_registry
)

last_epoch_height = Gauge(
    'stakingpool_last_epoch_height',
    'Last epoch in which rewards were distributed',
    registry=metrics_registry
)

staking_paused = Gauge(
    'stakingpool_staking_paused',
    '1 if staking is paused by the owner',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# CALL & ACTION METRICS
# ═══════════════════════════════════════════════════════════════════

contract_calls_total = Counter(
    'stakingpool_contract_calls_total',
    'Total contract invocations',
    ['method', 'outcome'],
    registry=metrics_registry
)

stake_actions_total = Counter(
    'stakingpool_stake_actions_total',
    'Stake actions executed by the host',
    ['outcome'],
    registry=metrics_registry
)

pending_promises = Gauge(
    'stakingpool_pending_promises',
    'Issued promises not yet executed',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# ECONOMIC METRICS
# ═══════════════════════════════════════════════════════════════════

rewards_distributed_total = Counter(
    'stakingpool_rewards_distributed_total',
    'Total rewards folded into the staked balance',
    registry=metrics_registry
)

owner_fees_total = Counter(
    'stakingpool_owner_fees_total',
    'Total rewards paid to the owner as fee shares',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def update_metrics(state, promise_store=None):
    """
    Update gauges from the committed pool state.
    Called after every committed invocation and when metrics are scraped.

    Args:
        state: PoolState instance
        promise_store: Optional PromiseStore instance
    """
    pool = state.pool
    if pool is None:
        return

    total_staked_balance.set(pool.total_staked_balance)
    total_stake_shares.set(pool.total_stake_shares)
    if pool.total_stake_shares > 0:
        share_price.set(pool.total_staked_balance / pool.total_stake_shares)
    last_epoch_height.set(pool.last_epoch_height)
    staking_paused.set(1 if pool.paused else 0)
    accounts_total.set(state.get_number_of_accounts())

    if promise_store is not None:
        pending_promises.set(len(promise_store.pending()))
