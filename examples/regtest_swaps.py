#!/usr/bin/env python3
"""
Example: swap-out / swap-in on a regtest channel

This demonstrates the full flow from the initiating node's perspective:

1. Fund alice and bob on-chain, connect them
2. Open a channel alice -> bob and push bob some balance
3. Fund both nodes' L-BTC wallets from the sidechain genesis output
4. Run swap-out then swap-in on BTC and L-BTC
5. Check value conservation for every swap

Usage:
    python regtest_swaps.py

Expects the regtest docker stack (bitcoind, elementsd, alice, bob) to be up.
"""

import sys
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pswap.chains.btc import BTCClient, BTCConfig
from pswap.chains.cln import CLNClient, CLNConfig
from pswap.chains.driver import BaseChainDriver, SideChainDriver
from pswap.chains.elements import ElementsClient, ElementsConfig
from pswap.ledger import LedgerViews
from pswap.swap.bootstrap import RegtestBootstrap
from pswap.swap.runner import ScenarioRunner, RunnerConfig, default_plans

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger(__name__)


def main():
    # =================================================================
    # 1. Initialize clients
    # =================================================================
    log.info("Initializing clients...")

    btc = BTCClient(BTCConfig(rpc_url="http://127.0.0.1:18443"))
    elements = ElementsClient(ElementsConfig(container="elementsd"))
    alice = CLNClient(CLNConfig(container="alice"))
    bob = CLNClient(CLNConfig(container="bob"))

    # =================================================================
    # 2. Fund and connect
    # =================================================================
    bootstrap = RegtestBootstrap(btc, elements)
    bootstrap.fund_node(alice)
    bootstrap.fund_node(bob)
    peer_id = bootstrap.connect(alice, bob)

    bootstrap.init_sidechain()
    bootstrap.fund_lbtc([alice, bob])

    # Bob charges a premium on swap-ins only
    bootstrap.set_premium_rates(bob, "btc", 0, 5_000)

    # =================================================================
    # 3. Open the channel
    # =================================================================
    views = LedgerViews(alice, [BaseChainDriver(btc, alice), SideChainDriver(elements)])
    runner = ScenarioRunner(alice, views, RunnerConfig(settle_delay=2.0), counterpart=bob)

    channel_id = runner.open_channel(peer_id, 10_000_000)
    bootstrap.push_balance(alice, bob)
    log.info(f"Channel {channel_id} ready")

    # =================================================================
    # 4. Run scenarios
    # =================================================================
    results = runner.run(channel_id, default_plans(amount=100_000, max_premium_ppm=10_000))

    log.info("")
    for result in results:
        status = "PASS" if result.passed else f"FAIL [{result.error_kind}]"
        log.info(f"  swap-{result.direction.value} {result.asset}: {status}")
        if result.report:
            log.info(f"    channel delta: {result.report.delta_channel:+}")
            log.info(f"    settlement output: {result.report.settlement_output_value}")
            log.info(f"    premium: {result.report.premium}, onchain fee: {result.report.on_chain_fee}")

    btc.close()
    return 0 if all(r.passed for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())
