"""
pswap command line: bootstrap a regtest stack and run the swap scenarios.

Usage:
    pswap                                # full run, default scenario
    pswap --skip-bootstrap --channel-id 103x1x0 --assets btc
    pswap --json > results.json
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .chains.btc import BTCClient
from .chains.cln import CLNClient
from .chains.driver import BaseChainDriver, SideChainDriver
from .chains.elements import ElementsClient
from .config import HarnessConfig
from .core import ASSET_BTC, ASSET_LBTC, ScenarioResult
from .errors import SwapError
from .ledger import LedgerViews
from .swap.bootstrap import RegtestBootstrap
from .swap.runner import ScenarioRunner, default_plans

log = logging.getLogger("pswap")


def format_result(result: ScenarioResult) -> List[str]:
    """Human-readable report lines for one scenario."""
    label = f"swap-{result.direction.value} {result.amount} {result.asset}"
    lines = [f"[{'PASS' if result.passed else 'FAIL'}] {label} ({result.state.value})"]

    if result.before and result.after:
        lines.append(
            f"  channel: {result.before.channel.balance} -> {result.after.channel.balance}"
        )
        lines.append(
            f"  onchain: {result.before.onchain.balance} -> {result.after.onchain.balance}"
        )
    if result.counterpart_delta is not None:
        lines.append(f"  counterpart channel delta: {result.counterpart_delta:+}")
    if result.report:
        report = result.report
        lines.append(
            f"  deltas: channel {report.delta_channel:+}, onchain {report.delta_onchain:+}"
        )
        lines.append(
            f"  onchain fee: {report.on_chain_fee}, premium: {report.premium}, "
            f"settlement output: {report.settlement_output_value}"
        )
    elif result.premium is not None:
        lines.append(f"  onchain fee: {result.on_chain_fee}, premium: {result.premium}")
    if result.error_kind:
        lines.append(f"  error [{result.error_kind}]: {result.error}")
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="pswap - run peerswap swap scenarios against a regtest stack"
    )
    parser.add_argument(
        "--amount", type=int, default=100_000,
        help="Swap amount in sats (default: 100000)"
    )
    parser.add_argument(
        "--max-premium-ppm", type=int, default=10_000,
        help="Largest premium accepted, ppm of the amount (default: 10000)"
    )
    parser.add_argument(
        "--assets", type=str, default=f"{ASSET_BTC},{ASSET_LBTC}",
        help="Comma-separated settlement assets (default: btc,lbtc)"
    )
    parser.add_argument(
        "--channel-amount", type=int, default=10_000_000,
        help="Capacity of the channel to open, in sats (default: 10000000)"
    )
    parser.add_argument(
        "--channel-id", type=str,
        help="Use this existing channel instead of opening one"
    )
    parser.add_argument(
        "--skip-bootstrap", action="store_true",
        help="Do not fund, connect or initialise the nodes"
    )
    parser.add_argument(
        "--peer-host", type=str,
        help="Host the local node reaches its peer at (default: PSWAP_PEER_HOST or bob)"
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print results as JSON instead of report lines"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Debug logging"
    )
    return parser


def _prepare(args, bootstrap: RegtestBootstrap, runner: ScenarioRunner,
             alice: CLNClient, bob: CLNClient, with_sidechain: bool) -> str:
    """Fund, connect and open the channel as needed. Returns the channel id."""
    if args.skip_bootstrap:
        peer_id = bob.get_id()
    else:
        bootstrap.fund_node(alice)
        bootstrap.fund_node(bob)
        peer_id = bootstrap.connect(alice, bob)
        if with_sidechain:
            bootstrap.init_sidechain()
            bootstrap.fund_lbtc([alice, bob])

    if args.channel_id:
        return args.channel_id

    channel_id = runner.open_channel(peer_id, args.channel_amount)
    if not args.skip_bootstrap:
        # Peer needs channel balance for swap-in
        bootstrap.push_balance(alice, bob)
    return channel_id


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )

    config = HarnessConfig.from_env()
    if args.peer_host:
        config.bootstrap.peer_host = args.peer_host

    assets = [a.strip() for a in args.assets.split(",") if a.strip()]
    if not assets:
        log.error("No assets given")
        return 2

    btc = BTCClient(config.btc)
    elements = ElementsClient(config.elements)
    alice = CLNClient(config.alice)
    bob = CLNClient(config.bob)

    drivers = [BaseChainDriver(btc, alice)]
    sidechain_assets = [a for a in assets if a != ASSET_BTC]
    for asset in sidechain_assets:
        drivers.append(SideChainDriver(elements, asset))

    views = LedgerViews(alice, drivers)
    runner = ScenarioRunner(alice, views, config.runner, counterpart=bob)
    bootstrap = RegtestBootstrap(btc, elements if sidechain_assets else None, config.bootstrap)

    try:
        try:
            channel_id = _prepare(args, bootstrap, runner, alice, bob, bool(sidechain_assets))
        except SwapError as e:
            log.error(f"Setup failed [{e.kind}]: {e}")
            return 2
        results = runner.run(channel_id, default_plans(args.amount, args.max_premium_ppm, assets))
    finally:
        btc.close()

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for result in results:
            for line in format_result(result):
                print(line)
        passed = sum(1 for r in results if r.passed)
        print(f"{passed}/{len(results)} scenarios passed")

    return 0 if all(r.passed for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())
