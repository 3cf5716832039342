#!/usr/bin/env python3
"""Regtest bootstrap, harness config and command line tests."""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pswap import cli
from pswap.config import HarnessConfig
from pswap.core import (
    Ledger, LedgerSnapshot, SnapshotPair, AccountingReport, ScenarioResult,
    SwapDirection, SwapState,
)
from pswap.swap.bootstrap import RegtestBootstrap, BootstrapConfig


def make_node(name):
    node = MagicMock()
    node.name = name
    node.new_address.return_value = f"bcrt1q{name}"
    node.lbtc_address.return_value = f"el1qq{name}"
    node.get_id.return_value = "02" + "ab" * 32
    node.invoice.return_value = "lnbcrt2m1..."
    return node


class TestRegtestBootstrap(unittest.TestCase):

    def setUp(self):
        self.btc = MagicMock()
        self.elements = MagicMock()
        self.elements.get_new_address.return_value = "el1qqminer"
        self.bootstrap = RegtestBootstrap(self.btc, self.elements, BootstrapConfig(sync_delay=0))

    def test_fund_node(self):
        alice = make_node("alice")
        self.assertEqual(self.bootstrap.fund_node(alice), "bcrt1qalice")
        self.btc.generate_to_address.assert_called_once_with(101, "bcrt1qalice")

    def test_connect(self):
        alice, bob = make_node("alice"), make_node("bob")
        peer_id = self.bootstrap.connect(alice, bob)
        alice.connect.assert_called_once_with(peer_id, "bob", 9735)

    def test_push_balance(self):
        alice, bob = make_node("alice"), make_node("bob")
        self.bootstrap.push_balance(alice, bob)
        bob.invoice.assert_called_once_with(200_000_000)
        alice.pay.assert_called_once_with("lnbcrt2m1...")

    def test_sidechain(self):
        alice, bob = make_node("alice"), make_node("bob")
        self.bootstrap.init_sidechain()
        self.elements.ensure_wallet.assert_called_once_with()
        self.elements.claim_genesis.assert_called_once_with()

        self.bootstrap.fund_lbtc([alice, bob], 50_000_000)
        self.elements.send_to_address.assert_any_call("el1qqalice", 50_000_000)
        self.elements.send_to_address.assert_any_call("el1qqbob", 50_000_000)
        self.elements.generate_to_address.assert_called_once_with(1, "el1qqminer")

    def test_premium_rates(self):
        alice = make_node("alice")
        self.bootstrap.set_premium_rates(alice, "lbtc", 0, 5_000)
        alice.set_premium_rate.assert_called_once_with("lbtc", 0, 5_000)

    def test_no_sidechain(self):
        bootstrap = RegtestBootstrap(self.btc)
        with self.assertRaises(ValueError):
            bootstrap.init_sidechain()


class TestHarnessConfig(unittest.TestCase):

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = HarnessConfig.from_env()
        self.assertEqual(config.btc.rpc_url, "http://127.0.0.1:18443")
        self.assertEqual(config.elements.container, "elementsd")
        self.assertEqual(config.alice.container, "alice")
        self.assertEqual(config.bob.container, "bob")
        self.assertEqual(config.runner.session.poll_budget, 30)
        self.assertEqual(config.runner.channel_poll_budget, 60)

    def test_overrides(self):
        env = {
            "PSWAP_BTC_RPC_URL": "http://bitcoind:18443",
            "PSWAP_ALICE_CONTAINER": "",
            "PSWAP_SWAP_POLL_BUDGET": "5",
            "PSWAP_ROUTING_MARGIN": "10",
        }
        with patch.dict(os.environ, env, clear=True):
            config = HarnessConfig.from_env()
        self.assertEqual(config.btc.rpc_url, "http://bitcoind:18443")
        self.assertIsNone(config.alice.container)
        self.assertEqual(config.runner.session.poll_budget, 5)
        self.assertEqual(config.runner.routing_margin, 10)


def passed_result():
    before = SnapshotPair(
        LedgerSnapshot(Ledger.channel(), 1_000_000, "103x1x0"), LedgerSnapshot(Ledger.base_chain(), 0)
    )
    after = SnapshotPair(
        LedgerSnapshot(Ledger.channel(), 900_000, "103x1x0"), LedgerSnapshot(Ledger.base_chain(), 100_000)
    )
    return ScenarioResult(
        SwapDirection.OUT, "btc", 100_000, SwapState.VERIFIED, swap_id="swap-1",
        premium=0, on_chain_fee=300,
        report=AccountingReport(-100_000, 100_000, 100_000, 100_000, 300, 0),
        before=before, after=after,
    )


def failed_result():
    return ScenarioResult(
        SwapDirection.IN, "lbtc", 100_000, SwapState.FAILED,
        error_kind="SwapTimeout", error="not settled after 30 polls",
    )


class TestCommandLine(unittest.TestCase):

    def test_format_passed(self):
        lines = cli.format_result(passed_result())
        self.assertTrue(lines[0].startswith("[PASS] swap-out 100000 btc"))
        self.assertIn("  channel: 1000000 -> 900000", lines)
        self.assertIn("  deltas: channel -100000, onchain +100000", lines)

    def test_format_failed(self):
        lines = cli.format_result(failed_result())
        self.assertTrue(lines[0].startswith("[FAIL] swap-in 100000 lbtc"))
        self.assertEqual(lines[-1], "  error [SwapTimeout]: not settled after 30 polls")

    def test_parser_defaults(self):
        args = cli.build_parser().parse_args([])
        self.assertEqual(args.amount, 100_000)
        self.assertEqual(args.max_premium_ppm, 10_000)
        self.assertEqual(args.assets, "btc,lbtc")
        self.assertFalse(args.skip_bootstrap)

    def run_main(self, results, argv=("--skip-bootstrap", "--channel-id", "103x1x0")):
        with patch.object(cli, "BTCClient"), patch.object(cli, "ElementsClient"), \
                patch.object(cli, "CLNClient"), \
                patch.object(cli.ScenarioRunner, "run", return_value=results) as run, \
                patch("builtins.print"):
            code = cli.main(list(argv))
        return code, run

    def test_exit_code_success(self):
        code, run = self.run_main([passed_result()])
        self.assertEqual(code, 0)
        channel_id, plans = run.call_args[0]
        self.assertEqual(channel_id, "103x1x0")
        self.assertEqual(len(plans), 4)

    def test_exit_code_failure(self):
        code, _ = self.run_main([passed_result(), failed_result()])
        self.assertEqual(code, 1)

    def test_setup_failure(self):
        with patch.object(cli, "_prepare", side_effect=cli.SwapError("boom")):
            code, run = self.run_main([])
        self.assertEqual(code, 2)
        run.assert_not_called()


if __name__ == "__main__":
    unittest.main()
