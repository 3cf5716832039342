#!/usr/bin/env python3
"""
Scenario runner tests.

Real LedgerViews, sessions and verifier over mocked nodes and drivers.
"""

import os
import sys
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pswap.chains.cln import FundsChannel, SwapStatus
from pswap.core import Ledger, SwapDirection, SwapState
from pswap.errors import ChannelOpenTimeout, CollaboratorUnavailable
from pswap.ledger import LedgerViews
from pswap.swap.ownership import ChannelRegistry
from pswap.swap.runner import ScenarioRunner, RunnerConfig, SwapPlan, default_plans
from pswap.swap.session import SessionConfig

CHANNEL = "103x1x0"
TX = bytes.fromhex("02000000")
PENDING = SwapStatus("State_SwapOutSender_AwaitTxConfirmation", 300, 0, TX)
CLAIMED = SwapStatus("State_ClaimedPreimage", 300, 0, TX)

OUT_BTC = SwapPlan(SwapDirection.OUT, "btc", 100_000)


class RunnerTestCase(unittest.TestCase):

    def setUp(self):
        self.node = MagicMock()
        self.node.submit_swap.return_value = "swap-1"
        self.node.swap_status.return_value = CLAIMED
        self.node.new_address.return_value = "bcrt1qnode"

        self.driver = MagicMock()
        self.driver.ledger = Ledger.base_chain()
        self.driver.new_address.return_value = "bcrt1qminer"
        self.driver.decode_settlement.return_value = 100_000
        self.driver.raw_balance.return_value = 0

        self.views = LedgerViews(self.node, [self.driver])
        self.config = RunnerConfig(
            session=SessionConfig(poll_budget=2, poll_interval=0),
            channel_poll_budget=3,
            channel_poll_interval=0,
        )

    def runner(self, **kwargs):
        return ScenarioRunner(self.node, self.views, self.config, **kwargs)


class TestRunSwap(RunnerTestCase):

    def test_passing_scenario(self):
        self.node.channel_balance.side_effect = [1_000_000, 900_000]
        self.driver.raw_balance.side_effect = [0, 100_000]
        counterpart = MagicMock()
        counterpart.name = "bob"
        counterpart.channel_balance.side_effect = [200_000, 300_000]

        result = self.runner(counterpart=counterpart).run_swap(CHANNEL, OUT_BTC)

        self.assertTrue(result.passed)
        self.assertEqual(result.state, SwapState.VERIFIED)
        self.assertEqual(result.swap_id, "swap-1")
        self.assertEqual(result.premium, 0)
        self.assertEqual(result.on_chain_fee, 300)
        self.assertEqual(result.report.delta_channel, -100_000)
        self.assertEqual(result.report.delta_onchain, 100_000)
        self.assertEqual(result.counterpart_delta, 100_000)
        self.assertIsNone(result.error_kind)
        self.assertTrue(result.to_dict()["passed"])

    def test_failure_does_not_stop_the_run(self):
        self.node.submit_swap.side_effect = ["swap-1", "swap-2"]
        self.node.swap_status.side_effect = lambda swap_id: PENDING if swap_id == "swap-1" else CLAIMED
        self.node.channel_balance.side_effect = [1_000_000, 1_000_000, 900_000]

        runner = self.runner()
        results = runner.run(CHANNEL, [OUT_BTC, OUT_BTC])

        self.assertEqual(len(results), 2)
        self.assertEqual(results[0].error_kind, "SwapTimeout")
        self.assertEqual(results[0].state, SwapState.FAILED)
        self.assertIsNone(results[0].report)
        self.assertFalse(results[0].passed)
        self.assertTrue(results[1].passed)
        self.assertEqual(runner.results, results)

    def test_mismatch_is_reported(self):
        self.node.channel_balance.side_effect = [1_000_000, 900_000]
        self.driver.decode_settlement.return_value = 99_000

        result = self.runner().run_swap(CHANNEL, OUT_BTC)

        self.assertFalse(result.passed)
        self.assertEqual(result.error_kind, "SettlementMismatch")
        self.assertEqual(result.state, SwapState.CLAIMED_PREIMAGE)
        self.assertEqual(result.extra["mismatch_report"]["settlement_output_value"], 99_000)

    def test_snapshot_failure_is_recorded(self):
        self.node.channel_balance.side_effect = CollaboratorUnavailable("listfunds timeout")

        result = self.runner().run_swap(CHANNEL, OUT_BTC)

        self.assertEqual(result.error_kind, "CollaboratorUnavailable")
        self.assertEqual(result.state, SwapState.FAILED)
        self.node.submit_swap.assert_not_called()

    def test_busy_channel(self):
        registry = ChannelRegistry()
        registry.acquire(CHANNEL, "sess_elsewhere")
        self.node.channel_balance.return_value = 1_000_000

        result = self.runner(registry=registry).run_swap(CHANNEL, OUT_BTC)

        self.assertEqual(result.error_kind, "ConcurrencyConflict")
        self.assertEqual(result.state, SwapState.FAILED)
        self.node.submit_swap.assert_not_called()
        self.assertEqual(registry.owner(CHANNEL), "sess_elsewhere")

    def test_unrunnable_plan_does_not_stop_the_run(self):
        self.node.channel_balance.side_effect = [1_000_000, 900_000]
        plans = [SwapPlan(SwapDirection.OUT, "lbtc", 100_000), OUT_BTC]

        results = self.runner().run(CHANNEL, plans)

        self.assertEqual(len(results), 2)
        self.assertEqual(results[0].error_kind, "InvalidPlan")
        self.assertEqual(results[0].state, SwapState.FAILED)
        self.assertIn("lbtc", results[0].error)
        self.assertIsNone(results[0].before)
        self.assertTrue(results[1].passed)
        self.node.submit_swap.assert_called_once()

    def test_bad_amount_is_recorded(self):
        result = self.runner().run_swap(CHANNEL, SwapPlan(SwapDirection.OUT, "btc", 0))

        self.assertEqual(result.error_kind, "InvalidPlan")
        self.assertEqual(result.state, SwapState.FAILED)
        self.node.channel_balance.assert_not_called()

    def test_channel_owned_across_snapshots(self):
        registry = ChannelRegistry()
        owners = []

        def balance(channel_id):
            owners.append(registry.owner(channel_id))
            return 1_000_000 if len(owners) == 1 else 900_000

        self.node.channel_balance.side_effect = balance
        self.driver.raw_balance.side_effect = lambda account: owners.append(registry.owner(CHANNEL)) or 0

        result = self.runner(registry=registry).run_swap(CHANNEL, OUT_BTC)

        self.assertTrue(result.passed)
        self.assertEqual(len(owners), 4)
        self.assertIsNotNone(owners[0])
        self.assertEqual(set(owners), {owners[0]})
        self.assertIsNone(registry.owner(CHANNEL))

    def test_second_job_on_busy_channel_takes_no_snapshot(self):
        registry = ChannelRegistry()
        first_polling = threading.Event()
        release_first = threading.Event()

        def slow_status(swap_id):
            first_polling.set()
            release_first.wait(5)
            return CLAIMED

        self.node.swap_status.side_effect = slow_status
        self.node.channel_balance.side_effect = [1_000_000, 900_000]
        runner = self.runner(registry=registry)

        with ThreadPoolExecutor(max_workers=1) as pool:
            first = pool.submit(runner.run_swap, CHANNEL, OUT_BTC)
            try:
                self.assertTrue(first_polling.wait(5))
                second = runner.run_swap(CHANNEL, OUT_BTC)
            finally:
                release_first.set()
            first = first.result(5)

        self.assertEqual(second.error_kind, "ConcurrencyConflict")
        self.assertEqual(second.state, SwapState.FAILED)
        self.assertIsNone(second.before)
        self.assertTrue(first.passed)
        self.assertEqual(self.node.channel_balance.call_count, 2)
        self.assertEqual(self.node.submit_swap.call_count, 1)
        self.assertIsNone(registry.owner(CHANNEL))

    def test_concurrent_different_channels(self):
        balances = {
            "103x1x0": iter([1_000_000, 900_000]),
            "104x1x0": iter([2_000_000, 1_900_000]),
        }
        self.node.channel_balance.side_effect = lambda channel_id: next(balances[channel_id])

        results = self.runner().run_concurrently([("103x1x0", OUT_BTC), ("104x1x0", OUT_BTC)])

        self.assertEqual([r.passed for r in results], [True, True])
        self.assertEqual(self.node.submit_swap.call_count, 2)


class TestOpenChannel(RunnerTestCase):

    def test_channel_becomes_active(self):
        self.node.fund_channel.return_value = "fund-txid"
        self.node.channel_by_funding.side_effect = [
            None,
            FundsChannel(state="CHANNELD_AWAITING_LOCKIN", funding_txid="fund-txid"),
            FundsChannel(state="CHANNELD_NORMAL", funding_txid="fund-txid", short_channel_id=CHANNEL),
        ]

        channel_id = self.runner().open_channel("02" + "11" * 32, 10_000_000)

        self.assertEqual(channel_id, CHANNEL)
        self.node.fund_channel.assert_called_once_with("02" + "11" * 32, 10_000_000)
        self.driver.advance.assert_any_call(6, "bcrt1qnode")
        self.assertEqual(self.driver.advance.call_count, 3)

    def test_channel_open_timeout(self):
        self.node.fund_channel.return_value = "fund-txid"
        self.node.channel_by_funding.return_value = FundsChannel(
            state="CHANNELD_AWAITING_LOCKIN", funding_txid="fund-txid"
        )

        with self.assertRaises(ChannelOpenTimeout) as ctx:
            self.runner().open_channel("02" + "11" * 32, 10_000_000)
        self.assertEqual(ctx.exception.kind, "ChannelOpenTimeout")
        self.assertEqual(self.driver.advance.call_count, 4)

    def test_advance_failure_while_opening(self):
        self.node.fund_channel.return_value = "fund-txid"
        self.node.channel_by_funding.side_effect = [
            None,
            FundsChannel(state="CHANNELD_NORMAL", funding_txid="fund-txid", short_channel_id=CHANNEL),
        ]
        self.driver.advance.side_effect = [None, CollaboratorUnavailable("bitcoind busy")]

        self.assertEqual(self.runner().open_channel("02" + "11" * 32, 10_000_000), CHANNEL)


class TestDefaultPlans(unittest.TestCase):

    def test_out_then_in_per_asset(self):
        plans = default_plans()
        self.assertEqual(
            [(p.direction, p.asset) for p in plans],
            [
                (SwapDirection.OUT, "btc"), (SwapDirection.IN, "btc"),
                (SwapDirection.OUT, "lbtc"), (SwapDirection.IN, "lbtc"),
            ],
        )
        self.assertTrue(all(p.amount == 100_000 and p.max_premium_ppm == 10_000 for p in plans))

    def test_single_asset(self):
        self.assertEqual(len(default_plans(50_000, 0, ["btc"])), 2)


if __name__ == "__main__":
    unittest.main()
