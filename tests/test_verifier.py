#!/usr/bin/env python3
"""
Accounting verification tests.

Covers both swap directions with and without premium, and each rule the
verifier enforces.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pswap.core import (
    Ledger, LedgerSnapshot, SnapshotPair, SwapDirection, SwapOutcome, SwapRequest, SwapState,
)
from pswap.errors import SettlementMismatch, VerificationFailed
from pswap.swap.verifier import AccountingVerifier, AccountingMismatch

CHANNEL = "103x1x0"


def pair(channel_balance, onchain_balance, onchain=None):
    return SnapshotPair(
        channel=LedgerSnapshot(Ledger.channel(), channel_balance, CHANNEL),
        onchain=LedgerSnapshot(onchain or Ledger.base_chain(), onchain_balance),
    )


def request(direction, amount=100_000, asset="btc", ppm=10_000):
    return SwapRequest(direction, CHANNEL, amount, asset, ppm)


def outcome(value, premium=0, fee=300, state=SwapState.CLAIMED_PREIMAGE):
    return SwapOutcome(state, fee, premium, b"\x02\x00", value)


class TestAccountingVerifier(unittest.TestCase):

    def setUp(self):
        self.verifier = AccountingVerifier()

    def test_swap_out_no_premium(self):
        report = self.verifier.verify(
            pair(1_000_000, 0), pair(900_000, 100_000),
            outcome(100_000), request(SwapDirection.OUT),
        )
        self.assertEqual(report.delta_channel, -100_000)
        self.assertEqual(report.delta_onchain, 100_000)
        self.assertEqual(report.settlement_output_value, 100_000)
        self.assertEqual(report.expected_value, 100_000)
        self.assertEqual(report.on_chain_fee, 300)

    def test_swap_in_with_premium(self):
        lbtc = Ledger.side_chain()
        report = self.verifier.verify(
            pair(500_000, 1_000_000, lbtc), pair(600_000, 894_700, lbtc),
            outcome(105_000, premium=5_000, state=SwapState.CLAIMED_COOP),
            request(SwapDirection.IN, asset="lbtc", ppm=50_000),
        )
        self.assertEqual(report.delta_channel, 100_000)
        self.assertEqual(report.settlement_output_value, 105_000)
        self.assertEqual(report.premium, 5_000)

    def test_wrong_channel_sign(self):
        with self.assertRaises(SettlementMismatch) as ctx:
            self.verifier.verify(
                pair(1_000_000, 0), pair(1_100_000, 0),
                outcome(100_000), request(SwapDirection.OUT),
            )
        self.assertIn("wrong sign", str(ctx.exception))

    def test_unchanged_channel_fails(self):
        with self.assertRaises(SettlementMismatch):
            self.verifier.verify(
                pair(1_000_000, 0), pair(1_000_000, 0),
                outcome(100_000), request(SwapDirection.IN),
            )

    def test_output_missing_premium(self):
        with self.assertRaises(AccountingMismatch) as ctx:
            self.verifier.verify(
                pair(500_000, 0), pair(600_000, 0),
                outcome(100_000, premium=5_000), request(SwapDirection.IN, ppm=50_000),
            )
        err = ctx.exception
        self.assertEqual(err.kind, "SettlementMismatch")
        self.assertEqual(len(err.problems), 1)
        self.assertEqual(err.report.expected_value, 105_000)

    def test_all_problems_reported(self):
        with self.assertRaises(AccountingMismatch) as ctx:
            self.verifier.verify(
                pair(1_000_000, 0), pair(950_000, 0),
                outcome(99_000), request(SwapDirection.OUT),
            )
        self.assertEqual(len(ctx.exception.problems), 2)

    def test_routing_margin(self):
        before, after = pair(1_000_000, 0), pair(899_990, 0)
        with self.assertRaises(SettlementMismatch):
            self.verifier.verify(before, after, outcome(100_000), request(SwapDirection.OUT))

        report = AccountingVerifier(routing_margin=20).verify(
            before, after, outcome(100_000), request(SwapDirection.OUT)
        )
        self.assertEqual(report.delta_channel, -100_010)

    def test_no_decoded_value(self):
        with self.assertRaises(VerificationFailed):
            self.verifier.verify(
                pair(1_000_000, 0), pair(900_000, 0),
                outcome(None), request(SwapDirection.OUT),
            )

    def test_unsettled_outcome(self):
        with self.assertRaises(ValueError):
            self.verifier.verify(
                pair(1_000_000, 0), pair(900_000, 0),
                outcome(100_000, state=SwapState.PENDING), request(SwapDirection.OUT),
            )

    def test_mismatched_ledgers(self):
        with self.assertRaises(ValueError):
            self.verifier.verify(
                pair(1_000_000, 0), pair(900_000, 0, Ledger.side_chain()),
                outcome(100_000), request(SwapDirection.OUT),
            )


class TestSwapRequest(unittest.TestCase):

    def test_amount_must_be_positive(self):
        with self.assertRaises(ValueError):
            SwapRequest(SwapDirection.OUT, CHANNEL, 0, "btc")

    def test_negative_rate(self):
        with self.assertRaises(ValueError):
            SwapRequest(SwapDirection.OUT, CHANNEL, 100_000, "btc", -1)

    def test_max_premium(self):
        self.assertEqual(request(SwapDirection.OUT, ppm=10_000).max_premium, 1_000)
        self.assertEqual(request(SwapDirection.OUT, ppm=0).max_premium, 0)

    def test_settlement_ledger(self):
        self.assertEqual(request(SwapDirection.OUT).settlement_ledger, Ledger.base_chain())
        self.assertEqual(
            request(SwapDirection.IN, asset="lbtc").settlement_ledger, Ledger.side_chain()
        )


if __name__ == "__main__":
    unittest.main()
