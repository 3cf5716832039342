"""
Accounting verification for settled swaps.

Pure functions of snapshots, outcome and request: no I/O, so every rule here
can be tested without a node.

Rules, for both directions:
- settlement output value == amount + premium
- |channel delta| == amount (within the routing margin, 0 on a direct channel)
- channel delta sign follows the direction: Out decreases, In increases
"""

import logging
from dataclasses import dataclass
from typing import List

from ..core import AccountingReport, SnapshotPair, SwapOutcome, SwapRequest
from ..errors import SettlementMismatch, VerificationFailed

log = logging.getLogger(__name__)


class AccountingMismatch(SettlementMismatch):
    """SettlementMismatch carrying the report that failed."""

    def __init__(self, problems: List[str], report: AccountingReport):
        super().__init__("; ".join(problems))
        self.problems = problems
        self.report = report


@dataclass
class AccountingVerifier:
    """Checks value conservation of one swap."""
    routing_margin: int = 0     # sats tolerated on the channel delta

    def verify(self, before: SnapshotPair, after: SnapshotPair,
               outcome: SwapOutcome, request: SwapRequest) -> AccountingReport:
        """
        Build the accounting report and check it.

        Raises:
            SettlementMismatch: any rule is broken
            VerificationFailed: the outcome carries no decoded settlement value
            ValueError: snapshots of different ledgers were paired
        """
        if before.channel.ledger != after.channel.ledger or before.onchain.ledger != after.onchain.ledger:
            raise ValueError("Before and after snapshots cover different ledgers")
        if not outcome.final_state.is_settled:
            raise ValueError(f"Outcome is not a settlement: {outcome.final_state.value}")
        if outcome.settlement_output_value is None:
            raise VerificationFailed("Outcome has no decoded settlement output value")

        expected = request.amount + outcome.premium
        report = AccountingReport(
            delta_channel=after.channel.balance - before.channel.balance,
            delta_onchain=after.onchain.balance - before.onchain.balance,
            settlement_output_value=outcome.settlement_output_value,
            expected_value=expected,
            on_chain_fee=outcome.on_chain_fee,
            premium=outcome.premium,
        )

        problems = []
        if report.settlement_output_value != expected:
            problems.append(
                f"settlement output {report.settlement_output_value} != "
                f"amount {request.amount} + premium {outcome.premium}"
            )

        sign = request.direction.channel_sign
        if report.delta_channel * sign <= 0:
            problems.append(
                f"channel delta {report.delta_channel:+} has wrong sign for swap-{request.direction.value}"
            )
        elif abs(abs(report.delta_channel) - request.amount) > self.routing_margin:
            problems.append(
                f"channel delta {report.delta_channel:+} != {sign * request.amount:+}"
            )

        if problems:
            log.error(f"Accounting mismatch on {request.channel_id}: {'; '.join(problems)}")
            raise AccountingMismatch(problems, report)

        return report
