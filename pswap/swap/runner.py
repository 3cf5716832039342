"""
Scenario runner: the composition root for swap scenarios.

Opens (or reuses) a channel, then runs one swap session per plan, back to back,
with before/after snapshots around each. A failing scenario is recorded and
the run continues, so one failure never hides the others.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Iterable, Tuple

from ..chains.cln import CLNClient, ChannelState
from ..chains.driver import ChainDriver
from ..core import (
    Ledger, SwapDirection, SwapRequest, SwapState, SnapshotPair, ScenarioResult,
    ASSET_BTC, ASSET_LBTC, DEFAULT_CHANNEL_POLL_BUDGET, CHANNEL_FUNDING_CONFIRMATIONS,
)
from ..errors import SwapError, CollaboratorUnavailable, ChannelOpenTimeout, InvalidPlan
from ..ledger import LedgerViews
from .ownership import ChannelRegistry, DEFAULT_REGISTRY
from .session import SwapSession, SessionConfig
from .verifier import AccountingVerifier

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapPlan:
    """One scenario step."""
    direction: SwapDirection
    asset: str
    amount: int
    max_premium_ppm: int = 10_000


@dataclass
class RunnerConfig:
    """Scenario runner configuration."""
    session: SessionConfig = field(default_factory=SessionConfig)

    # Channel open loop
    channel_poll_budget: int = DEFAULT_CHANNEL_POLL_BUDGET
    channel_poll_interval: float = 1.0
    funding_confirmations: int = CHANNEL_FUNDING_CONFIRMATIONS

    # Wait before the after-snapshot, for nodes to catch up with the claim
    settle_delay: float = 0.0

    # Wallet name per asset for on-chain snapshots ("" = default wallet)
    onchain_accounts: Dict[str, str] = field(default_factory=dict)

    routing_margin: int = 0


def default_plans(amount: int = 100_000, max_premium_ppm: int = 10_000,
                  assets: Iterable[str] = (ASSET_BTC, ASSET_LBTC)) -> List[SwapPlan]:
    """Swap-out then swap-in for each asset."""
    plans = []
    for asset in assets:
        plans.append(SwapPlan(SwapDirection.OUT, asset, amount, max_premium_ppm))
        plans.append(SwapPlan(SwapDirection.IN, asset, amount, max_premium_ppm))
    return plans


class ScenarioRunner:
    """
    Runs swap scenarios against one local node.

    Args:
        node: the local channel node (initiates swaps)
        views: balance views with a driver for every settlement ledger used
        counterpart: the peer node, for reporting its channel delta
    """

    def __init__(self, node: CLNClient, views: LedgerViews,
                 config: Optional[RunnerConfig] = None,
                 registry: Optional[ChannelRegistry] = None,
                 counterpart: Optional[CLNClient] = None,
                 verifier: Optional[AccountingVerifier] = None):
        self.node = node
        self.views = views
        self.config = config or RunnerConfig()
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self.counterpart = counterpart
        self.verifier = verifier or AccountingVerifier(self.config.routing_margin)
        self.results: List[ScenarioResult] = []

    # =========================================================================
    # Channel
    # =========================================================================

    def open_channel(self, peer_id: str, amount_sat: int) -> str:
        """
        Fund a channel to peer_id and wait until it is active.

        Returns:
            short channel id

        Raises:
            ChannelOpenTimeout: channel not active within the poll budget
        """
        driver = self.views.driver(Ledger.base_chain())
        funding_txid = self.node.fund_channel(peer_id, amount_sat)
        beneficiary = self.node.new_address()
        log.info(f"Channel funding tx {funding_txid} ({amount_sat} sats to {peer_id[:16]}...)")

        driver.advance(self.config.funding_confirmations, beneficiary)

        last_state = "unknown"
        for _ in range(self.config.channel_poll_budget):
            channel = self.node.channel_by_funding(funding_txid)
            if channel is not None:
                last_state = channel.state
                if ChannelState.from_raw(channel.state).is_active and channel.short_channel_id:
                    log.info(f"Channel active: {channel.short_channel_id}")
                    return channel.short_channel_id

            try:
                driver.advance(1, beneficiary)
            except CollaboratorUnavailable as e:
                log.warning(f"Advance while opening channel failed, retrying: {e}")
            time.sleep(self.config.channel_poll_interval)

        raise ChannelOpenTimeout(
            f"Channel from {funding_txid} not active after "
            f"{self.config.channel_poll_budget} polls (last state: {last_state})"
        )

    # =========================================================================
    # Scenarios
    # =========================================================================

    def _snapshot(self, channel_id: str, ledger: Ledger, account: str) -> SnapshotPair:
        return SnapshotPair(
            channel=self.views.snapshot(Ledger.channel(ledger.asset), channel_id),
            onchain=self.views.snapshot(ledger, account),
        )

    def _plan_request(self, channel_id: str, plan: SwapPlan) -> Tuple[SwapRequest, ChainDriver]:
        try:
            request = SwapRequest(
                direction=plan.direction,
                channel_id=channel_id,
                amount=plan.amount,
                asset=plan.asset,
                max_premium_rate=plan.max_premium_ppm,
                counterpart_identity=self.counterpart.name if self.counterpart else "",
            )
            driver = self.views.driver(request.settlement_ledger)
        except ValueError as e:
            raise InvalidPlan(str(e)) from e
        return request, driver

    def run_swap(self, channel_id: str, plan: SwapPlan) -> ScenarioResult:
        """
        Run one scenario; swap errors are recorded in the result, not raised.

        The channel is owned from the before-snapshot through verification, so
        no other swap's movement lands between the two snapshots.
        """
        result = ScenarioResult(plan.direction, plan.asset, plan.amount, SwapState.REQUESTED)

        session = None
        try:
            request, driver = self._plan_request(channel_id, plan)
            ledger = request.settlement_ledger
            account = self.config.onchain_accounts.get(plan.asset, "")
            session = SwapSession(request, self.node, driver, self.registry, self.config.session)

            with self.registry.hold(channel_id, session.session_id):
                result.before = self._snapshot(channel_id, ledger, account)
                counterpart_before = self._counterpart_balance(channel_id)

                session.run()

                if self.config.settle_delay:
                    time.sleep(self.config.settle_delay)
                result.after = self._snapshot(channel_id, ledger, account)
                counterpart_after = self._counterpart_balance(channel_id)
                if counterpart_before is not None and counterpart_after is not None:
                    result.counterpart_delta = counterpart_after - counterpart_before

                result.report = session.verify(result.before, result.after, self.verifier)
        except SwapError as e:
            result.error_kind = e.kind
            result.error = str(e)
            mismatch_report = getattr(e, "report", None)
            if mismatch_report is not None:
                result.extra["mismatch_report"] = mismatch_report.to_dict()

        if session is not None:
            result.state = session.state
            result.swap_id = session.swap_id
            if session.outcome is not None:
                result.premium = session.outcome.premium
                result.on_chain_fee = session.outcome.on_chain_fee
        # Failed before the session could record it (planning, claim, snapshot)
        if result.error_kind and not result.state.is_terminal:
            result.state = SwapState.FAILED

        self._log_result(result)
        self.results.append(result)
        return result

    def run(self, channel_id: str, plans: Iterable[SwapPlan]) -> List[ScenarioResult]:
        """Run plans back to back on one channel."""
        results = [self.run_swap(channel_id, plan) for plan in plans]
        passed = sum(1 for r in results if r.passed)
        log.info(f"Scenarios finished: {passed}/{len(results)} passed")
        return results

    def run_concurrently(self, jobs: Iterable[Tuple[str, SwapPlan]],
                         max_workers: int = 4) -> List[ScenarioResult]:
        """
        Run (channel_id, plan) jobs in parallel threads.

        Jobs on different channels proceed together; a job that finds its
        channel busy is recorded as a ConcurrencyConflict.
        """
        jobs = list(jobs)
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(self.run_swap, channel_id, plan) for channel_id, plan in jobs]
            return [f.result() for f in futures]

    def _counterpart_balance(self, channel_id: str) -> Optional[int]:
        if self.counterpart is None:
            return None
        return self.counterpart.channel_balance(channel_id)

    def _log_result(self, result: ScenarioResult):
        label = f"swap-{result.direction.value} {result.asset} {result.amount}"
        if result.before and result.after:
            log.info(
                f"{label}: channel {result.before.channel.balance} -> {result.after.channel.balance}, "
                f"onchain {result.before.onchain.balance} -> {result.after.onchain.balance}"
            )
        if result.passed:
            log.info(
                f"PASS {label}: premium={result.premium} onchain_fee={result.on_chain_fee} "
                f"output={result.report.settlement_output_value} delta={result.report.delta_channel:+}"
            )
        else:
            log.error(f"FAIL {label}: [{result.error_kind}] {result.error}")
