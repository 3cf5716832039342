"""
Swap session: drives one swap through its lifecycle.

State machine:
    REQUESTED -> PENDING -> {CLAIMED_PREIMAGE | CLAIMED_COOP} -> VERIFIED
    REQUESTED | PENDING -> FAILED

The channel node and the chains only answer queries, and swap progress is
gated on blocks the coordinator itself produces, so each tick of the loop:
1. advances the settlement chain by one confirmation (failure is retried next tick)
2. queries the swap status by swap_id
3. maps the status string onto a state

Exhausting the poll budget, or cancellation, ends in FAILED(SwapTimeout).
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Optional, Dict, Any

from ..chains.cln import CLNClient, SwapStatus
from ..chains.driver import ChainDriver
from ..core import (
    SwapState, SwapRequest, SwapOutcome, SnapshotPair, AccountingReport,
    DEFAULT_SWAP_POLL_BUDGET,
)
from ..errors import (
    SwapError, CollaboratorUnavailable, SwapRejected, SwapTimeout, SwapFailed,
    UndecodableOutput, VerificationFailed,
)
from .ownership import ChannelRegistry, DEFAULT_REGISTRY
from .verifier import AccountingVerifier

log = logging.getLogger(__name__)


# Peerswap status strings
STATUS_CLAIMED_PREIMAGE = "State_ClaimedPreimage"
STATUS_CLAIMED_COOP = "State_ClaimedCoop"
STATUS_FAILED = frozenset({
    "State_SwapCanceled",
    "State_SendCancel",
    "State_ClaimedCsv",     # refunded through the timelock path
})
# Sender states before the peer has agreed
REQUEST_PHASE_MARKERS = ("CreateSwap", "SendRequest", "AwaitAgreement")


def map_status(raw: str) -> SwapState:
    """Map a peerswap status string onto a session state."""
    if raw == STATUS_CLAIMED_PREIMAGE:
        return SwapState.CLAIMED_PREIMAGE
    if raw == STATUS_CLAIMED_COOP:
        return SwapState.CLAIMED_COOP
    if raw in STATUS_FAILED:
        return SwapState.FAILED
    if not raw or any(marker in raw for marker in REQUEST_PHASE_MARKERS):
        return SwapState.REQUESTED
    return SwapState.PENDING


@dataclass
class SessionConfig:
    """Swap session tuning."""
    poll_budget: int = DEFAULT_SWAP_POLL_BUDGET     # ticks
    poll_interval: float = 2.0                      # seconds between advance and status
    confirmations_per_tick: int = 1
    settlement_output_index: int = 0


class SwapSession:
    """
    One swap against one channel and one settlement ledger.

    A session is single-use: run() produces the outcome exactly once.
    """

    def __init__(self, request: SwapRequest, node: CLNClient, driver: ChainDriver,
                 registry: Optional[ChannelRegistry] = None,
                 config: Optional[SessionConfig] = None,
                 beneficiary_address: Optional[str] = None):
        if driver.ledger != request.settlement_ledger:
            raise ValueError(
                f"Driver settles {driver.ledger}, request needs {request.settlement_ledger}"
            )

        self.request = request
        self.node = node
        self.driver = driver
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self.config = config or SessionConfig()
        self.beneficiary_address = beneficiary_address

        self.session_id = f"sess_{uuid.uuid4().hex[:12]}"
        self.swap_id: Optional[str] = None
        self.state = SwapState.REQUESTED
        self.deadline = self.config.poll_budget
        self.polls = 0
        self.last_observed_status: Optional[SwapStatus] = None
        self.outcome: Optional[SwapOutcome] = None
        self.report: Optional[AccountingReport] = None
        self.error: Optional[SwapError] = None

        self._cancel = threading.Event()
        self._owns_channel = False
        self._ran = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def cancel(self):
        """Cancel from another thread; the loop stops before its next advance."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def submit(self) -> str:
        """
        Claim the channel and propose the swap.

        Raises:
            ConcurrencyConflict: another session owns the channel
            SwapRejected: the node or peer refused the swap
        """
        if self.swap_id is not None:
            return self.swap_id

        # False when the caller holds the channel for this session and releases it
        self._owns_channel = self.registry.acquire(self.request.channel_id, self.session_id)

        if self.beneficiary_address is None:
            self.beneficiary_address = self.driver.new_address()

        req = self.request
        self.swap_id = self.node.submit_swap(
            req.direction, req.channel_id, req.amount, req.asset, req.max_premium_rate
        )
        log.info(
            f"Session {self.session_id}: swap-{req.direction.value} {req.amount} {req.asset} "
            f"on {req.channel_id} submitted as {self.swap_id}"
        )
        return self.swap_id

    def run(self) -> SwapOutcome:
        """
        Drive the swap to a settled state and decode its settlement output.

        Raises:
            SwapRejected, SwapTimeout, SwapFailed, CollaboratorUnavailable,
            VerificationFailed
        """
        if self._ran:
            raise RuntimeError(f"Session {self.session_id} already ran")
        self._ran = True

        try:
            self.submit()
            while not self.state.is_settled:
                self.tick()
            return self._settle()
        except SwapError as e:
            self._record_failure(e)
            raise
        finally:
            self._release()

    def tick(self):
        """One advance-and-observe step."""
        if self.cancelled:
            raise SwapTimeout(f"Swap {self.swap_id} cancelled after {self.polls} polls")
        if self.polls >= self.deadline:
            raise SwapTimeout(
                f"Swap {self.swap_id} not settled after {self.deadline} polls "
                f"(last status: {self._last_raw_status()})"
            )
        self.polls += 1

        self._advance()
        if self._cancel.wait(self.config.poll_interval):
            raise SwapTimeout(f"Swap {self.swap_id} cancelled after {self.polls} polls")
        self._observe()

    def verify(self, before: SnapshotPair, after: SnapshotPair,
               verifier: Optional[AccountingVerifier] = None) -> AccountingReport:
        """
        Certify the settled swap against ledger snapshots.

        Raises:
            SettlementMismatch: amounts break value conservation
        """
        if self.outcome is None or not self.state.is_settled:
            raise RuntimeError(f"Session {self.session_id} has no settled outcome to verify")

        verifier = verifier or AccountingVerifier()
        try:
            self.report = verifier.verify(before, after, self.outcome, self.request)
        except SwapError as e:
            self._record_failure(e)
            raise

        self.state = SwapState.VERIFIED
        log.info(
            f"Swap {self.swap_id} verified: channel {self.report.delta_channel:+}, "
            f"output {self.report.settlement_output_value} = "
            f"{self.request.amount} + {self.report.premium}"
        )
        return self.report

    # =========================================================================
    # Steps
    # =========================================================================

    def _advance(self):
        try:
            self.driver.advance(self.config.confirmations_per_tick, self.beneficiary_address)
        except CollaboratorUnavailable as e:
            log.warning(f"Swap {self.swap_id}: advance {self.driver.ledger} failed, retrying next tick: {e}")

    def _observe(self):
        status = self.node.swap_status(self.swap_id)
        self.last_observed_status = status
        observed = map_status(status.state)

        self._check_premium(status)

        if observed == SwapState.FAILED:
            if self.state == SwapState.REQUESTED:
                raise SwapRejected(f"Swap {self.swap_id} declined: {status.state}")
            raise SwapFailed(f"Swap {self.swap_id} ended without settling: {status.state}")

        # Transitions only move forward
        if observed == SwapState.REQUESTED and self.state == SwapState.PENDING:
            return
        if observed != self.state:
            log.info(f"Swap {self.swap_id}: {self.state.value} -> {observed.value} ({status.state})")
            self.state = observed

    def _check_premium(self, status: SwapStatus):
        premium = status.agreed_premium
        if premium is not None and premium > self.request.max_premium:
            raise SwapRejected(
                f"Swap {self.swap_id} premium {premium} exceeds limit "
                f"{self.request.max_premium} ({self.request.max_premium_rate} ppm)"
            )

    def _settle(self) -> SwapOutcome:
        status = self.last_observed_status
        premium = status.agreed_premium or 0
        fee = status.opening_tx_fee

        try:
            if fee < 0:
                raise UndecodableOutput(f"Negative opening tx fee {fee}")
            value = self.driver.decode_settlement(
                status.opening_tx, self.config.settlement_output_index
            )
        except UndecodableOutput as e:
            self.outcome = SwapOutcome(self.state, max(fee, 0), premium, status.opening_tx)
            raise VerificationFailed(f"Swap {self.swap_id} settled but cannot be certified: {e}") from e

        self.outcome = SwapOutcome(self.state, fee, premium, status.opening_tx, value)
        log.info(
            f"Swap {self.swap_id} {self.state.value}: onchain_fee={fee} premium={premium} "
            f"settlement_output={value}"
        )
        return self.outcome

    def _record_failure(self, error: SwapError):
        self.error = error
        # Settled swaps stay settled; the error says why they were not certified
        if not self.state.is_settled:
            self.state = SwapState.FAILED
        log.error(f"Swap {self.swap_id or self.session_id} failed [{error.kind}]: {error}")

    def _release(self):
        if self._owns_channel:
            self.registry.release(self.request.channel_id, self.session_id)
            self._owns_channel = False

    def _last_raw_status(self) -> str:
        return self.last_observed_status.state if self.last_observed_status else "none"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "swap_id": self.swap_id,
            "request": self.request.to_dict(),
            "state": self.state.value,
            "polls": self.polls,
            "deadline": self.deadline,
            "last_status": self._last_raw_status(),
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "report": self.report.to_dict() if self.report else None,
            "error_kind": self.error.kind if self.error else None,
        }
