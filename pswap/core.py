"""
Core types and interfaces for pswap.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any


class LedgerKind(Enum):
    """Where a balance lives."""
    CHANNEL = "channel"
    BASE_CHAIN = "base_chain"
    SIDE_CHAIN = "side_chain"


# Native asset labels, as the peerswap plugin names them
ASSET_BTC = "btc"
ASSET_LBTC = "lbtc"


@dataclass(frozen=True)
class Ledger:
    """A ledger variant together with the asset it settles in."""
    kind: LedgerKind
    asset: str

    @classmethod
    def channel(cls, asset: str = ASSET_BTC) -> "Ledger":
        return cls(LedgerKind.CHANNEL, asset)

    @classmethod
    def base_chain(cls) -> "Ledger":
        return cls(LedgerKind.BASE_CHAIN, ASSET_BTC)

    @classmethod
    def side_chain(cls, asset: str = ASSET_LBTC) -> "Ledger":
        return cls(LedgerKind.SIDE_CHAIN, asset)

    @classmethod
    def for_asset(cls, asset: str) -> "Ledger":
        """Settlement ledger for a swap asset."""
        if asset == ASSET_BTC:
            return cls.base_chain()
        return cls.side_chain(asset)

    @property
    def is_onchain(self) -> bool:
        return self.kind != LedgerKind.CHANNEL

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.asset}"


class SwapDirection(Enum):
    """Swap direction relative to the local channel balance."""
    OUT = "out"   # channel -> on-chain
    IN = "in"     # on-chain -> channel

    @property
    def channel_sign(self) -> int:
        """Sign the local channel delta must have."""
        return -1 if self == SwapDirection.OUT else 1


class SwapState(Enum):
    """Swap session lifecycle states."""
    REQUESTED = "requested"                 # Submitted, counterpart has not agreed yet
    PENDING = "pending"                     # Agreed, opening tx in flight
    CLAIMED_PREIMAGE = "claimed_preimage"   # Settled via preimage claim
    CLAIMED_COOP = "claimed_coop"           # Settled via cooperative claim
    VERIFIED = "verified"                   # Accounting accepted
    FAILED = "failed"                       # Terminal error

    @property
    def is_settled(self) -> bool:
        return self in (SwapState.CLAIMED_PREIMAGE, SwapState.CLAIMED_COOP)

    @property
    def is_terminal(self) -> bool:
        return self in (
            SwapState.CLAIMED_PREIMAGE,
            SwapState.CLAIMED_COOP,
            SwapState.VERIFIED,
            SwapState.FAILED,
        )


@dataclass(frozen=True)
class SwapRequest:
    """A swap to submit against one channel."""
    direction: SwapDirection
    channel_id: str             # short channel id
    amount: int                 # sats
    asset: str                  # btc, lbtc, or an issued asset id
    max_premium_rate: int = 0   # ppm of amount
    counterpart_identity: str = ""

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Swap amount must be positive, got {self.amount}")
        if self.max_premium_rate < 0:
            raise ValueError(f"max_premium_rate must be >= 0, got {self.max_premium_rate}")

    @property
    def settlement_ledger(self) -> Ledger:
        return Ledger.for_asset(self.asset)

    @property
    def max_premium(self) -> int:
        """Largest premium (sats) the request accepts."""
        return premium_from_ppm(self.amount, self.max_premium_rate)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "channel_id": self.channel_id,
            "amount": self.amount,
            "asset": self.asset,
            "max_premium_rate": self.max_premium_rate,
            "counterpart_identity": self.counterpart_identity,
        }


@dataclass(frozen=True)
class SwapOutcome:
    """Financial result of a settled swap."""
    final_state: SwapState
    on_chain_fee: int
    premium: int
    settlement_tx: bytes
    settlement_output_value: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_state": self.final_state.value,
            "on_chain_fee": self.on_chain_fee,
            "premium": self.premium,
            "settlement_tx": self.settlement_tx.hex(),
            "settlement_output_value": self.settlement_output_value,
        }


@dataclass(frozen=True)
class LedgerSnapshot:
    """Balance of one ledger account at a logical point in time."""
    ledger: Ledger
    balance: int
    account: str = ""


@dataclass(frozen=True)
class SnapshotPair:
    """Channel and on-chain snapshots taken together."""
    channel: LedgerSnapshot
    onchain: LedgerSnapshot


@dataclass(frozen=True)
class AccountingReport:
    """Deltas and settlement check for one swap."""
    delta_channel: int
    delta_onchain: int
    settlement_output_value: int
    expected_value: int
    on_chain_fee: int = 0
    premium: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delta_channel": self.delta_channel,
            "delta_onchain": self.delta_onchain,
            "settlement_output_value": self.settlement_output_value,
            "expected_value": self.expected_value,
            "on_chain_fee": self.on_chain_fee,
            "premium": self.premium,
        }


@dataclass
class ScenarioResult:
    """What the runner reports for one swap scenario."""
    direction: SwapDirection
    asset: str
    amount: int
    state: SwapState
    swap_id: Optional[str] = None
    premium: Optional[int] = None
    on_chain_fee: Optional[int] = None
    report: Optional[AccountingReport] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    before: Optional[SnapshotPair] = None
    after: Optional[SnapshotPair] = None
    counterpart_delta: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.state == SwapState.VERIFIED and self.error_kind is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "asset": self.asset,
            "amount": self.amount,
            "state": self.state.value,
            "swap_id": self.swap_id,
            "premium": self.premium,
            "on_chain_fee": self.on_chain_fee,
            "report": self.report.to_dict() if self.report else None,
            "error_kind": self.error_kind,
            "error": self.error,
            "counterpart_delta": self.counterpart_delta,
            "passed": self.passed,
        }


# =============================================================================
# Amount Utilities
# =============================================================================

PPM = 1_000_000
SATS_PER_BTC = 100_000_000


def premium_from_ppm(amount: int, ppm: int) -> int:
    """Premium in sats for a ppm rate, rounded down."""
    return amount * ppm // PPM


def sats_to_btc(sats: int) -> float:
    """Convert satoshis to BTC."""
    return sats / SATS_PER_BTC


def btc_to_sats(btc: float) -> int:
    """Convert BTC to satoshis."""
    return int(round(btc * SATS_PER_BTC))


def msat_to_sat(msat: int) -> int:
    """Convert millisatoshis to satoshis, rounding down."""
    return msat // 1000


# =============================================================================
# Constants
# =============================================================================

# Poll budgets (ticks), as used against regtest
DEFAULT_SWAP_POLL_BUDGET = 30
DEFAULT_CHANNEL_POLL_BUDGET = 60

# Blocks mined while waiting for a funding tx to lock in
CHANNEL_FUNDING_CONFIRMATIONS = 6

# Blocks needed before coinbase outputs are spendable
COINBASE_MATURITY = 101
