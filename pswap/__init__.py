"""
pswap - Lightning / on-chain swap coordinator

Drives peerswap swaps between a Lightning channel and a settlement chain
(Bitcoin or an Elements sidechain) to completion, then certifies that value
was conserved on every ledger involved.

Usage:
    from pswap import CLNClient, CLNConfig, BTCClient, BTCConfig
    from pswap import BaseChainDriver, LedgerViews, ScenarioRunner, default_plans

    alice = CLNClient(CLNConfig(container="alice"))
    btc = BTCClient(BTCConfig())

    views = LedgerViews(alice, [BaseChainDriver(btc, alice)])
    runner = ScenarioRunner(alice, views)

    results = runner.run("103x1x0", default_plans(assets=["btc"]))
    assert all(r.passed for r in results)
"""

from .core import (
    LedgerKind,
    Ledger,
    SwapDirection,
    SwapState,
    SwapRequest,
    SwapOutcome,
    LedgerSnapshot,
    SnapshotPair,
    AccountingReport,
    ScenarioResult,
    premium_from_ppm,
    btc_to_sats,
    sats_to_btc,
    ASSET_BTC,
    ASSET_LBTC,
)

from .errors import (
    SwapError,
    CollaboratorUnavailable,
    RpcError,
    SwapRejected,
    ConcurrencyConflict,
    SwapTimeout,
    ChannelOpenTimeout,
    SwapFailed,
    SettlementMismatch,
    UndecodableOutput,
    VerificationFailed,
    InvalidPlan,
)

from .chains.btc import BTCClient, BTCConfig
from .chains.elements import ElementsClient, ElementsConfig
from .chains.cln import CLNClient, CLNConfig
from .chains.driver import ChainDriver, BaseChainDriver, SideChainDriver

from .ledger import LedgerViews

from .swap.session import SwapSession, SessionConfig
from .swap.verifier import AccountingVerifier
from .swap.ownership import ChannelRegistry, DEFAULT_REGISTRY
from .swap.runner import ScenarioRunner, RunnerConfig, SwapPlan, default_plans
from .swap.bootstrap import RegtestBootstrap, BootstrapConfig

__version__ = "0.1.0"
__all__ = [
    # Core types
    "LedgerKind",
    "Ledger",
    "SwapDirection",
    "SwapState",
    "SwapRequest",
    "SwapOutcome",
    "LedgerSnapshot",
    "SnapshotPair",
    "AccountingReport",
    "ScenarioResult",
    # Utilities
    "premium_from_ppm",
    "btc_to_sats",
    "sats_to_btc",
    "ASSET_BTC",
    "ASSET_LBTC",
    # Errors
    "SwapError",
    "CollaboratorUnavailable",
    "RpcError",
    "SwapRejected",
    "ConcurrencyConflict",
    "SwapTimeout",
    "ChannelOpenTimeout",
    "SwapFailed",
    "SettlementMismatch",
    "UndecodableOutput",
    "VerificationFailed",
    "InvalidPlan",
    # Clients
    "BTCClient",
    "BTCConfig",
    "ElementsClient",
    "ElementsConfig",
    "CLNClient",
    "CLNConfig",
    # Drivers and views
    "ChainDriver",
    "BaseChainDriver",
    "SideChainDriver",
    "LedgerViews",
    # Swap
    "SwapSession",
    "SessionConfig",
    "AccountingVerifier",
    "ChannelRegistry",
    "DEFAULT_REGISTRY",
    "ScenarioRunner",
    "RunnerConfig",
    "SwapPlan",
    "default_plans",
    "RegtestBootstrap",
    "BootstrapConfig",
]
