"""
Swap coordination for pswap.

Drives peerswap swaps to completion and certifies their accounting.
"""

from .ownership import ChannelRegistry
from .session import SwapSession, SessionConfig, map_status
from .verifier import AccountingVerifier
from .runner import ScenarioRunner, RunnerConfig, SwapPlan, default_plans
from .bootstrap import RegtestBootstrap, BootstrapConfig

__all__ = [
    "ChannelRegistry",
    "SwapSession",
    "SessionConfig",
    "map_status",
    "AccountingVerifier",
    "ScenarioRunner",
    "RunnerConfig",
    "SwapPlan",
    "default_plans",
    "RegtestBootstrap",
    "BootstrapConfig",
]
