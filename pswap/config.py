"""
Harness configuration.

Defaults target the regtest docker stack: bitcoind RPC on the host, elementsd
and two CLN nodes (alice, bob) in containers. Every field can be overridden
with a PSWAP_* environment variable.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .chains.btc import BTCConfig
from .chains.cln import CLNConfig
from .chains.elements import ElementsConfig
from .swap.bootstrap import BootstrapConfig
from .swap.runner import RunnerConfig
from .swap.session import SessionConfig


def _env(name: str, default: str) -> str:
    return os.environ.get(f"PSWAP_{name}", default)


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


def _container(name: str, default: str) -> Optional[str]:
    # Empty string means "run the CLI on this host"
    return _env(name, default) or None


@dataclass
class HarnessConfig:
    """Everything needed to run scenarios against one regtest stack."""
    btc: BTCConfig = field(default_factory=BTCConfig)
    elements: ElementsConfig = field(default_factory=ElementsConfig)
    alice: CLNConfig = field(default_factory=lambda: CLNConfig(container="alice"))
    bob: CLNConfig = field(default_factory=lambda: CLNConfig(container="bob"))
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        btc = BTCConfig(
            rpc_url=_env("BTC_RPC_URL", "http://127.0.0.1:18443"),
            rpc_user=_env("BTC_RPC_USER", "user"),
            rpc_password=_env("BTC_RPC_PASSWORD", "pass"),
            wallet_name=_env("BTC_WALLET", ""),
            timeout=_env_float("BTC_TIMEOUT", 30.0),
        )
        elements = ElementsConfig(
            container=_container("ELEMENTS_CONTAINER", "elementsd"),
            chain=_env("ELEMENTS_CHAIN", "liquidregtest"),
            rpc_user=_env("ELEMENTS_RPC_USER", "user"),
            rpc_password=_env("ELEMENTS_RPC_PASSWORD", "pass"),
            rpc_port=_env_int("ELEMENTS_RPC_PORT", 7041),
            wallet_name=_env("ELEMENTS_WALLET", "peerswap"),
        )
        alice = CLNConfig(
            container=_container("ALICE_CONTAINER", "alice"),
            network=_env("CLN_NETWORK", "regtest"),
        )
        bob = CLNConfig(
            container=_container("BOB_CONTAINER", "bob"),
            network=_env("CLN_NETWORK", "regtest"),
        )
        session = SessionConfig(
            poll_budget=_env_int("SWAP_POLL_BUDGET", 30),
            poll_interval=_env_float("SWAP_POLL_INTERVAL", 2.0),
        )
        runner = RunnerConfig(
            session=session,
            channel_poll_budget=_env_int("CHANNEL_POLL_BUDGET", 60),
            channel_poll_interval=_env_float("CHANNEL_POLL_INTERVAL", 1.0),
            settle_delay=_env_float("SETTLE_DELAY", 0.0),
            routing_margin=_env_int("ROUTING_MARGIN", 0),
        )
        bootstrap = BootstrapConfig(
            peer_host=_env("PEER_HOST", "bob"),
            sync_delay=_env_float("SYNC_DELAY", 5.0),
        )
        return cls(btc=btc, elements=elements, alice=alice, bob=bob,
                   runner=runner, bootstrap=bootstrap)
