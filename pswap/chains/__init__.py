"""
Collaborator clients and chain drivers for pswap.

Each client wraps one external node:
- BTCClient: bitcoind JSON-RPC over HTTP
- ElementsClient: elements-cli (confidential sidechain)
- CLNClient: lightning-cli with the peerswap plugin
"""

from .btc import BTCClient, BTCConfig
from .elements import ElementsClient, ElementsConfig
from .cln import CLNClient, CLNConfig, ChannelState, SwapStatus
from .driver import ChainDriver, BaseChainDriver, SideChainDriver

__all__ = [
    "BTCClient",
    "BTCConfig",
    "ElementsClient",
    "ElementsConfig",
    "CLNClient",
    "CLNConfig",
    "ChannelState",
    "SwapStatus",
    "ChainDriver",
    "BaseChainDriver",
    "SideChainDriver",
]
