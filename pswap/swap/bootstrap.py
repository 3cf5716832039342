"""
Regtest bootstrap: get two nodes funded and liquid enough to swap.

Steps, in the order a fresh regtest stack needs them:
1. Fund the local node on the base chain and connect it to its peer
2. (channel open happens in ScenarioRunner.open_channel)
3. Fund the peer on-chain and push it channel balance with an invoice
4. Initialise the sidechain wallet, claim the genesis output, fund both
   nodes' L-BTC wallets
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from ..chains.btc import BTCClient
from ..chains.cln import CLNClient
from ..chains.elements import ElementsClient
from ..core import COINBASE_MATURITY, SATS_PER_BTC

log = logging.getLogger(__name__)


@dataclass
class BootstrapConfig:
    """Regtest funding amounts and waits."""
    peer_host: str = "bob"
    peer_port: int = 9735
    channel_push_msat: int = 200_000_000      # 200k sats to the peer
    lbtc_funding_sats: int = SATS_PER_BTC     # per node
    sync_delay: float = 5.0                   # seconds for nodes to see new blocks


class RegtestBootstrap:
    """Funds and connects regtest nodes."""

    def __init__(self, btc: BTCClient, elements: Optional[ElementsClient] = None,
                 config: Optional[BootstrapConfig] = None):
        self.btc = btc
        self.elements = elements
        self.config = config or BootstrapConfig()

    def _sync(self):
        if self.config.sync_delay:
            time.sleep(self.config.sync_delay)

    def fund_node(self, node: CLNClient) -> str:
        """Mine mature coinbase outputs to a node. Returns the address used."""
        address = node.new_address()
        self.btc.generate_to_address(COINBASE_MATURITY, address)
        log.info(f"Funded {node.name} with {COINBASE_MATURITY} blocks to {address}")
        self._sync()
        return address

    def connect(self, node: CLNClient, peer: CLNClient) -> str:
        """Connect node to peer. Returns the peer id."""
        peer_id = peer.get_id()
        node.connect(peer_id, self.config.peer_host, self.config.peer_port)
        log.info(f"Connected {node.name} -> {peer.name} ({peer_id[:16]}...)")
        return peer_id

    def push_balance(self, payer: CLNClient, payee: CLNClient,
                     amount_msat: Optional[int] = None):
        """Give payee channel balance by paying its invoice."""
        amount_msat = amount_msat or self.config.channel_push_msat
        payer.pay(payee.invoice(amount_msat))
        log.info(f"Paid {amount_msat // 1000} sats from {payer.name} to {payee.name}")

    def set_premium_rates(self, node: CLNClient, asset: str,
                          swap_out_ppm: int, swap_in_ppm: int):
        node.set_premium_rate(asset, swap_out_ppm, swap_in_ppm)

    def init_sidechain(self):
        """Create/load the wallet and claim genesis funds if needed."""
        if self.elements is None:
            raise ValueError("No Elements client configured")
        self.elements.ensure_wallet()
        self.elements.claim_genesis()

    def fund_lbtc(self, nodes: Iterable[CLNClient], amount_sats: Optional[int] = None):
        """Send L-BTC to each node's peerswap wallet and confirm it."""
        if self.elements is None:
            raise ValueError("No Elements client configured")
        amount_sats = amount_sats or self.config.lbtc_funding_sats
        names = []
        for node in nodes:
            self.elements.send_to_address(node.lbtc_address(), amount_sats)
            names.append(node.name)
        self.elements.generate_to_address(1, self.elements.get_new_address())
        log.info(f"Funded {', '.join(names)} with {amount_sats} sats L-BTC each")
        self._sync()
