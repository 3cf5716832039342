"""
Chain drivers: one capability set per settlement ledger.

A driver advances its chain (produces confirmations), decodes settlement
transactions into plaintext output values, and reads raw balances. The swap
session only talks to this interface, never to a specific chain.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from bitcoin.core import CTransaction, b2lx
from bitcoin.core.serialize import SerializationError

from ..core import Ledger, ASSET_LBTC, btc_to_sats
from ..errors import CollaboratorUnavailable, UndecodableOutput
from .btc import BTCClient
from .cln import CLNClient
from .elements import ElementsClient

log = logging.getLogger(__name__)


class ChainDriver(ABC):
    """Capabilities the coordinator needs from a settlement chain."""

    ledger: Ledger

    @abstractmethod
    def new_address(self) -> str:
        """Fresh address to credit produced blocks to."""

    @abstractmethod
    def advance(self, confirmations: int, beneficiary_address: str):
        """Produce confirmations, crediting beneficiary_address."""

    @abstractmethod
    def decode_settlement(self, tx: bytes, output_index: int) -> int:
        """
        Plaintext value of one output of a settlement transaction.

        Raises:
            UndecodableOutput: the output cannot be read or verified
        """

    @abstractmethod
    def raw_balance(self, account: str) -> int:
        """Balance of a chain account (wallet) in base units."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.ledger})"


class BaseChainDriver(ChainDriver):
    """
    Bitcoin: plain amounts, decoded locally.

    With a wallet_node, blocks are mined to the node's own address and the
    default account is the node's on-chain funds, so no bitcoind wallet is
    needed.
    """

    def __init__(self, client: BTCClient, wallet_node: Optional[CLNClient] = None):
        self.client = client
        self.wallet_node = wallet_node
        self.ledger = Ledger.base_chain()

    def new_address(self) -> str:
        if self.wallet_node is not None:
            return self.wallet_node.new_address()
        return self.client.get_new_address()

    def advance(self, confirmations: int, beneficiary_address: str):
        self.client.generate_to_address(confirmations, beneficiary_address)
        log.debug(f"Mined {confirmations} BTC block(s) to {beneficiary_address}")

    def decode_settlement(self, tx: bytes, output_index: int) -> int:
        try:
            decoded = CTransaction.deserialize(tx)
        except SerializationError as e:
            raise UndecodableOutput(f"Settlement tx does not deserialize: {e}") from e

        if output_index < 0 or output_index >= len(decoded.vout):
            raise UndecodableOutput(
                f"Output {output_index} not in tx {b2lx(decoded.GetTxid())} "
                f"({len(decoded.vout)} outputs)"
            )
        return decoded.vout[output_index].nValue

    def raw_balance(self, account: str) -> int:
        if not account and self.wallet_node is not None:
            return self.wallet_node.onchain_balance()
        return self.client.get_balance(wallet=account)


class SideChainDriver(ChainDriver):
    """
    Elements sidechain: outputs may be confidential.

    The transaction is unblinded with the node wallet's keys before decoding;
    an output that stays blinded is undecodable.
    """

    def __init__(self, client: ElementsClient, asset: str = ASSET_LBTC,
                 asset_id: Optional[str] = None):
        self.client = client
        self.asset_id = asset_id
        self.ledger = Ledger.side_chain(asset)

    def new_address(self) -> str:
        return self.client.get_new_address()

    def advance(self, confirmations: int, beneficiary_address: str):
        self.client.generate_to_address(confirmations, beneficiary_address)
        log.debug(f"Mined {confirmations} Elements block(s) to {beneficiary_address}")

    def decode_settlement(self, tx: bytes, output_index: int) -> int:
        try:
            unblinded = self.client.unblind_raw_transaction(tx.hex())
            decoded = self.client.decode_raw_transaction(unblinded)
        except CollaboratorUnavailable as e:
            raise UndecodableOutput(f"Elements could not decode settlement tx: {e}") from e

        outputs = decoded.get("vout") or []
        if output_index < 0 or output_index >= len(outputs):
            raise UndecodableOutput(
                f"Output {output_index} not in tx {decoded.get('txid')} ({len(outputs)} outputs)"
            )
        output = outputs[output_index]

        value = output.get("value")
        if value is None:
            # Only a commitment survives: the wallet cannot unblind it
            raise UndecodableOutput(
                f"Output {output_index} of {decoded.get('txid')} is blinded"
            )
        if self.asset_id and output.get("asset") != self.asset_id:
            raise UndecodableOutput(
                f"Output {output_index} carries asset {output.get('asset')}, "
                f"expected {self.asset_id}"
            )
        return btc_to_sats(value)

    def raw_balance(self, account: str) -> int:
        # getbalance reports L-BTC under the native label, issued assets by id
        label = self.asset_id if self.asset_id else self.client.config.native_asset
        return self.client.get_balance(label, wallet=account or None)
