"""
Core Lightning client for pswap, with the peerswap plugin commands.

This is the channel-node surface the swap session drives: submitting swaps,
polling their status, and reading channel balances and states.
"""

import json
import logging
import secrets
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Any, List, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core import SwapDirection, msat_to_sat
from ..errors import CollaboratorUnavailable, RpcError, SwapRejected

log = logging.getLogger(__name__)


@dataclass
class CLNConfig:
    """Core Lightning node configuration."""
    container: Optional[str] = "alice"      # None = run lightning-cli locally
    cli_path: str = "lightning-cli"
    network: str = "regtest"
    lightning_dir: str = ""
    timeout: int = 60


class ChannelState(Enum):
    """Channel states the coordinator distinguishes."""
    AWAITING_LOCKIN = "CHANNELD_AWAITING_LOCKIN"
    NORMAL = "CHANNELD_NORMAL"
    SHUTTING_DOWN = "CHANNELD_SHUTTING_DOWN"
    CLOSING = "CLOSINGD_SIGEXCHANGE"
    CLOSED = "ONCHAIN"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_raw(cls, raw: str) -> "ChannelState":
        for state in cls:
            if state.value == raw:
                return state
        return cls.UNKNOWN

    @property
    def is_active(self) -> bool:
        return self == ChannelState.NORMAL


# =============================================================================
# Reply Models
# =============================================================================

def _parse_msat(value: Union[int, str]) -> int:
    # Older CLN releases report "<n>msat" strings
    if isinstance(value, str):
        value = value[:-4] if value.endswith("msat") else value
        return int(value)
    return int(value)


class FundsChannel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    peer_id: str = ""
    state: str = ""
    short_channel_id: Optional[str] = None
    funding_txid: Optional[str] = None
    our_amount_msat: int = 0
    amount_msat: int = 0

    @field_validator("our_amount_msat", "amount_msat", mode="before")
    @classmethod
    def coerce_msat(cls, value):
        return _parse_msat(value)


class FundsOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    txid: str
    output: int
    amount_msat: int = 0
    status: str = ""

    @field_validator("amount_msat", mode="before")
    @classmethod
    def coerce_msat(cls, value):
        return _parse_msat(value)


class ListFunds(BaseModel):
    model_config = ConfigDict(extra="ignore")

    outputs: List[FundsOutput] = Field(default_factory=list)
    channels: List[FundsChannel] = Field(default_factory=list)


class SwapAgreement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    premium: int = 0


class SwapData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    opening_tx_fee: int = 0
    opening_tx_hex: str = ""
    swap_out_agreement: Optional[SwapAgreement] = None
    swap_in_agreement: Optional[SwapAgreement] = None


class GetSwapReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    current: str = ""
    data: SwapData = Field(default_factory=SwapData)


@dataclass(frozen=True)
class SwapStatus:
    """One observation of a swap on the channel node."""
    state: str
    opening_tx_fee: int
    agreed_premium: Optional[int]
    opening_tx: bytes


# =============================================================================
# Client
# =============================================================================

class CLNClient:
    """
    Core Lightning client via lightning-cli.

    RPC error replies raise RpcError; transport failures and malformed replies
    raise CollaboratorUnavailable.
    """

    def __init__(self, config: CLNConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.container or "local"

    def _build_cmd(self, method: str, *args) -> List[str]:
        """Build CLI command."""
        cmd = []
        if self.config.container:
            cmd.extend(["docker", "exec", self.config.container])

        cmd.append(self.config.cli_path)
        cmd.append(f"--network={self.config.network}")
        if self.config.lightning_dir:
            cmd.append(f"--lightning-dir={self.config.lightning_dir}")

        cmd.append(method)
        cmd.extend(str(a).lower() if isinstance(a, bool) else str(a) for a in args)
        return cmd

    def _call(self, method: str, *args) -> Any:
        """Execute RPC call via CLI."""
        cmd = self._build_cmd(method, *args)
        log.debug(f"CLN[{self.name}] RPC cmd: {method} {' '.join(str(a) for a in args)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
            )
        except subprocess.TimeoutExpired:
            raise CollaboratorUnavailable(f"CLN[{self.name}] RPC timeout: {method}") from None
        except OSError as e:
            raise CollaboratorUnavailable(f"CLN[{self.name}] RPC could not run: {e}") from e

        if result.returncode != 0:
            # lightning-cli prints the JSON error object on stdout
            for stream in (result.stdout, result.stderr):
                try:
                    error = json.loads(stream)
                except (json.JSONDecodeError, TypeError):
                    continue
                if isinstance(error, dict) and "message" in error:
                    log.error(f"CLN[{self.name}] RPC error: {method} -> {error['message']}")
                    raise RpcError(method, error.get("code"), error["message"])

            error = (result.stderr or result.stdout).strip()
            log.error(f"CLN[{self.name}] RPC failed: {method} -> {error}")
            raise CollaboratorUnavailable(f"CLN[{self.name}] {method} failed: {error}")

        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            raise CollaboratorUnavailable(
                f"CLN[{self.name}] {method} returned non-JSON output"
            ) from None

    def _field(self, reply: Any, key: str, method: str) -> Any:
        if not isinstance(reply, dict) or reply.get(key) in (None, ""):
            raise CollaboratorUnavailable(f"CLN[{self.name}] {method}: no {key} in reply")
        return reply[key]

    # =========================================================================
    # Node Operations
    # =========================================================================

    def get_id(self) -> str:
        """Node public key."""
        return self._field(self._call("getinfo"), "id", "getinfo")

    def new_address(self) -> str:
        """New on-chain bech32 address of the node's wallet."""
        return self._field(self._call("newaddr"), "bech32", "newaddr")

    def connect(self, node_id: str, host: str, port: int = 9735):
        """Connect to a peer."""
        self._call("connect", f"{node_id}@{host}:{port}")

    def fund_channel(self, node_id: str, amount_sat: int) -> str:
        """Open a channel. Returns the funding txid."""
        return self._field(self._call("fundchannel", node_id, amount_sat), "txid", "fundchannel")

    def list_funds(self) -> ListFunds:
        """On-chain outputs and channels, validated."""
        reply = self._call("listfunds")
        try:
            return ListFunds.model_validate(reply)
        except ValidationError as e:
            raise CollaboratorUnavailable(f"CLN[{self.name}] listfunds malformed: {e}") from e

    def invoice(self, amount_msat: int, description: str = "pswap") -> str:
        """Create a bolt11 invoice with a random label."""
        label = f"inv-{secrets.randbits(64)}"
        reply = self._call("invoice", amount_msat, label, description)
        return self._field(reply, "bolt11", "invoice")

    def pay(self, bolt11: str):
        """Pay a bolt11 invoice."""
        self._call("pay", bolt11)

    # =========================================================================
    # Channel Surface
    # =========================================================================

    def _find_channel(self, funds: ListFunds, channel_id: str) -> FundsChannel:
        for channel in funds.channels:
            if channel.short_channel_id == channel_id:
                return channel
        raise CollaboratorUnavailable(f"CLN[{self.name}] has no channel {channel_id}")

    def channel_balance(self, channel_id: str) -> int:
        """Local balance of a channel in sats."""
        channel = self._find_channel(self.list_funds(), channel_id)
        return msat_to_sat(channel.our_amount_msat)

    def channel_state(self, channel_id: str) -> ChannelState:
        """State of a channel by short channel id."""
        channel = self._find_channel(self.list_funds(), channel_id)
        return ChannelState.from_raw(channel.state)

    def channel_by_funding(self, funding_txid: str) -> Optional[FundsChannel]:
        """Channel opened by a funding tx, if the node knows it yet."""
        for channel in self.list_funds().channels:
            if channel.funding_txid == funding_txid:
                return channel
        return None

    def onchain_balance(self) -> int:
        """Confirmed on-chain wallet funds in sats."""
        outputs = self.list_funds().outputs
        return msat_to_sat(sum(o.amount_msat for o in outputs if o.status == "confirmed"))

    # =========================================================================
    # Peerswap Plugin
    # =========================================================================

    def submit_swap(self, direction: SwapDirection, channel_id: str, amount: int,
                    asset: str, max_premium_ppm: int) -> str:
        """
        Propose a swap to the channel peer.

        Returns:
            swap_id assigned by the plugin

        Raises:
            SwapRejected: the plugin or the peer refused the swap
        """
        method = "peerswap-swap-out" if direction == SwapDirection.OUT else "peerswap-swap-in"
        try:
            reply = self._call(method, channel_id, amount, asset, max_premium_ppm)
        except RpcError as e:
            raise SwapRejected(f"{method} refused: {e.message}") from e
        swap_id = self._field(reply, "id", method)
        log.info(f"CLN[{self.name}] submitted swap {swap_id}: {method} {amount} {asset}")
        return swap_id

    def swap_status(self, swap_id: str) -> SwapStatus:
        """Current status of a swap."""
        reply = self._call("peerswap-getswap", swap_id)
        try:
            parsed = GetSwapReply.model_validate(reply)
        except ValidationError as e:
            raise CollaboratorUnavailable(f"peerswap-getswap malformed: {e}") from e

        agreement = parsed.data.swap_out_agreement or parsed.data.swap_in_agreement
        try:
            opening_tx = bytes.fromhex(parsed.data.opening_tx_hex)
        except ValueError:
            raise CollaboratorUnavailable(
                f"peerswap-getswap {swap_id}: opening_tx_hex is not hex"
            ) from None

        return SwapStatus(
            state=parsed.current,
            opening_tx_fee=parsed.data.opening_tx_fee,
            agreed_premium=agreement.premium if agreement else None,
            opening_tx=opening_tx,
        )

    def lbtc_address(self) -> str:
        """Address of the plugin's L-BTC wallet."""
        return self._field(self._call("peerswap-lbtc-getaddress"), "address",
                           "peerswap-lbtc-getaddress")

    def set_premium_rate(self, asset: str, swap_out_ppm: int, swap_in_ppm: int):
        """Set the global premium the node charges per direction."""
        self._call("peerswap-updateglobalpremiumrate", asset, "swap_out", swap_out_ppm)
        self._call("peerswap-updateglobalpremiumrate", asset, "swap_in", swap_in_ppm)
        log.info(f"CLN[{self.name}] premium {asset}: out={swap_out_ppm} in={swap_in_ppm} ppm")
