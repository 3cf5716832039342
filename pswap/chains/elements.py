"""
Elements (Liquid) RPC client for pswap.

Uses elements-cli, optionally inside a docker container, like the regtest
setups the peerswap plugin is tested against.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

from ..core import btc_to_sats, sats_to_btc
from ..errors import CollaboratorUnavailable, RpcError

log = logging.getLogger(__name__)

ZERO_BLINDER = "00" * 32
GENESIS_CLAIM_FEE = 0.0001      # L-BTC
ANYONE_CAN_SPEND = "51"         # OP_TRUE


@dataclass
class ElementsConfig:
    """Elements node configuration."""
    container: Optional[str] = "elementsd"  # None = run elements-cli locally
    cli_path: str = "elements-cli"
    chain: str = "liquidregtest"
    rpc_user: str = "user"
    rpc_password: str = "pass"
    rpc_port: int = 7041
    wallet_name: str = "peerswap"
    native_asset: str = "bitcoin"           # label getbalance reports L-BTC under
    timeout: int = 30


class ElementsClient:
    """
    Elements RPC client.

    Provides access to:
    - Wallet operations (addresses, balances, sends)
    - Block production
    - Raw/confidential transaction decoding
    """

    def __init__(self, config: ElementsConfig):
        self.config = config

    def _build_cmd(self, method: str, *args, wallet: Optional[str] = None) -> List[str]:
        """Build CLI command."""
        cmd = []
        if self.config.container:
            cmd.extend(["docker", "exec", self.config.container])

        cmd.append(self.config.cli_path)
        cmd.append(f"-chain={self.config.chain}")
        if self.config.rpc_user:
            cmd.append(f"-rpcuser={self.config.rpc_user}")
        if self.config.rpc_password:
            cmd.append(f"-rpcpassword={self.config.rpc_password}")
        if self.config.rpc_port:
            cmd.append(f"-rpcport={self.config.rpc_port}")
        if wallet:
            cmd.append(f"-rpcwallet={wallet}")

        cmd.append(method)
        # CLI expects "true"/"false", not "True"/"False"
        cmd.extend(str(a).lower() if isinstance(a, bool) else str(a) for a in args)
        return cmd

    def _call(self, method: str, *args, wallet: Optional[str] = None) -> Any:
        """Execute RPC call via CLI."""
        cmd = self._build_cmd(method, *args, wallet=wallet)
        log.debug(f"Elements RPC cmd: {method} {' '.join(str(a) for a in args)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
            )
        except subprocess.TimeoutExpired:
            raise CollaboratorUnavailable(f"Elements RPC timeout: {method}") from None
        except OSError as e:
            raise CollaboratorUnavailable(f"Elements RPC could not run: {e}") from e

        if result.returncode != 0:
            error = result.stderr.strip()
            log.error(f"Elements RPC error: {method} -> {error}")
            raise RpcError(method, result.returncode, error)

        output = result.stdout.strip()
        if not output:
            return None

        try:
            return json.loads(output)
        except json.JSONDecodeError:
            return output

    def _wallet_call(self, method: str, *args) -> Any:
        return self._call(method, *args, wallet=self.config.wallet_name)

    # =========================================================================
    # Wallet Operations
    # =========================================================================

    def ensure_wallet(self):
        """Create and load the configured wallet, tolerating either already done."""
        name = self.config.wallet_name
        try:
            self._call("createwallet", name)
        except RpcError as e:
            log.debug(f"createwallet {name}: {e.message}")
        try:
            self._call("loadwallet", name)
        except RpcError as e:
            log.debug(f"loadwallet {name}: {e.message}")

    def get_new_address(self) -> str:
        """Generate new address."""
        address = self._wallet_call("getnewaddress")
        if not isinstance(address, str) or not address:
            raise CollaboratorUnavailable(f"getnewaddress returned {address!r}")
        return address

    def get_balances(self, wallet: Optional[str] = None) -> Dict[str, float]:
        """Wallet balance per asset label."""
        balances = self._call("getbalance", wallet=wallet or self.config.wallet_name)
        if not isinstance(balances, dict):
            raise CollaboratorUnavailable(f"getbalance returned {balances!r}")
        return balances

    def get_balance(self, asset: Optional[str] = None, wallet: Optional[str] = None) -> int:
        """Balance of one asset in sats (base units)."""
        asset = asset or self.config.native_asset
        balances = self.get_balances(wallet)
        value = balances.get(asset, 0)
        if not isinstance(value, (int, float)):
            raise CollaboratorUnavailable(f"getbalance[{asset}] returned {value!r}")
        return btc_to_sats(value)

    def send_to_address(self, address: str, amount_sats: int) -> str:
        """Send L-BTC to an address. Returns txid."""
        return self._wallet_call("sendtoaddress", address, f"{sats_to_btc(amount_sats):.8f}")

    # =========================================================================
    # Blocks & Transactions
    # =========================================================================

    def generate_to_address(self, blocks: int, address: str) -> List[str]:
        """Mine blocks paying to address."""
        return self._call("generatetoaddress", blocks, address)

    def decode_raw_transaction(self, hex_tx: str) -> Dict:
        """Decode raw transaction."""
        decoded = self._call("decoderawtransaction", hex_tx)
        if not isinstance(decoded, dict):
            raise CollaboratorUnavailable("decoderawtransaction returned malformed data")
        return decoded

    def unblind_raw_transaction(self, hex_tx: str) -> str:
        """Unblind outputs the wallet holds blinding keys for."""
        result = self._wallet_call("unblindrawtransaction", hex_tx)
        if not isinstance(result, dict) or "hex" not in result:
            raise CollaboratorUnavailable("unblindrawtransaction returned malformed data")
        return result["hex"]

    def send_raw_transaction(self, hex_tx: str) -> str:
        """Broadcast raw transaction."""
        return self._call("sendrawtransaction", hex_tx)

    # =========================================================================
    # Regtest Genesis Funds
    # =========================================================================

    def claim_genesis(self) -> Optional[int]:
        """
        Sweep the anyone-can-spend regtest genesis output into the wallet.

        Returns the claimed amount in sats, or None when the wallet was
        already funded.
        """
        if self.get_balance() > btc_to_sats(1.0):
            log.info("Elements wallet already funded, skipping genesis claim")
            return None

        scan = self._call("scantxoutset", "start", json.dumps([f"raw({ANYONE_CAN_SPEND})"]))
        unspents = (scan or {}).get("unspents") or []
        if not unspents:
            raise CollaboratorUnavailable("No anyone-can-spend UTXO found (already claimed?)")
        utxo = unspents[0]

        txid, vout = utxo["txid"], utxo["vout"]
        amount, asset = utxo["amount"], utxo["asset"]
        send_amount = round(amount - GENESIS_CLAIM_FEE, 8)
        address = self.get_new_address()

        # Explicit fee output is mandatory on Elements
        inputs = [{"txid": txid, "vout": vout}]
        outputs = [{address: send_amount}, {"fee": GENESIS_CLAIM_FEE}]
        raw_hex = self._call("createrawtransaction", json.dumps(inputs), json.dumps(outputs))

        blinded_hex = self._call(
            "rawblindrawtransaction",
            raw_hex,
            json.dumps([ZERO_BLINDER]),
            json.dumps([amount]),
            json.dumps([asset]),
            json.dumps([ZERO_BLINDER]),
        )

        prevtxs = [{"txid": txid, "vout": vout, "scriptPubKey": ANYONE_CAN_SPEND, "amount": amount}]
        signed = self._wallet_call("signrawtransactionwithwallet", blinded_hex, json.dumps(prevtxs))
        if not isinstance(signed, dict) or not signed.get("hex"):
            raise CollaboratorUnavailable("signrawtransactionwithwallet returned no hex")

        self.send_raw_transaction(signed["hex"])
        self.generate_to_address(1, self.get_new_address())

        claimed = btc_to_sats(send_amount)
        log.info(f"Claimed {claimed} sats L-BTC from genesis")
        return claimed
