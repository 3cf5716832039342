"""
Bitcoin Core JSON-RPC client for pswap.

Talks to bitcoind over HTTP (regtest by default).
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx

from ..core import btc_to_sats
from ..errors import CollaboratorUnavailable, RpcError

log = logging.getLogger(__name__)


@dataclass
class BTCConfig:
    """Bitcoin node configuration."""
    rpc_url: str = "http://127.0.0.1:18443"
    rpc_user: str = "user"
    rpc_password: str = "pass"
    wallet_name: str = ""       # Empty = default loaded wallet
    timeout: float = 30.0


class BTCClient:
    """
    Bitcoin JSON-RPC client.

    Every failure (transport, HTTP, malformed body, RPC error reply) surfaces
    as CollaboratorUnavailable; RPC error replies are the RpcError subclass.
    """

    def __init__(self, config: BTCConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self._ids = itertools.count(1)
        self._http = httpx.Client(
            auth=(config.rpc_user, config.rpc_password),
            timeout=config.timeout,
            transport=transport,
        )

    def close(self):
        self._http.close()

    def _url(self, wallet: Optional[str]) -> str:
        wallet = self.config.wallet_name if wallet is None else wallet
        base = self.config.rpc_url.rstrip("/")
        return f"{base}/wallet/{wallet}" if wallet else base

    def _call(self, method: str, *params, wallet: Optional[str] = None) -> Any:
        """Execute one JSON-RPC call."""
        payload = {
            "jsonrpc": "1.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }

        try:
            response = self._http.post(self._url(wallet), json=payload)
        except httpx.HTTPError as e:
            log.error(f"BTC RPC transport error: {method} -> {e}")
            raise CollaboratorUnavailable(f"BTC RPC {method} unreachable: {e}") from e

        # bitcoind answers RPC errors with HTTP 500 and a JSON body
        try:
            body = response.json()
        except ValueError:
            log.error(f"BTC RPC error: {method} -> HTTP {response.status_code}")
            raise CollaboratorUnavailable(
                f"BTC RPC {method} returned HTTP {response.status_code}"
            ) from None

        if not isinstance(body, dict):
            raise CollaboratorUnavailable(f"BTC RPC {method} returned malformed body")

        error = body.get("error")
        if error:
            log.error(f"BTC RPC error: {method} -> {error}")
            if not isinstance(error, dict):
                raise RpcError(method, None, str(error))
            raise RpcError(method, error.get("code"), error.get("message", ""))

        if response.status_code != 200:
            raise CollaboratorUnavailable(
                f"BTC RPC {method} returned HTTP {response.status_code}"
            )

        return body.get("result")

    # =========================================================================
    # Wallet Operations
    # =========================================================================

    def get_new_address(self, label: str = "", address_type: str = "bech32") -> str:
        """Generate new address."""
        return self._call("getnewaddress", label, address_type)

    def get_balance(self, wallet: Optional[str] = None) -> int:
        """Trusted wallet balance in sats."""
        result = self._call("getbalance", wallet=wallet)
        if not isinstance(result, (int, float)):
            raise CollaboratorUnavailable(f"getbalance returned {result!r}")
        return btc_to_sats(result)

    # =========================================================================
    # Blocks
    # =========================================================================

    def generate_to_address(self, blocks: int, address: str) -> List[str]:
        """Mine blocks paying the coinbase to address."""
        return self._call("generatetoaddress", blocks, address, wallet="")
