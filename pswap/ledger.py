"""
Read-only balance views over the channel node and the settlement chains.

Every call goes to the collaborator; nothing is cached, and a failed query is
raised, never reported as a zero balance.
"""

import logging
from typing import Dict, Iterable

from .chains.cln import CLNClient
from .chains.driver import ChainDriver
from .core import Ledger, LedgerSnapshot
from .errors import CollaboratorUnavailable

log = logging.getLogger(__name__)


class LedgerViews:
    """Balance accessors per ledger."""

    def __init__(self, channel_node: CLNClient, drivers: Iterable[ChainDriver] = ()):
        self.channel_node = channel_node
        self.drivers: Dict[Ledger, ChainDriver] = {d.ledger: d for d in drivers}

    def driver(self, ledger: Ledger) -> ChainDriver:
        try:
            return self.drivers[ledger]
        except KeyError:
            raise ValueError(f"No chain driver configured for {ledger}") from None

    def balance(self, ledger: Ledger, key: str) -> int:
        """
        Current balance of a channel (key = short channel id) or chain account
        (key = wallet name).

        Raises:
            CollaboratorUnavailable: the query failed or returned garbage
        """
        if ledger.is_onchain:
            value = self.driver(ledger).raw_balance(key)
        else:
            value = self.channel_node.channel_balance(key)

        if isinstance(value, bool) or not isinstance(value, int):
            raise CollaboratorUnavailable(f"Balance of {ledger}/{key} is not an integer: {value!r}")
        return value

    def snapshot(self, ledger: Ledger, key: str) -> LedgerSnapshot:
        balance = self.balance(ledger, key)
        log.debug(f"Snapshot {ledger}/{key}: {balance}")
        return LedgerSnapshot(ledger=ledger, balance=balance, account=key)
