"""
Exclusive channel ownership.

The channel node runs one swap per channel at a time, so a channel is claimed
for a swap's whole lifetime, snapshots included. A second claim on a busy
channel is refused immediately rather than queued.

Sessions and runners built without an explicit registry share
DEFAULT_REGISTRY, so the rule holds process-wide.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Optional

from ..errors import ConcurrencyConflict

log = logging.getLogger(__name__)


class ChannelRegistry:
    """Single-writer-per-channel registry, safe across threads."""

    def __init__(self):
        self._owners: Dict[str, str] = {}
        self._lock = threading.Lock()

    def acquire(self, channel_id: str, owner: str) -> bool:
        """
        Claim a channel.

        Returns:
            True if newly claimed, False if owner already held it

        Raises:
            ConcurrencyConflict: another owner holds the channel
        """
        with self._lock:
            current = self._owners.get(channel_id)
            if current == owner:
                return False
            if current is not None:
                raise ConcurrencyConflict(
                    f"Channel {channel_id} is busy with session {current}"
                )
            self._owners[channel_id] = owner
        log.debug(f"Channel {channel_id} acquired by {owner}")
        return True

    def release(self, channel_id: str, owner: str):
        """Release a channel; a no-op unless owner holds it."""
        with self._lock:
            if self._owners.get(channel_id) == owner:
                del self._owners[channel_id]
                log.debug(f"Channel {channel_id} released by {owner}")

    def owner(self, channel_id: str) -> Optional[str]:
        with self._lock:
            return self._owners.get(channel_id)

    @contextmanager
    def hold(self, channel_id: str, owner: str):
        """Own a channel for the block; an existing claim by owner is left in place."""
        acquired = self.acquire(channel_id, owner)
        try:
            yield
        finally:
            if acquired:
                self.release(channel_id, owner)


DEFAULT_REGISTRY = ChannelRegistry()
