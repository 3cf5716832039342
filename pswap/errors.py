"""
Error kinds raised by pswap.

Every error a swap can end with has its own class and a stable ``kind`` string,
so reports never collapse distinct failures into one.
"""

from typing import Optional


class SwapError(Exception):
    """Base class for coordinator errors."""
    kind = "SwapError"


class CollaboratorUnavailable(SwapError):
    """A node or chain query failed or returned malformed data."""
    kind = "CollaboratorUnavailable"


class RpcError(CollaboratorUnavailable):
    """A collaborator answered with a well-formed error reply."""
    kind = "CollaboratorUnavailable"

    def __init__(self, method: str, code: Optional[int], message: str):
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message


class SwapRejected(SwapError):
    """Counterpart declined, or the quoted premium exceeds the request's limit."""
    kind = "SwapRejected"


class ConcurrencyConflict(SwapRejected):
    """Another session already owns the channel."""
    kind = "ConcurrencyConflict"


class SwapTimeout(SwapError):
    """Poll budget exhausted or session cancelled."""
    kind = "SwapTimeout"


class ChannelOpenTimeout(SwapTimeout):
    """Channel never reached the active state within its poll budget."""
    kind = "ChannelOpenTimeout"


class SwapFailed(SwapError):
    """The swap protocol ended without settling (cancelled, refunded)."""
    kind = "SwapFailed"


class SettlementMismatch(SwapError):
    """Observed amounts break value conservation."""
    kind = "SettlementMismatch"


class UndecodableOutput(SwapError):
    """A settlement output could not be read as a plaintext value."""
    kind = "UndecodableOutput"


class VerificationFailed(SwapError):
    """The swap settled but its amounts could not be certified."""
    kind = "VerificationFailed"


class InvalidPlan(SwapError):
    """A scenario cannot be run as planned (bad amount, no driver for its asset)."""
    kind = "InvalidPlan"
