"""
Error taxonomy for the bridge client.

NotFound and InvalidRequestList are surfaced to the caller immediately.
TransientError is retried by the backoff retrier. AlreadyDone is absorbed
by mutating calls and reported as success.
"""


class BridgeClientError(Exception):
    """Base class for all bridge client errors."""


class NotFound(BridgeClientError):
    """Request does not exist on the ledger (zero timestamp field)."""


class InvalidRequestList(BridgeClientError):
    """Empty or economically inconsistent set of redemption requests."""


class InsufficientConfirmations(BridgeClientError):
    """Proof assembly attempted before the required depth was reached.

    Retryable: the caller should wait for more blocks and try again.
    """

    def __init__(self, confirmations: int, required: int):
        self.confirmations = confirmations
        self.required = required
        super().__init__(
            f"Transaction confirmations number [{confirmations}] "
            f"is not enough, required [{required}]"
        )


class AlreadyDone(BridgeClientError):
    """Mutating call rejected because its effect already happened."""


class TransientError(BridgeClientError):
    """Network or RPC failure worth retrying."""


class FatalError(BridgeClientError):
    """Structurally invalid input that no retry can fix."""
