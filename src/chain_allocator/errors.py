"""Error taxonomy surfaced by the allocation engine."""


class ChainAllocatorError(Exception):
    """
    Base exception for all engine errors.

    Parameters
    ----------
    message : str
        Plain-language cause
    hint : str | None
        Corrective suggestion shown to the user (e.g. raise the amount, switch network)

    """

    retryable: bool = False

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class RoutingError(ChainAllocatorError):
    """Exception raised for routing service failures."""


class RateLimitedError(RoutingError):
    """
    Exception raised when the routing service rejects a call for exceeding its budget.

    Parameters
    ----------
    message : str
        Plain-language cause
    hint : str | None
        Corrective suggestion
    last_error : Exception | None
        Underlying error from the final attempt

    """

    retryable = True

    def __init__(self, message: str, hint: str | None = None, last_error: Exception | None = None) -> None:
        super().__init__(message, hint)
        self.last_error = last_error


class UpstreamUnavailableError(RoutingError):
    """Exception raised when an RPC endpoint or external API is unreachable."""

    retryable = True


class NoRouteFoundError(RoutingError):
    """Exception raised when no route exists for the requested transfer."""


class InsufficientAmountError(RoutingError):
    """Exception raised when an amount is below a bridge or protocol minimum."""


class InvalidRequestError(RoutingError):
    """Exception raised when the routing service rejects request parameters."""


class WalletNotConnectedError(ChainAllocatorError):
    """Exception raised when no usable wallet signer is available."""


class ChainMismatchError(ChainAllocatorError):
    """Exception raised when the wallet is on a different network than the route requires."""


class ExecutionFailedError(ChainAllocatorError):
    """
    Exception raised when transaction submission fails or reverts.

    ``reason`` carries the wallet rejection or revert message verbatim.
    """

    def __init__(self, message: str, hint: str | None = None, reason: str | None = None) -> None:
        super().__init__(message, hint)
        self.reason = reason


class ExecutionRefusedError(ChainAllocatorError):
    """Exception raised when asked to execute a plan that is not ready."""


class QuoteExpiredError(ChainAllocatorError):
    """Exception raised when a quote is older than the staleness window."""


class IncompleteSnapshotError(ChainAllocatorError):
    """Exception raised when planning is asked to run against a snapshot with unreachable chains."""


def is_retryable(error: BaseException) -> bool:
    """Whether ``error`` belongs to a transient class worth retrying."""
    return bool(getattr(error, "retryable", False))
