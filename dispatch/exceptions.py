"""Exception hierarchy for the dispatch engine."""


class DispatchError(Exception):
    """Base class for dispatch-layer failures."""


class DispatchTimeoutError(DispatchError):
    """A handler did not finish within ``handler_timeout_ms``.

    Attributes:
        timeout_ms: The configured timeout that expired.
    """

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"handler timed out after {timeout_ms}ms")


class RouterConfigurationError(DispatchError, ValueError):
    """Invalid router tree wiring (self-include or include cycle)."""
