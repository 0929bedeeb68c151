"""Exception hierarchy.

Generation errors carry a user-facing ``message`` that ends up as the
content of a FAILED report.
"""


class MarketFlowError(Exception):
    """Base class for all MarketFlow errors."""


class ReportStateError(MarketFlowError):
    """Illegal report lifecycle transition."""


class GenerationError(MarketFlowError):
    """Report generation failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CredentialError(GenerationError):
    """API key missing or rejected."""


class RateLimitError(GenerationError):
    """Service quota exhausted (429)."""


class TransportError(GenerationError):
    """Network or service failure."""


class GenerationTimeoutError(TransportError):
    """The generation call did not finish in time."""


class ParseError(MarketFlowError):
    """Malformed or empty service response."""


class DeliveryError(MarketFlowError):
    """Email delivery failed."""
