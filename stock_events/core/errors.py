"""Exception hierarchy for the event pipeline.

Everything raised on purpose derives from :class:`StockEventsError`, so the
orchestrator can tell an upstream failure it knows how to degrade around from
a programming error.
"""

from typing import Optional


class StockEventsError(Exception):
    """Base class for pipeline errors."""


class ConfigError(StockEventsError):
    """Raised when config.yaml is empty or malformed."""


class ValidationError(StockEventsError):
    """Raised for malformed input at the pipeline boundary (e.g. a bad symbol)."""


class ProviderError(StockEventsError):
    """Raised when an upstream provider returns a non-2xx or malformed payload.

    Args:
        provider: Short provider name (``"finnhub"``, ``"alpha_vantage"``...).
        message: Human-readable reason.
        status_code: HTTP status of the failed response, when there was one.
    """

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimited(ProviderError):
    """Raised when a provider's per-minute cap or daily quota is exhausted.

    Raised by the rate limiter *before* a network call is attempted, or when a
    vendor answers with its own throttling notice.
    """

    def __init__(
        self,
        provider: str,
        limit: Optional[int] = None,
        used: Optional[int] = None,
        window: str = "day",
        message: Optional[str] = None,
    ) -> None:
        if message is None:
            message = f"{provider} rate limit reached: {used}/{limit} requests used this {window}"
        super().__init__(provider, message)
        self.limit = limit
        self.used = used
        self.window = window


class InsufficientData(StockEventsError):
    """Raised when a series is too short for the stage that consumes it."""


class PipelineCancelled(StockEventsError):
    """Raised when the caller's deadline expires mid-run."""
