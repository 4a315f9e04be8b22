"""
Error taxonomy for the proximity layer.

  - InvalidInputError: malformed client input. Surfaced as HTTP 400, never
    retried.
  - ProviderUnavailableError: one failed attempt against one upstream
    (timeout, network error, 429/5xx, unusable payload). Always recovered
    locally by moving to the next provider, endpoint, or round.
  - AllProvidersExhaustedError: every attempt failed. Recovered at the
    composition root by returning an empty/not-found payload.

Anything else reaching the HTTP layer is an internal fault (HTTP 500).
"""

from typing import Optional


class ProximityError(Exception):
    """Base class for all proximity-layer errors."""

    pass


class InvalidInputError(ProximityError):
    """Raised when request parameters are missing or malformed."""

    pass


class ProviderUnavailableError(ProximityError):
    """One failed attempt against one upstream service.

    ``reason`` is a short tag ("timeout", "network", "rate_limit",
    "http_5xx", "http_4xx", "parse_error", "empty", "body_error") so the
    retry loops never need to inspect the underlying exception type.
    """

    def __init__(
        self,
        provider: str,
        reason: str,
        message: str = "",
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        detail = message or reason
        super().__init__(f"{provider}: {detail}")


class AllProvidersExhaustedError(ProximityError):
    """Raised after every provider/endpoint attempt has failed."""

    def __init__(
        self,
        attempts: int,
        last_error: Optional[ProviderUnavailableError] = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"All providers failed after {attempts} attempts"
            + (f" (last error: {last_error})" if last_error else "")
        )
