"""Exception hierarchy for the online scan package."""

from __future__ import annotations


class OnlineScanError(Exception):
    """Base exception for all online scan errors."""


class ScanValidationError(OnlineScanError):
    """Raised when a scan request is rejected before reaching the provider.

    Covers oversize files, missing or unreadable paths and unknown provider
    names.  Never retried.
    """


class UnsupportedProviderError(ScanValidationError):
    """Raised when a scan names a provider that is not registered."""


class RateLimitedError(OnlineScanError):
    """Raised when the provider rejects a call with HTTP 429.

    Attributes:
        retry_after: Cool-down hint in seconds taken from the provider's
            ``Retry-After`` header, or ``None`` when absent.
    """

    def __init__(self, message: str = "rate limited", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderError(OnlineScanError):
    """Raised for any other transport or protocol failure.

    Attributes:
        status_code: HTTP status of the failed response, when there was one.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderConnectionError(ProviderError):
    """Raised when the provider cannot be reached."""


class ProviderTimeoutError(ProviderError):
    """Raised when a single provider request exceeds the request timeout."""


class ProviderNotConfiguredError(ProviderError):
    """Raised when the provider has no API key configured."""


class ScanTimeoutError(OnlineScanError):
    """Raised when an analysis does not complete within the poll budget.

    Attributes:
        attempts: Number of polls performed.
        waited: Upper bound of the time spent polling, in seconds.
    """

    def __init__(self, attempts: int, waited: float) -> None:
        super().__init__(f"scan timed out after {attempts} polls ({waited:g} seconds)")
        self.attempts = attempts
        self.waited = waited


class DispatcherClosedError(OnlineScanError):
    """Raised for jobs left unresolved when the dispatcher is closed."""
