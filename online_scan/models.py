"""Data models for online scan results and service state."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

FAILED_THREAT_PREFIX = "扫描失败"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Normalized verdict for one scanned file.

    Attributes:
        is_infected: ``True`` when any engine flagged the file as malicious
            or suspicious, or when the scan failed inside a batch.
        threats: ``"<engine>: <verdict>"`` entries, empty when clean.
        total_engines: Number of engines that produced a verdict.
        malicious_count: Engines reporting ``malicious``.
        suspicious_count: Engines reporting ``suspicious``.
        scanned_at: Analysis time (UTC).  For cached reports this is the
            provider's last analysis date.
        provider_name: Provider that produced the verdict.
        from_cache: ``True`` when served from an existing report.
        file_path: Scanned file, filled in by the dispatcher.
        error: Failure message for batch entries whose scan failed.
        attempts: Polls needed for a fresh analysis; ``0`` for cached reports.
    """

    is_infected: bool
    threats: tuple[str, ...] = ()
    total_engines: int = 0
    malicious_count: int = 0
    suspicious_count: int = 0
    scanned_at: datetime = field(default_factory=_utcnow)
    provider_name: str = ""
    from_cache: bool = False
    file_path: str = ""
    error: str | None = None
    attempts: int = 0

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, file_path: str, message: str, provider_name: str = "") -> ScanResult:
        """Build the conservative "unsafe" entry used for a failed scan."""
        return cls(
            is_infected=True,
            threats=(f"{FAILED_THREAT_PREFIX}: {message}",),
            provider_name=provider_name,
            file_path=file_path,
            error=message,
        )


class AnalysisStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class PollResult:
    """Status of a submitted analysis.  ``result`` is set once complete."""

    status: AnalysisStatus
    result: ScanResult | None = None

    @property
    def complete(self) -> bool:
        return self.status is AnalysisStatus.COMPLETE


@dataclass(frozen=True, slots=True)
class RateBudget:
    """The provider's published request budget.

    Attributes:
        requests: Requests allowed per window.
        window_seconds: Window length in seconds.
    """

    requests: int
    window_seconds: float


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Static provider settings, loaded once per process.

    Attributes:
        api_key: Provider credential, ``None`` when not configured.
        base_url: Root URL of the provider API.
        timeout: Per-request timeout in seconds.
        max_file_size: Largest accepted upload in bytes.
        rate_limit: The provider's request budget.
    """

    api_key: str | None
    base_url: str
    timeout: float = 30.0
    max_file_size: int = 32 * 1024 * 1024
    rate_limit: RateBudget = RateBudget(requests=4, window_seconds=60.0)


@dataclass(slots=True)
class RateLimitState:
    """Earliest monotonic time at which dispatch may resume."""

    reset_at: float = 0.0

    def remaining(self, now: float) -> float:
        return max(0.0, self.reset_at - now)

    def trip(self, now: float, cooldown: float) -> None:
        self.reset_at = now + cooldown


@dataclass(frozen=True, slots=True)
class ServiceStatus:
    """Snapshot of the scanning service for health endpoints."""

    provider_name: str
    configured: bool
    max_file_size: int
    rate_limit: RateBudget
    queue_size: int
    processing: bool
    fallback_available: bool = False


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Counts over a batch result list."""

    total: int
    succeeded: int
    failed: int
    infected: int
