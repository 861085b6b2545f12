"""Online scan — queued multi-engine malware scanning through VirusTotal."""

from online_scan.batch import get_infected_files, has_infected_files, scan_files
from online_scan.config import Settings, get_settings
from online_scan.dispatcher import ScanDispatcher
from online_scan.exceptions import (
    DispatcherClosedError,
    OnlineScanError,
    ProviderConnectionError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
    RateLimitedError,
    ScanTimeoutError,
    ScanValidationError,
    UnsupportedProviderError,
)
from online_scan.models import (
    AnalysisStatus,
    BatchSummary,
    PollResult,
    ProviderConfig,
    RateBudget,
    ScanResult,
    ServiceStatus,
)
from online_scan.providers import ProviderRegistry, ScanProvider, VirusTotalProvider
from online_scan.service import OnlineScanService

__all__ = [
    "OnlineScanService",
    "ScanDispatcher",
    "ScanProvider",
    "ProviderRegistry",
    "VirusTotalProvider",
    "Settings",
    "get_settings",
    "scan_files",
    "has_infected_files",
    "get_infected_files",
    "ScanResult",
    "PollResult",
    "AnalysisStatus",
    "ProviderConfig",
    "RateBudget",
    "ServiceStatus",
    "BatchSummary",
    "OnlineScanError",
    "ScanValidationError",
    "UnsupportedProviderError",
    "RateLimitedError",
    "ProviderError",
    "ProviderConnectionError",
    "ProviderTimeoutError",
    "ProviderNotConfiguredError",
    "ScanTimeoutError",
    "DispatcherClosedError",
]
