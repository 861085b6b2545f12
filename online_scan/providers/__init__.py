"""Scanning service provider clients."""

from online_scan.providers.base import ProviderRegistry, ScanProvider
from online_scan.providers.virustotal import VirusTotalProvider

__all__ = ["ProviderRegistry", "ScanProvider", "VirusTotalProvider"]
