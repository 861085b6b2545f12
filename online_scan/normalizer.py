"""Mapping of provider analysis payloads onto :class:`ScanResult`."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, Mapping

from online_scan.models import ScanResult

THREAT_CATEGORIES = frozenset({"malicious", "suspicious"})
_COUNTED_CATEGORIES = ("harmless", "malicious", "suspicious", "undetected")


def extract_threats(results: Mapping[str, Mapping[str, Any]] | None) -> tuple[str, ...]:
    """Return ``"<engine>: <verdict>"`` for every engine that flagged the file.

    Engines are kept in payload order.  An engine counts only when its
    category is malicious or suspicious *and* it named a verdict.
    """
    if not results:
        return ()
    threats = []
    for key, entry in results.items():
        if not isinstance(entry, Mapping):
            continue
        if entry.get("category") not in THREAT_CATEGORIES:
            continue
        verdict = entry.get("result")
        if verdict:
            threats.append(f"{entry.get('engine_name') or key}: {verdict}")
    return tuple(threats)


def count_categories(results: Mapping[str, Mapping[str, Any]] | None) -> dict[str, int]:
    """Derive an aggregate stats object from per-engine entries."""
    counts = Counter(
        entry.get("category") for entry in (results or {}).values() if isinstance(entry, Mapping)
    )
    return {category: counts.get(category, 0) for category in _COUNTED_CATEGORIES}


def normalize(
    stats: Mapping[str, Any] | None,
    results: Mapping[str, Mapping[str, Any]] | None,
    *,
    provider_name: str,
    from_cache: bool,
    scanned_at: datetime | None = None,
    attempts: int = 0,
) -> ScanResult:
    """Build a :class:`ScanResult` from a provider's stats and engine results.

    When *stats* is missing the counts are derived from *results*.
    """
    if not stats:
        stats = count_categories(results)

    malicious = max(0, int(stats.get("malicious") or 0))
    suspicious = max(0, int(stats.get("suspicious") or 0))
    total = sum(max(0, int(stats.get(category) or 0)) for category in _COUNTED_CATEGORIES)
    total = max(total, malicious + suspicious)

    kwargs: dict[str, Any] = {}
    if scanned_at is not None:
        kwargs["scanned_at"] = scanned_at
    return ScanResult(
        is_infected=malicious > 0 or suspicious > 0,
        threats=extract_threats(results),
        total_engines=total,
        malicious_count=malicious,
        suspicious_count=suspicious,
        provider_name=provider_name,
        from_cache=from_cache,
        attempts=attempts,
        **kwargs,
    )
