"""Sequential batch scanning through a shared dispatcher."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence, Union

from online_scan.dispatcher import ScanDispatcher
from online_scan.models import BatchSummary, ScanResult

logger = logging.getLogger(__name__)


async def scan_files(
    dispatcher: ScanDispatcher,
    file_paths: Sequence[Union[str, Path]],
    provider: str | None = None,
) -> list[ScanResult]:
    """Scan *file_paths* one after another and return one result per path.

    Results keep the input order.  A file whose scan fails is reported as
    infected with a ``"扫描失败: <message>"`` threat so that callers treat it
    as unsafe; the remaining files are still scanned.
    """
    results: list[ScanResult] = []
    for file_path in file_paths:
        try:
            result = await dispatcher.scan(file_path, provider)
        except Exception as exc:
            logger.error("Scanning %s failed: %s", Path(file_path).name, exc)
            result = ScanResult.failure(
                str(file_path),
                str(exc) or type(exc).__name__,
                provider or dispatcher.default_provider,
            )
        results.append(result)
    return results


def has_infected_files(results: Iterable[ScanResult]) -> bool:
    return any(result.is_infected for result in results)


def get_infected_files(results: Iterable[ScanResult]) -> list[str]:
    """Return the file paths of the infected entries, in order."""
    return [result.file_path for result in results if result.is_infected]


def summarize(results: Sequence[ScanResult]) -> BatchSummary:
    failed = sum(1 for result in results if result.failed)
    return BatchSummary(
        total=len(results),
        succeeded=len(results) - failed,
        failed=failed,
        infected=sum(1 for result in results if result.is_infected),
    )
