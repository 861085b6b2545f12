"""Public entry point used by the web layer."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence, Union

from online_scan import batch
from online_scan.config import Settings, get_settings
from online_scan.dispatcher import ScanDispatcher
from online_scan.exceptions import ScanValidationError
from online_scan.models import BatchSummary, ScanResult, ServiceStatus
from online_scan.providers.base import ProviderRegistry
from online_scan.providers.virustotal import VirusTotalProvider

logger = logging.getLogger(__name__)


class OnlineScanService:
    """Scans files through a single shared :class:`ScanDispatcher`.

    Args:
        dispatcher: The process-wide dispatcher.
        fallback_status: Optional callable reporting whether the on-host
            scanning engine is initialised.  Only its boolean result is used.

    Example::

        async with OnlineScanService.from_settings() as scanner:
            result = await scanner.scan_file("/srv/uploads/invoice.pdf")
            if result.is_infected:
                ...
    """

    def __init__(
        self,
        dispatcher: ScanDispatcher,
        fallback_status: Callable[[], bool] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._fallback_status = fallback_status

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        fallback_status: Callable[[], bool] | None = None,
    ) -> OnlineScanService:
        """Build the VirusTotal provider, registry and dispatcher from *settings*."""
        settings = settings or get_settings()
        registry = ProviderRegistry(VirusTotalProvider(settings.provider_config()))
        if settings.default_provider not in registry:
            raise ScanValidationError(f"Unsupported scan provider: {settings.default_provider}")
        dispatcher = ScanDispatcher(
            registry,
            settings.default_provider,
            poll_attempts=settings.poll_attempts,
            poll_delay=settings.poll_delay,
            inter_job_delay=settings.inter_job_delay,
            rate_limit_cooldown=settings.rate_limit_cooldown,
        )
        if not registry.get(settings.default_provider).configured:
            logger.warning("Online scanning provider %s has no API key", settings.default_provider)
        return cls(dispatcher, fallback_status)

    @property
    def dispatcher(self) -> ScanDispatcher:
        return self._dispatcher

    async def scan_file(self, file_path: Union[str, Path], service: str | None = None) -> ScanResult:
        """Scan one file.

        Raises:
            ScanValidationError: If *file_path* does not exist (raised before
                the job is queued) or fails provider validation.
        """
        path = Path(file_path)
        if not path.exists():
            raise ScanValidationError(f"File not found: {path}")
        logger.info("Starting online scan of %s", path.name)
        return await self._dispatcher.scan(path, service)

    async def scan_files(
        self, file_paths: Sequence[Union[str, Path]], service: str | None = None
    ) -> list[ScanResult]:
        """Scan several files; failures become infected entries (see :func:`batch.scan_files`)."""
        return await batch.scan_files(self._dispatcher, file_paths, service)

    @staticmethod
    def has_infected_files(results: Sequence[ScanResult]) -> bool:
        return batch.has_infected_files(results)

    @staticmethod
    def get_infected_files(results: Sequence[ScanResult]) -> list[str]:
        return batch.get_infected_files(results)

    @staticmethod
    def summarize(results: Sequence[ScanResult]) -> BatchSummary:
        return batch.summarize(results)

    def get_service_status(self, service: str | None = None) -> ServiceStatus:
        provider = self._dispatcher.registry.get(service or self._dispatcher.default_provider)
        return ServiceStatus(
            provider_name=provider.name,
            configured=provider.configured,
            max_file_size=provider.config.max_file_size,
            rate_limit=provider.config.rate_limit,
            queue_size=self._dispatcher.queue_size,
            processing=self._dispatcher.processing,
            fallback_available=self._fallback_available(),
        )

    async def aclose(self) -> None:
        await self._dispatcher.aclose()
        await self._dispatcher.registry.aclose()

    async def __aenter__(self) -> OnlineScanService:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _fallback_available(self) -> bool:
        if self._fallback_status is None:
            return False
        try:
            return bool(self._fallback_status())
        except Exception:
            logger.exception("On-host scanner status check failed")
            return False
