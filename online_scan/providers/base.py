"""Provider client interface and the name-keyed provider registry.

A provider wraps the wire protocol of one external scanning service.  Every
network call spends one unit of that service's rate budget; spacing the
calls out is the dispatcher's job, not the provider's.
"""

from __future__ import annotations

import abc
import os
from pathlib import Path
from typing import Union

from online_scan.exceptions import ScanValidationError, UnsupportedProviderError
from online_scan.models import PollResult, ProviderConfig, ScanResult


class ScanProvider(abc.ABC):
    """Abstract base class for scanning service clients.

    Args:
        config: Static provider settings.
    """

    #: Registry key of the provider.
    name: str = ""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def configured(self) -> bool:
        """``True`` when an API key is available."""
        return bool(self._config.api_key)

    def check_file(self, file_path: Union[str, Path]) -> int:
        """Validate *file_path* for upload without touching the network.

        Returns:
            The file size in bytes.

        Raises:
            ScanValidationError: If the path is missing, not a regular file,
                or larger than ``max_file_size``.
        """
        path = Path(file_path)
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise ScanValidationError(f"File not readable: {path} ({exc.strerror})") from exc
        if not path.is_file():
            raise ScanValidationError(f"Not a regular file: {path}")
        if not os.access(path, os.R_OK):
            raise ScanValidationError(f"File not readable: {path}")
        if size > self._config.max_file_size:
            raise ScanValidationError(
                f"File too large: {size} > {self._config.max_file_size} bytes"
            )
        return size

    @abc.abstractmethod
    async def lookup_by_hash(self, digest: str) -> ScanResult | None:
        """Return the provider's existing report for *digest*.

        Returns:
            A cached :class:`ScanResult` with ``from_cache=True``, or
            ``None`` when the provider has no report for this content.

        Raises:
            RateLimitedError: On a rate-limit rejection.
            ProviderError: On any other failure.
        """

    @abc.abstractmethod
    async def submit(self, file_path: Union[str, Path]) -> str:
        """Upload *file_path* for analysis and return the provider's job id.

        Implementations call :meth:`check_file` before uploading.

        Raises:
            ScanValidationError: If the file fails :meth:`check_file`.
            RateLimitedError: On a rate-limit rejection.
            ProviderError: On any other failure.
        """

    @abc.abstractmethod
    async def poll(self, job_id: str) -> PollResult:
        """Return the current status of analysis *job_id*.

        Raises:
            RateLimitedError: On a rate-limit rejection.
            ProviderError: On any other failure.
        """

    async def close(self) -> None:
        """Release network resources held by the provider."""

    async def __aenter__(self) -> ScanProvider:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


class ProviderRegistry:
    """Maps provider names to :class:`ScanProvider` instances.

    Example::

        registry = ProviderRegistry()
        registry.register(VirusTotalProvider(config))
        provider = registry.get("virustotal")
    """

    def __init__(self, *providers: ScanProvider) -> None:
        self._providers: dict[str, ScanProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ScanProvider) -> None:
        if not provider.name:
            raise ValueError(f"{type(provider).__name__} has no provider name")
        self._providers[provider.name.lower()] = provider

    def get(self, name: str) -> ScanProvider:
        try:
            return self._providers[name.lower()]
        except KeyError:
            raise UnsupportedProviderError(f"Unsupported scan provider: {name}") from None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._providers

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.close()
