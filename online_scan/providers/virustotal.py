"""Asynchronous VirusTotal v3 provider client (requires ``httpx``)."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Union

import httpx

from online_scan.exceptions import (
    ProviderConnectionError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
    RateLimitedError,
)
from online_scan.models import AnalysisStatus, PollResult, ProviderConfig, ScanResult
from online_scan.normalizer import normalize
from online_scan.providers.base import ScanProvider

logger = logging.getLogger(__name__)

_PENDING_STATUSES = frozenset({"queued", "in-progress"})


class VirusTotalProvider(ScanProvider):
    """Client for the VirusTotal v3 file scanning API.

    Args:
        config: Provider settings (API key, base URL, timeout, size limit).
        client: Optional pre-configured :class:`httpx.AsyncClient`.

    Example::

        async with VirusTotalProvider(settings.provider_config()) as vt:
            report = await vt.lookup_by_hash(digest)
    """

    name = "virustotal"

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self._base_url = config.base_url.rstrip("/")
        self._timeout = config.timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def lookup_by_hash(self, digest: str) -> ScanResult | None:
        """Fetch the existing report for *digest* from ``GET /files/{hash}``.

        A 404 means VirusTotal has never seen the content and yields ``None``,
        as does a known file whose analysis has not finished yet.
        """
        resp = await self._request("GET", f"/files/{digest}")
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)

        attributes = self._attributes(resp)
        stats = attributes.get("last_analysis_stats")
        results = attributes.get("last_analysis_results")
        if not stats and not results:
            return None

        scanned_at = _parse_timestamp(attributes.get("last_analysis_date"))
        return self._normalize(resp, stats, results, from_cache=True, scanned_at=scanned_at)

    async def submit(self, file_path: Union[str, Path]) -> str:
        """Upload *file_path* to ``POST /files`` and return the analysis id.

        Raises:
            ScanValidationError: If the file is missing or above the size limit.
        """
        path = Path(file_path)
        self.check_file(path)
        with open(path, "rb") as fh:
            resp = await self._request("POST", "/files", files={"file": (path.name, fh)})
        self._raise_for_status(resp)

        data = self._payload(resp).get("data") or {}
        analysis_id = data.get("id")
        if not analysis_id:
            raise ProviderError("Upload response carried no analysis id", resp.status_code)
        logger.debug("VirusTotal accepted %s as analysis %s", path.name, analysis_id)
        return str(analysis_id)

    async def poll(self, job_id: str) -> PollResult:
        """Read analysis *job_id* from ``GET /analyses/{id}``."""
        resp = await self._request("GET", f"/analyses/{job_id}")
        self._raise_for_status(resp)

        attributes = self._attributes(resp)
        status = attributes.get("status")
        if status == "completed":
            result = self._normalize(
                resp, attributes.get("stats"), attributes.get("results"), from_cache=False
            )
            return PollResult(AnalysisStatus.COMPLETE, result)
        if status in _PENDING_STATUSES:
            return PollResult(AnalysisStatus.PENDING)
        raise ProviderError(f"Unexpected analysis status: {status!r}", resp.status_code)

    async def close(self) -> None:
        """Close the underlying HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self.configured:
            raise ProviderNotConfiguredError("VirusTotal API key is not configured")
        headers = {"x-apikey": self._config.api_key, "Accept": "application/json"}
        try:
            return await self._client.request(
                method,
                f"{self._base_url}{path}",
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except httpx.ConnectError as exc:
            raise ProviderConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(str(exc)) from exc

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.is_success:
            return
        if resp.status_code == 429:
            raise RateLimitedError(
                "VirusTotal quota exceeded",
                retry_after=_parse_retry_after(resp.headers.get("retry-after")),
            )
        try:
            body = resp.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        msg = error.get("message") if isinstance(error, dict) else None
        raise ProviderError(msg or f"HTTP {resp.status_code}: {resp.text}", resp.status_code)

    def _normalize(self, resp: httpx.Response, stats: Any, results: Any, **kwargs: Any) -> ScanResult:
        try:
            return normalize(stats, results, provider_name=self.name, **kwargs)
        except (TypeError, ValueError, AttributeError) as exc:
            raise ProviderError(f"Malformed analysis payload: {exc}", resp.status_code) from exc

    @staticmethod
    def _payload(resp: httpx.Response) -> dict:
        try:
            body = resp.json()
        except ValueError as exc:
            raise ProviderError("Malformed JSON in provider response", resp.status_code) from exc
        if not isinstance(body, dict):
            raise ProviderError("Unexpected provider response shape", resp.status_code)
        return body

    @classmethod
    def _attributes(cls, resp: httpx.Response) -> dict:
        data = cls._payload(resp).get("data")
        if not isinstance(data, dict):
            raise ProviderError("Provider response has no data object", resp.status_code)
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise ProviderError("Provider response has malformed attributes", resp.status_code)
        return attributes


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
