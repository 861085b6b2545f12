"""Serialized scan dispatcher.

All scans go through one FIFO queue drained by a single task, so at most one
job talks to a provider at any time no matter how many callers enqueue
concurrently.  Each job carries its own future; a slow or failed job only
delays the jobs queued behind it, never the notification of its own caller.

Job lifecycle::

    QUEUED -> CACHE_CHECK -> CACHE_HIT -> DONE
                          -> CACHE_MISS -> SUBMITTING -> POLLING -> DONE
    QUEUED -> RATE_LIMITED -> QUEUED (front of the queue)
    any active state -> FAILED

The queue and the rate-limit state are only touched from the event loop
thread, which is what makes the single-drainer check in :meth:`_ensure_draining`
safe without a lock.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Union

from online_scan.exceptions import (
    DispatcherClosedError,
    OnlineScanError,
    ProviderConnectionError,
    ProviderTimeoutError,
    RateLimitedError,
    ScanTimeoutError,
)
from online_scan.hashing import hash_file_async
from online_scan.models import RateLimitState, ScanResult
from online_scan.providers.base import ProviderRegistry, ScanProvider

logger = logging.getLogger(__name__)

_TRANSIENT_POLL_ERRORS = (ProviderConnectionError, ProviderTimeoutError)


@dataclass(eq=False)
class ScanJob:
    """One queued scan request.

    ``future`` is the job's single-assignment completion cell; only the drain
    loop sets it.
    """

    file_path: str
    provider_name: str
    future: asyncio.Future = field(repr=False)
    enqueued_at: float = field(default_factory=time.time)

    def resolve(self, result: ScanResult) -> None:
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)


class ScanDispatcher:
    """Queue that serializes scan jobs against a shared provider rate budget.

    Construct one per process and share it; every caller that should count
    against the same provider budget must use the same instance.

    Args:
        registry: Providers available to jobs.
        default_provider: Provider used when a scan does not name one.
        poll_attempts: Maximum number of status polls per submitted file.
        poll_delay: Seconds between status polls.
        inter_job_delay: Courtesy pause after each finished job.
        rate_limit_cooldown: Pause after a 429 carrying no ``Retry-After``.
        max_rate_limit_wait: Upper bound on a provider supplied ``Retry-After``;
            defaults to ten times *rate_limit_cooldown*.

    Example::

        dispatcher = ScanDispatcher(ProviderRegistry(VirusTotalProvider(cfg)))
        result = await dispatcher.scan("/srv/uploads/report.pdf")
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        default_provider: str = "virustotal",
        *,
        poll_attempts: int = 30,
        poll_delay: float = 5.0,
        inter_job_delay: float = 1.0,
        rate_limit_cooldown: float = 60.0,
        max_rate_limit_wait: float | None = None,
    ) -> None:
        if poll_attempts < 1:
            raise ValueError("poll_attempts must be at least 1")
        self._registry = registry
        self._default_provider = default_provider
        self._poll_attempts = poll_attempts
        self._poll_delay = poll_delay
        self._inter_job_delay = inter_job_delay
        self._rate_limit_cooldown = rate_limit_cooldown
        self._max_rate_limit_wait = (
            max_rate_limit_wait if max_rate_limit_wait is not None else 10 * rate_limit_cooldown
        )

        self._queue: collections.deque[ScanJob] = collections.deque()
        self._rate_limit = RateLimitState()
        self._processing = False
        self._closed = False
        self._task: asyncio.Task | None = None

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def default_provider(self) -> str:
        return self._default_provider

    @property
    def queue_size(self) -> int:
        """Jobs waiting to be started (the running job is not counted)."""
        return len(self._queue)

    @property
    def processing(self) -> bool:
        return self._processing

    async def scan(self, file_path: Union[str, Path], provider: str | None = None) -> ScanResult:
        """Queue *file_path* and wait for its verdict.

        Raises:
            UnsupportedProviderError: If *provider* is not registered.
            DispatcherClosedError: If the dispatcher has been closed.
            ScanValidationError: If the file is missing or too large.
            ProviderError: On a non-retryable provider failure.
            ScanTimeoutError: If the analysis did not finish within the poll budget.
        """
        job = self.enqueue(file_path, provider)
        # Shielded: a cancelled caller must not cancel the job itself.
        return await asyncio.shield(job.future)

    def enqueue(self, file_path: Union[str, Path], provider: str | None = None) -> ScanJob:
        """Queue a job without waiting for it; await ``job.future`` for the result."""
        if self._closed:
            raise DispatcherClosedError("Scan dispatcher is closed")
        provider_name = (provider or self._default_provider).lower()
        self._registry.get(provider_name)

        job = ScanJob(
            file_path=str(file_path),
            provider_name=provider_name,
            future=asyncio.get_running_loop().create_future(),
        )
        self._queue.append(job)
        logger.debug("Queued %s for %s (queue size %d)", job.file_path, provider_name, len(self._queue))
        self._ensure_draining()
        return job

    async def aclose(self) -> None:
        """Stop the drain task and fail every unresolved job."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._fail_pending(DispatcherClosedError("Scan dispatcher closed before the job ran"))

    async def __aenter__(self) -> ScanDispatcher:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------

    def _ensure_draining(self) -> None:
        if self._processing:
            return
        self._processing = True
        self._task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        current: ScanJob | None = None
        try:
            while self._queue:
                wait = self._rate_limit.remaining(time.monotonic())
                if wait > 0:
                    logger.info("Provider rate limit reached, waiting %.1fs", wait)
                    await asyncio.sleep(wait)

                current = self._queue.popleft()
                try:
                    result = await self._run(current)
                except RateLimitedError as exc:
                    cooldown = self._cooldown_for(exc)
                    self._queue.appendleft(current)
                    self._rate_limit.trip(time.monotonic(), cooldown)
                    logger.warning(
                        "Rate limited while scanning %s, retrying in %.1fs", current.file_path, cooldown
                    )
                    current = None
                    continue
                except Exception as exc:
                    logger.error("Scan failed for %s: %s", current.file_path, exc)
                    current.reject(exc)
                else:
                    current.resolve(result)
                current = None

                await asyncio.sleep(self._inter_job_delay)
        except asyncio.CancelledError:
            if current is not None:
                current.reject(DispatcherClosedError("Scan dispatcher closed while the job was running"))
            raise
        finally:
            self._processing = False

    def _cooldown_for(self, exc: RateLimitedError) -> float:
        if exc.retry_after is None:
            return self._rate_limit_cooldown
        return min(exc.retry_after, self._max_rate_limit_wait)

    async def _run(self, job: ScanJob) -> ScanResult:
        provider = self._registry.get(job.provider_name)
        path = Path(job.file_path)
        provider.check_file(path)

        logger.info("Scanning %s with %s", path.name, provider.name)
        digest = await hash_file_async(path)
        logger.debug("SHA-256 of %s is %s", path.name, digest)

        try:
            cached = await provider.lookup_by_hash(digest)
        except RateLimitedError:
            raise
        except OnlineScanError as exc:
            logger.warning("Report lookup for %s failed, rescanning: %s", path.name, exc)
            cached = None

        if cached is not None:
            logger.info("Using cached report for %s", path.name)
            return replace(cached, file_path=job.file_path)

        logger.info("Uploading %s to %s", path.name, provider.name)
        job_id = await provider.submit(path)
        result = await self._wait_for_completion(provider, job_id)
        logger.info(
            "Scan of %s finished: %s",
            path.name,
            "threats detected" if result.is_infected else "clean",
        )
        return replace(result, file_path=job.file_path)

    async def _wait_for_completion(self, provider: ScanProvider, job_id: str) -> ScanResult:
        for attempt in range(1, self._poll_attempts + 1):
            try:
                status = await provider.poll(job_id)
            except _TRANSIENT_POLL_ERRORS as exc:
                logger.warning("Poll %d/%d for %s failed: %s", attempt, self._poll_attempts, job_id, exc)
            else:
                if status.complete:
                    return replace(status.result, attempts=attempt)
                logger.debug("Analysis %s pending, poll %d/%d", job_id, attempt, self._poll_attempts)
            if attempt < self._poll_attempts:
                await asyncio.sleep(self._poll_delay)
        raise ScanTimeoutError(self._poll_attempts, self._poll_attempts * self._poll_delay)

    def _fail_pending(self, exc: OnlineScanError) -> None:
        while self._queue:
            self._queue.popleft().reject(exc)

