"""Tests for the serialized scan dispatcher."""

from __future__ import annotations

import asyncio
import time

import pytest
from fakes import FakeProvider, clean_result, infected_result

from online_scan.dispatcher import ScanDispatcher
from online_scan.exceptions import (
    DispatcherClosedError,
    ProviderConnectionError,
    ProviderError,
    RateLimitedError,
    ScanTimeoutError,
    ScanValidationError,
    UnsupportedProviderError,
)
from online_scan.hashing import hash_file
from online_scan.providers.base import ProviderRegistry


def _dispatcher(provider: FakeProvider, **overrides) -> ScanDispatcher:
    options = dict(poll_attempts=5, poll_delay=0, inter_job_delay=0, rate_limit_cooldown=0.05)
    options.update(overrides)
    return ScanDispatcher(ProviderRegistry(provider), "fake", **options)


class TestCacheCheck:
    async def test_cache_hit_skips_upload(self, dispatcher, provider, make_file):
        path = make_file("seen.txt")
        provider.reports[hash_file(path)] = clean_result(from_cache=True)

        result = await dispatcher.scan(path)

        assert result.from_cache is True
        assert result.file_path == str(path)
        assert provider.ops("submit") == []
        assert provider.ops("poll") == []

    async def test_cache_miss_uploads_and_polls(self, dispatcher, provider, make_file):
        path = make_file("new.exe")
        provider.verdicts["new.exe"] = infected_result(3)

        result = await dispatcher.scan(path)

        assert result.is_infected is True
        assert result.malicious_count == 3
        assert result.from_cache is False
        assert result.attempts == 1
        assert provider.ops("lookup") == [hash_file(path)]
        assert provider.ops("submit") == ["new.exe"]

    async def test_lookup_error_falls_back_to_rescan(self, dispatcher, provider, make_file):
        path = make_file("flaky.txt")
        provider.errors["lookup"] = [ProviderError("HTTP 500", 500)]

        result = await dispatcher.scan(path)

        assert result.is_infected is False
        assert provider.ops("submit") == ["flaky.txt"]


class TestValidation:
    async def test_oversize_file_rejected_without_network(self, dispatcher, provider, make_file):
        path = make_file("big.bin", b"x" * 2048)

        with pytest.raises(ScanValidationError, match="too large"):
            await dispatcher.scan(path)
        assert provider.calls == []

    async def test_missing_file_rejected(self, dispatcher, provider, tmp_path):
        with pytest.raises(ScanValidationError):
            await dispatcher.scan(tmp_path / "gone.txt")
        assert provider.calls == []

    async def test_unknown_provider_rejected_before_queueing(self, dispatcher, make_file):
        with pytest.raises(UnsupportedProviderError):
            await dispatcher.scan(make_file("a.txt"), provider="metadefender")
        assert dispatcher.queue_size == 0
        assert dispatcher.processing is False


class TestPolling:
    async def test_waits_for_pending_analysis(self, provider, make_file):
        provider.pending_polls = 2
        async with _dispatcher(provider) as d:
            result = await d.scan(make_file("slow.txt"))
        assert result.attempts == 3
        assert len(provider.ops("poll")) == 3

    async def test_never_completing_analysis_times_out(self, provider, make_file):
        provider.pending_polls = None
        async with _dispatcher(provider, poll_attempts=4, poll_delay=0.01) as d:
            with pytest.raises(ScanTimeoutError) as info:
                await d.scan(make_file("stuck.txt"))
        assert info.value.attempts == 4
        assert len(provider.ops("poll")) == 4

    async def test_transient_poll_error_consumes_an_attempt(self, provider, make_file):
        provider.errors["poll"] = [ProviderConnectionError("reset by peer")]
        async with _dispatcher(provider) as d:
            result = await d.scan(make_file("retry.txt"))
        assert result.attempts == 2

    async def test_protocol_error_fails_job(self, dispatcher, provider, make_file):
        provider.errors["poll"] = [ProviderError("Unexpected analysis status: 'failed'")]
        with pytest.raises(ProviderError, match="failed"):
            await dispatcher.scan(make_file("bad.txt"))
        assert len(provider.ops("poll")) == 1


class TestRateLimiting:
    async def test_rate_limited_job_keeps_its_place(self, provider, make_file):
        first, second = make_file("first.txt", b"1"), make_file("second.txt", b"2")
        provider.errors["submit"] = [RateLimitedError(retry_after=0.1)]

        async with _dispatcher(provider) as d:
            results = await asyncio.gather(d.scan(first), d.scan(second))

        assert [r.file_path for r in results] == [str(first), str(second)]
        assert provider.ops("submit") == ["first.txt", "first.txt", "second.txt"]

    async def test_no_provider_calls_before_reset(self, provider, make_file):
        stamps: list[float] = []
        original = provider.lookup_by_hash

        async def timed_lookup(digest):
            stamps.append(time.monotonic())
            return await original(digest)

        provider.lookup_by_hash = timed_lookup  # type: ignore[method-assign]
        provider.errors["lookup"] = [RateLimitedError(retry_after=0.2)]

        async with _dispatcher(provider) as d:
            await asyncio.gather(d.scan(make_file("a.txt", b"a")), d.scan(make_file("b.txt", b"b")))

        assert len(stamps) == 3
        assert stamps[1] - stamps[0] >= 0.19

    async def test_missing_hint_uses_configured_cooldown(self, provider, make_file):
        provider.errors["poll"] = [RateLimitedError()]
        async with _dispatcher(provider, rate_limit_cooldown=0.1) as d:
            started = time.monotonic()
            result = await d.scan(make_file("c.txt"))
            assert time.monotonic() - started >= 0.09
        assert result.is_infected is False

    async def test_rate_limit_is_transparent_to_caller(self, dispatcher, provider, make_file):
        provider.errors["lookup"] = [RateLimitedError(retry_after=0.01)]
        result = await dispatcher.scan(make_file("d.txt"))
        assert result.is_infected is False
        assert len(provider.ops("lookup")) == 2

    @pytest.mark.parametrize("hint", [1e9, float("inf")])
    async def test_oversized_hint_is_capped(self, provider, make_file, hint: float):
        provider.errors["lookup"] = [RateLimitedError(retry_after=hint)]
        async with _dispatcher(provider, rate_limit_cooldown=0.01) as d:
            result = await asyncio.wait_for(d.scan(make_file("e.txt")), timeout=5)
        assert result.is_infected is False
        assert len(provider.ops("lookup")) == 2

    async def test_explicit_wait_cap(self, provider, make_file):
        provider.errors["submit"] = [RateLimitedError(retry_after=3600)]
        async with _dispatcher(provider, max_rate_limit_wait=0.05) as d:
            started = time.monotonic()
            await asyncio.wait_for(d.scan(make_file("f.txt")), timeout=5)
            elapsed = time.monotonic() - started
        assert 0.04 <= elapsed < 5
        assert provider.ops("submit") == ["f.txt", "f.txt"]


class TestSerialization:
    async def test_one_job_at_a_time(self, provider, make_file):
        active = 0
        peak = 0
        original = provider.submit

        async def slow_submit(path):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            try:
                return await original(path)
            finally:
                active -= 1

        provider.submit = slow_submit  # type: ignore[method-assign]
        paths = [make_file(f"f{i}.txt", bytes([i])) for i in range(5)]

        async with _dispatcher(provider) as d:
            results = await asyncio.gather(*(d.scan(p) for p in paths))

        assert peak == 1
        assert [r.file_path for r in results] == [str(p) for p in paths]
        assert provider.ops("submit") == [p.name for p in paths]

    async def test_every_job_resolves_exactly_once(self, provider, make_file):
        provider.errors["submit"] = [ProviderError("boom")]
        paths = [make_file(f"g{i}.txt", bytes([i])) for i in range(3)]

        async with _dispatcher(provider) as d:
            outcomes = await asyncio.gather(*(d.scan(p) for p in paths), return_exceptions=True)

        assert isinstance(outcomes[0], ProviderError)
        assert [o.file_path for o in outcomes[1:]] == [str(p) for p in paths[1:]]

    async def test_single_drain_task_for_concurrent_enqueues(self, dispatcher, make_file):
        jobs = [dispatcher.enqueue(make_file("h0.txt", b"0"))]
        task = dispatcher._task
        jobs += [dispatcher.enqueue(make_file(f"h{i}.txt", bytes([i]))) for i in (1, 2)]

        assert dispatcher.processing is True
        assert dispatcher._task is task
        assert dispatcher.queue_size == 3
        await asyncio.gather(*(job.future for job in jobs))

    async def test_loop_goes_idle_and_restarts(self, dispatcher, make_file):
        await dispatcher.scan(make_file("one.txt", b"1"))
        await asyncio.sleep(0.01)
        assert dispatcher.processing is False
        assert dispatcher.queue_size == 0

        result = await dispatcher.scan(make_file("two.txt", b"2"))
        assert result.is_infected is False

    async def test_cancelled_caller_does_not_cancel_job(self, provider, make_file):
        provider.pending_polls = 3
        async with _dispatcher(provider, poll_delay=0.01) as d:
            waiter = asyncio.ensure_future(d.scan(make_file("x.txt", b"x")))
            await asyncio.sleep(0.005)
            waiter.cancel()
            result = await d.scan(make_file("y.txt", b"y"))
        assert result.file_path.endswith("y.txt")
        assert provider.ops("submit") == ["x.txt", "y.txt"]


class TestClose:
    async def test_pending_jobs_fail_on_close(self, provider, make_file):
        provider.pending_polls = None
        d = _dispatcher(provider, poll_attempts=100, poll_delay=0.01)
        running = d.enqueue(make_file("r.txt", b"r"))
        waiting = d.enqueue(make_file("w.txt", b"w"))
        await asyncio.sleep(0.02)

        await d.aclose()

        with pytest.raises(DispatcherClosedError):
            await running.future
        with pytest.raises(DispatcherClosedError):
            await waiting.future
        assert d.processing is False

    async def test_enqueue_after_close_raises(self, provider, make_file):
        d = _dispatcher(provider)
        await d.aclose()
        with pytest.raises(DispatcherClosedError):
            await d.scan(make_file("late.txt"))
