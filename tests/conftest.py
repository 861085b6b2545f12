"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import EICAR, FakeProvider

from online_scan.dispatcher import ScanDispatcher
from online_scan.providers.base import ProviderRegistry


@pytest.fixture()
def sample_bytes() -> bytes:
    return b"Hello, scanner!"


@pytest.fixture()
def eicar_bytes() -> bytes:
    """EICAR anti-malware test string (safe; every AV recognises it)."""
    return EICAR


@pytest.fixture()
def make_file(tmp_path: Path):
    def _make(name: str, content: bytes = b"clean content") -> Path:
        path = tmp_path / name
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
async def dispatcher(provider: FakeProvider):
    d = ScanDispatcher(
        ProviderRegistry(provider),
        "fake",
        poll_attempts=5,
        poll_delay=0,
        inter_job_delay=0,
        rate_limit_cooldown=0.05,
    )
    yield d
    await d.aclose()
