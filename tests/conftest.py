"""Pytest configuration and fixtures."""

import asyncio
import copy
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from taskflow.config import Config
from taskflow.dashboard import Dashboard
from taskflow.models import DaySchedule
from taskflow.utils import StorageManager


def ms(year: int, month: int, day: int, hour: int = 0, minute: int = 0, tz: Any = timezone.utc) -> int:
    """Epoch milliseconds for a wall-clock time."""
    return int(datetime(year, month, day, hour, minute, tzinfo=tz).timestamp() * 1000)


def weekly(active_days: range | list[int], start: str = "09:00", end: str = "17:00") -> dict[int, DaySchedule]:
    """Schedule with the given days active (0=Sunday)."""
    return {day: DaySchedule(active=day in active_days, start=start, end=end) for day in range(7)}


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeRemoteStore:
    """In-memory remote document store."""

    def __init__(self) -> None:
        self.documents: dict[str, Any] = {}
        self.replace_calls: list[dict[str, Any]] = []
        self.read_calls = 0
        self.fail_create = False
        self.fail_reads = False
        self.fail_writes = False
        self.read_gate: asyncio.Event | None = None
        self.write_gate: asyncio.Event | None = None
        self._counter = 0

    async def create(self, document: dict[str, Any]) -> str:
        if self.fail_create:
            raise httpx.ConnectError("remote store unreachable")
        self._counter += 1
        document_id = f"doc-{self._counter}"
        self.documents[document_id] = copy.deepcopy(document)
        return document_id

    async def read(self, document_id: str) -> Any:
        self.read_calls += 1
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.fail_reads:
            raise httpx.ConnectError("remote store unreachable")
        if document_id not in self.documents:
            request = httpx.Request("GET", f"https://store.test/{document_id}")
            raise httpx.HTTPStatusError(
                "Not Found", request=request, response=httpx.Response(404, request=request)
            )
        return copy.deepcopy(self.documents[document_id])

    async def replace(self, document_id: str, document: dict[str, Any]) -> None:
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes:
            raise httpx.ConnectError("remote store unreachable")
        self.replace_calls.append(copy.deepcopy(document))
        self.documents[document_id] = copy.deepcopy(document)


@pytest.fixture
def temp_config_dir() -> Path:
    """Create a temporary configuration directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_manager(temp_config_dir: Path) -> StorageManager:
    """Create a storage manager with temporary directory."""
    return StorageManager(temp_config_dir)


@pytest.fixture
def config(temp_config_dir: Path) -> Config:
    """Create a config instance with temporary directory."""
    return Config(temp_config_dir)


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting Monday 2024-01-08 09:00 UTC."""
    return FakeClock(datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def dashboard(storage_manager: StorageManager, clock: FakeClock) -> Dashboard:
    """Create a dashboard backed by the temporary storage."""
    return Dashboard(storage_manager, clock=clock)


@pytest.fixture
def remote() -> FakeRemoteStore:
    """Create an empty in-memory remote store."""
    return FakeRemoteStore()
