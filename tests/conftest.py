"""Shared fixtures for thinker tests."""

from datetime import datetime

import pytest

from thinker.driver.memory import MemoryDriver
from thinker.models.config import SyncSettings
from thinker.sync.models import SyncProgress

SOURCE_DB = "test_thinker_src"
TARGET_DB = "test_thinker_dst"


def iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, keeping its offset."""
    return datetime.fromisoformat(value)


def typed_dataset() -> list[dict]:
    """Six documents mixing numeric and time primary keys with offset-bearing times."""
    return [
        {"id": 1, "test": iso("2017-01-01T00:00:00+00:00")},
        {"id": 2, "test": iso("2017-01-01T00:00:00+03:00")},
        {"id": 3, "test": iso("2017-01-01T00:00:00-07:00")},
        {"id": iso("2017-01-01T00:00:00+00:00"), "test": "UTC"},
        {"id": iso("2017-01-01T00:00:00-07:00"), "test": "UTC-7"},
        {"id": iso("2017-01-01T00:00:00+03:00"), "test": "UTC+3"},
    ]


class RecordingObserver:
    """Progress observer that keeps every report."""

    def __init__(self) -> None:
        self.reports: list[tuple[str, SyncProgress]] = []

    def report(self, table: str, progress: SyncProgress) -> None:
        self.reports.append((table, progress))

    def for_table(self, table: str) -> list[SyncProgress]:
        return [progress for name, progress in self.reports if name == table]


@pytest.fixture
def dataset() -> list[dict]:
    return typed_dataset()


@pytest.fixture
def settings() -> SyncSettings:
    """Small batches and no backoff delay so paging and retries are exercised quickly."""
    return SyncSettings(batch_size=2, write_batch_size=2, workers=2, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def source() -> MemoryDriver:
    driver = MemoryDriver("source")
    driver.databases[SOURCE_DB] = {}
    driver.connected = True
    return driver


@pytest.fixture
def target() -> MemoryDriver:
    driver = MemoryDriver("target")
    driver.databases[TARGET_DB] = {}
    driver.connected = True
    return driver


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()

