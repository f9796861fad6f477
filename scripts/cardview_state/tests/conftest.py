"""Shared fixtures and utilities for cardview_state tests.

This module provides sample records, an in-memory host storage double with
fault injection, and parameterized file-backed host storages.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Optional

import pytest

from cardview_state.errors import ErrorReporter
from cardview_state.json_backend import JSONHostStorage
from cardview_state.persistence import PluginDataStore
from cardview_state.protocol import BackupEntry, HostStorage, PluginData
from cardview_state.sqlite_backend import SQLiteHostStorage


class InMemoryHostStorage:
    """Host storage double that keeps the record in memory.

    Attributes:
        record: The currently stored record (deep-copied on every read/write).
        reads: Number of load_data calls.
        writes: Records passed to save_data, in order.
        read_errors: Exceptions raised by upcoming load_data calls, in order.
        write_errors: Exceptions raised by upcoming save_data calls, in order.
    """

    def __init__(self, record: Any = None) -> None:
        self.record = copy.deepcopy(record)
        self.reads = 0
        self.writes: list[Any] = []
        self.read_errors: list[BaseException] = []
        self.write_errors: list[BaseException] = []

    async def load_data(self) -> Any:
        self.reads += 1
        if self.read_errors:
            raise self.read_errors.pop(0)
        return copy.deepcopy(self.record)

    async def save_data(self, data: Any) -> None:
        if self.write_errors:
            raise self.write_errors.pop(0)
        self.writes.append(copy.deepcopy(data))
        self.record = copy.deepcopy(data)


class ExplodingMapping(Mapping):
    """Mapping whose every access raises, standing in for hostile host data."""

    def __getitem__(self, key: str) -> Any:
        raise RuntimeError("boom")

    def __iter__(self):
        raise RuntimeError("boom")

    def __len__(self) -> int:
        raise RuntimeError("boom")


class TickingClock:
    """Deterministic millisecond clock advancing by one step per call."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1000) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """Create a temporary plugin data directory for testing.

    Returns:
        Path to a clean temporary directory.
    """
    data_dir = tmp_path / "plugin-data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def valid_data() -> PluginData:
    """Create a valid current-version record without backups.

    Returns:
        A PluginData that passes validate_plugin_data.
    """
    return {
        "version": 1,
        "pinnedNotes": ["Projects/roadmap.md", "Daily/2025-01-01.md"],
        "lastFilters": {
            "folders": ["Projects"],
            "tags": ["work"],
            "filename": "plan",
            "dateRange": {"type": "after", "value": "2025-01-01T00:00:00.000Z"},
        },
        "sortConfig": {"key": "updated", "order": "asc"},
    }


@pytest.fixture
def other_valid_data() -> PluginData:
    """Create a second valid record distinct from valid_data."""
    return {
        "version": 1,
        "pinnedNotes": ["Inbox/idea.md"],
        "lastFilters": {
            "folders": [],
            "tags": ["reading"],
            "filename": "",
            "dateRange": None,
        },
        "sortConfig": {"key": "created", "order": "desc"},
    }


@pytest.fixture
def legacy_data() -> dict[str, Any]:
    """Create an unversioned record as written by old builds."""
    return {
        "pinnedNotes": ["a.md", 42, "b.md", None],
        "lastFilters": {
            "folders": ["Archive"],
            "tags": [],
            "filename": "",
            "dateRange": None,
        },
    }


@pytest.fixture
def make_backup() -> Callable[..., BackupEntry]:
    """Factory for backup entries wrapping a snapshot."""

    def _make(data: Any, timestamp: int = 1_700_000_000_000, version: int = 1) -> BackupEntry:
        return {"timestamp": timestamp, "version": version, "data": copy.deepcopy(data)}

    return _make


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def notices() -> list[tuple[str, int]]:
    """Collected (text, duration_ms) notices."""
    return []


@pytest.fixture
def reporter(notices: list[tuple[str, int]]) -> ErrorReporter:
    """Error reporter recording notices into the notices fixture."""
    return ErrorReporter(notifier=lambda text, duration: notices.append((text, duration)))


@pytest.fixture
def memory_storage() -> InMemoryHostStorage:
    """Create an empty in-memory host storage."""
    return InMemoryHostStorage()


@pytest.fixture
def store(
    memory_storage: InMemoryHostStorage,
    reporter: ErrorReporter,
    clock: TickingClock,
) -> PluginDataStore:
    """Create a store over the in-memory host storage."""
    return PluginDataStore(memory_storage, reporter=reporter, clock=clock)


def make_store(
    record: Any = None,
    *,
    reporter: Optional[ErrorReporter] = None,
    clock: Optional[TickingClock] = None,
) -> tuple[PluginDataStore, InMemoryHostStorage]:
    """Build a store over a fresh in-memory storage seeded with ``record``."""
    storage = InMemoryHostStorage(record)
    store = PluginDataStore(
        storage, reporter=reporter or ErrorReporter(), clock=clock or TickingClock()
    )
    return store, storage


@pytest.fixture(params=["json", "sqlite"])
def host_storage(request, tmp_data_dir: Path) -> HostStorage:
    """Parameterized fixture providing both file-backed host storages.

    Args:
        request: Pytest request object with param.
        tmp_data_dir: Temporary data directory.

    Returns:
        An instance of either JSONHostStorage or SQLiteHostStorage.
    """
    if request.param == "json":
        return JSONHostStorage(tmp_data_dir / "data.json")
    else:
        return SQLiteHostStorage(tmp_data_dir / "data.db")


@pytest.fixture
def json_storage(tmp_data_dir: Path) -> JSONHostStorage:
    """Create a JSON host storage for JSON-specific tests."""
    return JSONHostStorage(tmp_data_dir / "data.json")


@pytest.fixture
def sqlite_storage(tmp_data_dir: Path) -> SQLiteHostStorage:
    """Create a SQLite host storage for SQLite-specific tests."""
    return SQLiteHostStorage(tmp_data_dir / "data.db")
