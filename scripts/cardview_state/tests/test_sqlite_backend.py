"""Tests for SQLiteHostStorage.

This module tests the SQLite single-record host storage, verifying:
- Schema creation and WAL mode
- Upserting and reading the single record
- Corrupt payload detection and transactional writes
- Cross-backend compliance of the async HostStorage surface
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from cardview_state.persistence import PluginDataStore
from cardview_state.protocol import HostStorage, PluginData, RecordReadError
from cardview_state.sqlite_backend import SQLiteHostStorage, utc_iso_timestamp


# =============================================================================
# TestSchemaCreation
# =============================================================================


class TestSchemaCreation:
    """Tests for database schema initialization."""

    def test_should_create_table_on_init(
        self, sqlite_storage: SQLiteHostStorage
    ) -> None:
        """Verify __init__ creates the record table."""
        conn = sqlite3.connect(str(sqlite_storage.db_path))
        cursor = conn.cursor()
        cursor.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='plugin_record'"
        )
        assert cursor.fetchone() is not None
        conn.close()

    def test_should_handle_existing_database(self, tmp_data_dir: Path) -> None:
        """Verify schema creation is idempotent."""
        db_path = tmp_data_dir / "data.db"
        first = SQLiteHostStorage(db_path)
        second = SQLiteHostStorage(db_path)
        assert first.db_path == second.db_path

    def test_should_create_parent_directory(
        self, tmp_data_dir: Path, valid_data: PluginData
    ) -> None:
        """Verify nested parent directories are created."""
        deep_path = tmp_data_dir / "nested" / "dir" / "data.db"
        storage = SQLiteHostStorage(deep_path)

        assert deep_path.parent.exists()
        storage.write_record(valid_data)
        assert storage.read_record() == valid_data

    def test_should_enable_wal_mode(self, sqlite_storage: SQLiteHostStorage) -> None:
        """Verify the database uses WAL journal mode."""
        conn = sqlite3.connect(str(sqlite_storage.db_path))
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert mode.upper() == "WAL"


# =============================================================================
# TestReadWriteRecord
# =============================================================================


class TestReadWriteRecord:
    """Tests for read_record and write_record."""

    def test_should_return_none_for_empty_database(
        self, sqlite_storage: SQLiteHostStorage
    ) -> None:
        """Verify a fresh database reads as nothing stored."""
        assert sqlite_storage.read_record() is None

    def test_should_keep_a_single_row(
        self,
        sqlite_storage: SQLiteHostStorage,
        valid_data: PluginData,
        other_valid_data: PluginData,
    ) -> None:
        """Verify repeated writes replace the one stored record."""
        sqlite_storage.write_record(valid_data)
        sqlite_storage.write_record(other_valid_data)

        conn = sqlite3.connect(str(sqlite_storage.db_path))
        count = conn.execute("SELECT COUNT(*) FROM plugin_record").fetchone()[0]
        conn.close()

        assert count == 1
        assert sqlite_storage.read_record() == other_valid_data

    def test_should_stamp_updated_at(
        self, sqlite_storage: SQLiteHostStorage, valid_data: PluginData
    ) -> None:
        """Verify each write records an ISO 8601 UTC timestamp."""
        sqlite_storage.write_record(valid_data)

        conn = sqlite3.connect(str(sqlite_storage.db_path))
        updated_at = conn.execute(
            "SELECT updated_at FROM plugin_record WHERE id = 1"
        ).fetchone()[0]
        conn.close()

        assert updated_at.endswith("Z")
        assert len(updated_at) == len(utc_iso_timestamp())

    def test_should_preserve_unicode_content(
        self, sqlite_storage: SQLiteHostStorage
    ) -> None:
        """Verify non-ASCII note paths survive a round trip."""
        record = {"pinnedNotes": ["日記/今日.md", "Заметки.md", "🎉.md"]}
        sqlite_storage.write_record(record)
        assert sqlite_storage.read_record() == record

    def test_should_raise_for_corrupt_payload(
        self, sqlite_storage: SQLiteHostStorage
    ) -> None:
        """Verify an undecodable payload raises RecordReadError."""
        conn = sqlite3.connect(str(sqlite_storage.db_path))
        conn.execute(
            "INSERT INTO plugin_record (id, payload, updated_at) VALUES (1, ?, ?)",
            ("{broken", "2025-01-01T00:00:00.000Z"),
        )
        conn.commit()
        conn.close()

        with pytest.raises(RecordReadError, match="corrupt"):
            sqlite_storage.read_record()

    def test_should_leave_record_intact_on_serialization_error(
        self, sqlite_storage: SQLiteHostStorage, valid_data: PluginData
    ) -> None:
        """Verify an unserializable record never touches the database."""
        sqlite_storage.write_record(valid_data)

        with pytest.raises(TypeError):
            sqlite_storage.write_record({"bad": object()})

        assert sqlite_storage.read_record() == valid_data

    def test_should_rollback_on_database_error(
        self, sqlite_storage: SQLiteHostStorage, valid_data: PluginData
    ) -> None:
        """Verify a failing upsert rolls back and re-raises."""
        sqlite_storage.write_record(valid_data)

        with patch(
            "cardview_state.sqlite_backend.UPSERT_SQL",
            "INSERT INTO plugin_record (id, payload, updated_at) VALUES (1, ?, ?)",
        ):
            with pytest.raises(sqlite3.IntegrityError):
                sqlite_storage.write_record({"pinnedNotes": []})

        assert sqlite_storage.read_record() == valid_data


# =============================================================================
# TestCrossBackendCompliance
# =============================================================================


class TestCrossBackendCompliance:
    """Cross-backend compliance tests using parameterized fixtures."""

    def test_should_return_none_on_first_load(self, host_storage: HostStorage) -> None:
        """Verify both backends start empty."""
        assert asyncio.run(host_storage.load_data()) is None

    def test_should_persist_saved_record(
        self, host_storage: HostStorage, valid_data: PluginData
    ) -> None:
        """Verify save_data then load_data returns the record."""
        asyncio.run(host_storage.save_data(valid_data))
        assert asyncio.run(host_storage.load_data()) == valid_data

    def test_should_round_trip_through_store(
        self, host_storage: HostStorage, valid_data: PluginData
    ) -> None:
        """Verify the façade round-trips through real files."""
        store = PluginDataStore(host_storage)
        assert asyncio.run(store.save(valid_data)) is True

        result = asyncio.run(PluginDataStore(host_storage).load())

        assert result.data == valid_data
        assert result.migration.migrated is False

    def test_should_recover_after_corruption_within_session(
        self, host_storage: HostStorage, valid_data: PluginData
    ) -> None:
        """Verify a store restores its last snapshot when the record turns unreadable."""
        store = PluginDataStore(host_storage)
        asyncio.run(store.save(valid_data))

        with patch.object(
            type(host_storage), "read_record", side_effect=RecordReadError("corrupt")
        ):
            result = asyncio.run(store.load())

        assert result.data == valid_data
        assert result.migration.migrated is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
