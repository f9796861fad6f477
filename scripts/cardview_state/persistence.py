"""Persistence façade for the plugin record.

PluginDataStore is the only surface the presentation layer talks to. It
composes parsing, migration, validation, the backup ring and the error
policy into ``load()`` and ``save()``.

Loading produces a tagged outcome (Loaded, Recovered or Defaulted) that is
threaded through ordinary control flow; exceptions are only used for host
I/O failures, which are caught here and never reach the caller.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Optional, TypeVar, Union

from cardview_state.backup import Clock, attempt_recovery, create_backup, now_ms
from cardview_state.errors import (
    ErrorCategory,
    ErrorReporter,
    RetryOptions,
    with_retry,
)
from cardview_state.migration import MigrationResult, migrate_plugin_data
from cardview_state.protocol import (
    BACKUPS_KEY,
    CURRENT_DATA_VERSION,
    SETTINGS_KEY,
    BackupEntry,
    HostStorage,
    PluginData,
    PluginSettings,
    default_data,
    default_settings,
)
from cardview_state.validation import (
    parse_record,
    validate_plugin_data,
    validate_plugin_settings,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

READ_FAILURE_RECOVERED = "Recovered from backup due to data loading error"
READ_FAILURE_DEFAULTED = "Failed to load data, using defaults"
INVALID_RECOVERED = "Data validation failed after migration, recovered from backup"
INVALID_DEFAULTED = "Data validation failed after migration, using defaults"
NOT_A_RECORD = "Stored data is not a record, using defaults"


@dataclass
class LoadResult:
    """What the presentation layer receives from ``load()``."""

    data: PluginData
    migration: MigrationResult


@dataclass
class Loaded:
    """The stored record (possibly migrated) passed validation."""

    data: PluginData
    migration: MigrationResult

    def to_result(self) -> LoadResult:
        return LoadResult(data=self.data, migration=self.migration)


@dataclass
class Recovered:
    """The stored record was unusable; a backup snapshot was restored."""

    data: PluginData
    reason: str
    from_version: int = 0

    def to_result(self) -> LoadResult:
        return LoadResult(
            data=self.data,
            migration=MigrationResult(
                migrated=True,
                to_version=CURRENT_DATA_VERSION,
                from_version=self.from_version,
                warnings=[self.reason],
            ),
        )


@dataclass
class Defaulted:
    """Nothing usable was found; built-in defaults are returned.

    ``reason`` is None for a first run against an empty store.
    """

    reason: Optional[str] = None
    migrated: bool = False
    from_version: Optional[int] = None

    def to_result(self) -> LoadResult:
        return LoadResult(
            data=default_data(),
            migration=MigrationResult(
                migrated=self.migrated,
                to_version=CURRENT_DATA_VERSION,
                from_version=self.from_version,
                warnings=[self.reason] if self.reason else None,
            ),
        )


LoadOutcome = Union[Loaded, Recovered, Defaulted]


def _is_empty(raw: Any) -> bool:
    if raw is None:
        return True
    try:
        return isinstance(raw, Mapping) and len(raw) == 0
    except Exception:
        # Left to parse_record, which rejects it
        return False


def _describe(data: Any) -> str:
    try:
        return json.dumps(data, default=str)[:1000]
    except (TypeError, ValueError):
        return repr(data)[:1000]


class PluginDataStore:
    """Load and save the plugin record through a host storage backend.

    The store keeps the backup ring it last read or wrote; that list is the
    only mutable state here and is replaced, never modified in place. There
    is no locking: callers must serialize ``load``/``save`` calls and
    coalesce rapid saves themselves.

    Attributes:
        storage: The host storage backend.
        reporter: Error reporter owning this store's error history.
        retry: Retry options for host I/O, or None for a single attempt.

    Example:
        store = PluginDataStore(JSONHostStorage(Path("data.json")))
        result = await store.load()
        await store.save(result.data)
    """

    def __init__(
        self,
        storage: HostStorage,
        *,
        reporter: Optional[ErrorReporter] = None,
        retry: Optional[RetryOptions] = None,
        clock: Clock = now_ms,
    ) -> None:
        self.storage = storage
        self.reporter = reporter or ErrorReporter()
        self.retry = retry
        self._clock = clock
        self._backups: list[BackupEntry] = []
        self._settings: Optional[PluginSettings] = None

    @property
    def backups(self) -> list[BackupEntry]:
        """A copy of the backup ring this store currently holds."""
        return list(self._backups)

    async def _io(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.retry is None:
            return await operation()
        return await with_retry(operation, self.retry)

    def _report(self, error: Any, operation: str, **context: Any) -> None:
        self.reporter.handle_error(
            error, ErrorCategory.DATA, {"operation": operation, **context}
        )

    def _merge_settings(
        self, stored: Any, operation: str
    ) -> Optional[PluginSettings]:
        """Merge stored settings over the defaults; None if the result is invalid."""
        merged: dict[str, Any] = dict(default_settings())
        try:
            if isinstance(stored, Mapping):
                merged.update(stored)
            valid = validate_plugin_settings(merged)
        except Exception:
            valid = False
        if not valid:
            self._report(
                "Invalid plugin settings, using defaults",
                operation,
                data=_describe(stored),
            )
            return None
        return merged  # type: ignore[return-value]

    async def load_outcome(self) -> LoadOutcome:
        """Load the stored record and classify what happened."""
        try:
            raw = await self._io(self.storage.load_data)
        except Exception as e:
            self._report(e, "loadPluginData", hasExistingData=bool(self._backups))
            recovery = attempt_recovery(
                {BACKUPS_KEY: self._backups}, reporter=self.reporter
            )
            if recovery.success and recovery.data is not None:
                return Recovered(data=recovery.data, reason=READ_FAILURE_RECOVERED)
            return Defaulted(reason=READ_FAILURE_DEFAULTED)

        if _is_empty(raw):
            return Defaulted()

        parsed = parse_record(raw)
        if parsed is None:
            logger.warning("Stored data is not a record: %s", type(raw).__name__)
            return Defaulted(reason=NOT_A_RECORD)

        self._backups = parsed.backups
        record = parsed.record
        if SETTINGS_KEY in record:
            settings = self._merge_settings(record[SETTINGS_KEY], "loadPluginData")
            if settings is None:
                del record[SETTINGS_KEY]
            else:
                self._settings = settings
                record[SETTINGS_KEY] = dict(settings)

        outcome = migrate_plugin_data(record, parsed.declared_version)
        if validate_plugin_data(outcome.data):
            migration = outcome.migration
            if parsed.dropped_backups:
                warning = f"Discarded {parsed.dropped_backups} malformed backup entries"
                migration.warnings = [*(migration.warnings or []), warning]
            return Loaded(data=outcome.data, migration=migration)  # type: ignore[arg-type]

        logger.warning("Migrated data failed validation: %s", _describe(outcome.data))
        recovery = attempt_recovery(
            {BACKUPS_KEY: parsed.backups}, reporter=self.reporter
        )
        if recovery.success and recovery.data is not None:
            return Recovered(
                data=recovery.data,
                reason=INVALID_RECOVERED,
                from_version=parsed.declared_version,
            )
        return Defaulted(
            reason=INVALID_DEFAULTED,
            migrated=True,
            from_version=parsed.declared_version,
        )

    async def load(self) -> LoadResult:
        """Load the record; never raises.

        Returns:
            The record (without its backups field) and migration info.
        """
        outcome = await self.load_outcome()
        return outcome.to_result()

    async def save(self, data: PluginData) -> bool:
        """Validate, snapshot and write a record.

        Invalid data is rejected before any I/O. The write goes through the
        host once (or under the store's retry policy); partial writes are the
        host's concern.

        Args:
            data: The record to persist.

        Returns:
            True if the record was written.
        """
        if not validate_plugin_data(data):
            self._report(
                "Cannot save invalid plugin data",
                "savePluginData",
                data=_describe(data),
            )
            return False

        source: dict[str, Any] = dict(data)
        if BACKUPS_KEY not in source:
            source[BACKUPS_KEY] = self._backups
        backups = create_backup(source, reporter=self.reporter, clock=self._clock)

        record: dict[str, Any] = dict(data)
        if SETTINGS_KEY not in record and self._settings is not None:
            record[SETTINGS_KEY] = dict(self._settings)
        record["version"] = CURRENT_DATA_VERSION
        record[BACKUPS_KEY] = backups

        try:
            await self._io(lambda: self.storage.save_data(record))
        except Exception as e:
            self._report(e, "savePluginData", backupsCount=len(backups))
            return False

        self._backups = backups
        return True

    async def load_settings(self) -> PluginSettings:
        """Load settings merged over the defaults; never raises."""
        try:
            raw = await self._io(self.storage.load_data)
        except Exception as e:
            self._report(e, "loadPluginSettings")
            return default_settings()

        parsed = parse_record(raw)
        stored = parsed.record.get(SETTINGS_KEY) if parsed is not None else None
        if stored is None:
            return default_settings()

        merged = self._merge_settings(stored, "loadPluginSettings")
        if merged is None:
            return default_settings()

        self._settings = merged
        return dict(merged)  # type: ignore[return-value]

    async def save_settings(self, settings: PluginSettings) -> bool:
        """Merge settings into the stored record and write it."""
        if not validate_plugin_settings(settings):
            self._report(
                "Cannot save invalid settings data",
                "savePluginSettings",
                data=_describe(settings),
            )
            return False

        try:
            existing = await self._io(self.storage.load_data)
            record = dict(existing) if isinstance(existing, Mapping) else {}
            record[SETTINGS_KEY] = dict(settings)
            await self._io(lambda: self.storage.save_data(record))
        except Exception as e:
            self._report(e, "savePluginSettings")
            return False

        self._settings = dict(settings)  # type: ignore[assignment]
        return True

    async def clear(self) -> bool:
        """Erase the stored record and forget the backup ring."""
        try:
            await self._io(lambda: self.storage.save_data({}))
        except Exception as e:
            self._report(e, "clearPluginData")
            return False

        self._backups = []
        self._settings = None
        return True
