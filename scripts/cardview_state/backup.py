"""Rolling backups of the plugin record and recovery from them.

The ring holds up to MAX_BACKUPS snapshots, newest first. Every snapshot is a
complete record on its own, so recovery can restore any single entry without
looking at the others. All functions return new lists and never mutate their
inputs.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from cardview_state.errors import ErrorCategory, ErrorReporter
from cardview_state.protocol import (
    BACKUPS_KEY,
    MAX_BACKUPS,
    SETTINGS_KEY,
    BackupEntry,
    PluginData,
)
from cardview_state.validation import validate_plugin_data

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


@dataclass
class RecoveryResult:
    """Outcome of a recovery attempt; ``data`` is None unless ``success``."""

    success: bool
    data: Optional[PluginData] = None


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def _copy_strings(value: Any, name: str) -> list[str]:
    if not isinstance(value, list):
        raise TypeError(f"{name} must be a list, got {type(value).__name__}")
    for item in value:
        if not isinstance(item, str):
            raise TypeError(f"{name} may only contain strings")
    return list(value)


def _copy_scalar(value: Any, name: str, kinds: tuple[type, ...]) -> Any:
    if not isinstance(value, kinds):
        raise TypeError(f"{name} has unsupported type {type(value).__name__}")
    return value


def _copy_filter_state(filters: Mapping[str, Any]) -> dict[str, Any]:
    copied: dict[str, Any] = {
        "folders": _copy_strings(filters["folders"], "lastFilters.folders"),
        "tags": _copy_strings(filters["tags"], "lastFilters.tags"),
        "filename": _copy_scalar(filters["filename"], "lastFilters.filename", (str,)),
        "dateRange": None,
    }
    date_range = filters.get("dateRange")
    if date_range is not None:
        copied["dateRange"] = {
            "type": _copy_scalar(date_range["type"], "dateRange.type", (str,)),
            # dates and strings are immutable
            "value": _copy_scalar(date_range["value"], "dateRange.value", (str, date)),
        }
    for name in ("excludeFolders", "excludeTags", "excludeFilenames"):
        if filters.get(name) is not None:
            copied[name] = _copy_strings(filters[name], f"lastFilters.{name}")
    return copied


def copy_plugin_data(data: Mapping[str, Any]) -> PluginData:
    """Copy the known fields of a record, leaving out its backups.

    The copy is derived from the schema, so every field it produces is a
    fresh list/dict of immutable values. Unknown fields are not carried into
    snapshots.

    Args:
        data: A record that passes validate_plugin_data.

    Returns:
        An independent copy of the record without ``backups``.

    Raises:
        TypeError: If a known field holds a value outside the schema.
        KeyError: If a required field is missing.
    """
    sort_config = data["sortConfig"]
    copied: dict[str, Any] = {
        "pinnedNotes": _copy_strings(data["pinnedNotes"], "pinnedNotes"),
        "lastFilters": _copy_filter_state(data["lastFilters"]),
        "sortConfig": {
            "key": _copy_scalar(sort_config["key"], "sortConfig.key", (str,)),
            "order": _copy_scalar(sort_config["order"], "sortConfig.order", (str,)),
        },
    }
    if "version" in data:
        copied["version"] = _copy_scalar(data["version"], "version", (int, float))
    settings = data.get(SETTINGS_KEY)
    if isinstance(settings, Mapping):
        copied[SETTINGS_KEY] = {
            key: _copy_scalar(settings[key], f"settings.{key}", (str, bool))
            for key in ("sortKey", "autoStart", "showInSidebar")
            if key in settings
        }
    return copied  # type: ignore[return-value]


def _existing_backups(data: Mapping[str, Any]) -> list[BackupEntry]:
    backups = data.get(BACKUPS_KEY)
    if not isinstance(backups, list):
        return []
    return list(backups)


def create_backup(
    data: Mapping[str, Any],
    *,
    reporter: Optional[ErrorReporter] = None,
    clock: Clock = now_ms,
) -> list[BackupEntry]:
    """Snapshot a valid record and return the updated backup ring.

    The new entry goes first and the ring is cut to MAX_BACKUPS entries,
    dropping the oldest. If the snapshot cannot be taken the previous ring is
    returned unchanged and the failure is reported; this never raises.

    Args:
        data: A valid record, optionally carrying its current ring.
        reporter: Where to report snapshot failures.
        clock: Millisecond clock used for the entry timestamp.

    Returns:
        A new list of backup entries, newest first.
    """
    existing = _existing_backups(data)
    try:
        version = data.get("version") or 0
        entry: BackupEntry = {
            "timestamp": clock(),
            "version": int(version),
            "data": copy_plugin_data(data),
        }
    except (TypeError, KeyError, ValueError) as e:
        context = {
            "operation": "createBackup",
            "dataVersion": data.get("version"),
            "existingBackupsCount": len(existing),
        }
        (reporter or ErrorReporter()).handle_error(e, ErrorCategory.DATA, context)
        return existing

    return [entry, *existing][:MAX_BACKUPS]


def _restorable_snapshot(entry: Any) -> Optional[Mapping[str, Any]]:
    """Return the entry's snapshot if it is valid, else None."""
    try:
        if not isinstance(entry, Mapping):
            return None
        snapshot = entry.get("data")
        if snapshot is not None and validate_plugin_data(snapshot):
            return snapshot
    except Exception as e:
        logger.warning("Skipping unreadable backup entry: %s", e)
    return None


def attempt_recovery(
    container: Any, *, reporter: Optional[ErrorReporter] = None
) -> RecoveryResult:
    """Restore the newest valid snapshot from a record's backup ring.

    Entries are scanned in stored (newest first) order and the first one
    whose data passes validate_plugin_data wins; malformed entries are
    skipped. A missing or empty ring, or one with no valid entry, yields a
    failed result rather than an exception.

    Args:
        container: A record (or any mapping) holding a ``backups`` list.
        reporter: Where to report unexpected failures while scanning.

    Returns:
        A RecoveryResult with an independent copy of the recovered data.
    """
    try:
        if not isinstance(container, Mapping):
            return RecoveryResult(success=False)
        backups = container.get(BACKUPS_KEY)
        if not isinstance(backups, list) or not backups:
            return RecoveryResult(success=False)

        for index, entry in enumerate(backups):
            snapshot = _restorable_snapshot(entry)
            if snapshot is not None:
                logger.info("Recovered record from backup entry %d", index)
                return RecoveryResult(success=True, data=copy_plugin_data(snapshot))
        return RecoveryResult(success=False)
    except Exception as e:
        context = {"operation": "attemptRecovery"}
        (reporter or ErrorReporter()).handle_error(e, ErrorCategory.DATA, context)
        return RecoveryResult(success=False)
