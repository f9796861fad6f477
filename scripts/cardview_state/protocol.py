"""Protocols and type definitions for the persisted plugin record.

This module defines the shapes stored by the host (as plain JSON-compatible
dicts), the built-in defaults, and the interface every host storage backend
must implement.
"""

from __future__ import annotations

import copy
from datetime import date
from typing import Any, Literal, Protocol, TypedDict, Union

# Current persisted schema version. Bump by 1 for breaking changes to
# PluginData and register a migration step for the old version.
CURRENT_DATA_VERSION: int = 1

# Maximum number of snapshots kept in the backup ring.
MAX_BACKUPS: int = 3

BACKUPS_KEY: str = "backups"
SETTINGS_KEY: str = "settings"


class DateRange(TypedDict):
    """Date filter applied to note modification times.

    Attributes:
        type: "within" (modified within a window ending now) or "after"
            (modified after the cutoff).
        value: A date/datetime or a date string.
    """

    type: Literal["within", "after"]
    value: Union[date, str]


class _FilterExclusions(TypedDict, total=False):
    excludeFolders: list[str]
    excludeTags: list[str]
    excludeFilenames: list[str]


class FilterState(_FilterExclusions):
    """Last used filter configuration.

    Attributes:
        folders: Folder prefixes to include (empty means all).
        tags: Tag prefixes to include (empty means all).
        filename: Case-insensitive filename substring.
        dateRange: Optional date filter, None when disabled.
        excludeFolders: Folder prefixes to exclude.
        excludeTags: Tag prefixes to exclude.
        excludeFilenames: Filename substrings to exclude.
    """

    folders: list[str]
    tags: list[str]
    filename: str
    dateRange: DateRange | None


class SortConfig(TypedDict):
    """Sort configuration: a frontmatter key (or "updated") and an order."""

    key: str
    order: Literal["asc", "desc"]


class PluginSettings(TypedDict):
    """User-configurable settings, nested in the record under "settings".

    Attributes:
        sortKey: Frontmatter key used for default sorting.
        autoStart: Open the view when the host starts.
        showInSidebar: Open in the sidebar instead of the main area.
    """

    sortKey: str
    autoStart: bool
    showInSidebar: bool


class _PluginDataOptional(TypedDict, total=False):
    version: int
    backups: list[BackupEntry]
    settings: PluginSettings


class PluginData(_PluginDataOptional):
    """The single record persisted by the host.

    Attributes:
        pinnedNotes: Ordered note paths pinned to the top of the grid.
        lastFilters: Last used filter configuration.
        sortConfig: Last used sort configuration.
        version: Schema version of this record.
        backups: Rolling snapshots, newest first.
        settings: Plugin settings stored alongside the view state.
    """

    pinnedNotes: list[str]
    lastFilters: FilterState
    sortConfig: SortConfig


class BackupEntry(TypedDict):
    """A snapshot of a valid record.

    Attributes:
        timestamp: Creation time in milliseconds since the epoch.
        version: Schema version of the snapshot.
        data: The record without its own backups field.
    """

    timestamp: int
    version: int
    data: PluginData


_DEFAULT_DATA: PluginData = {
    "version": CURRENT_DATA_VERSION,
    "pinnedNotes": [],
    "lastFilters": {
        "folders": [],
        "tags": [],
        "filename": "",
        "dateRange": None,
    },
    "sortConfig": {
        "key": "updated",
        "order": "desc",
    },
}

_DEFAULT_SETTINGS: PluginSettings = {
    "sortKey": "updated",
    "autoStart": False,
    "showInSidebar": False,
}


def default_data() -> PluginData:
    """Return a fresh copy of the built-in default record."""
    return copy.deepcopy(_DEFAULT_DATA)


def default_settings() -> PluginSettings:
    """Return a fresh copy of the built-in default settings."""
    return dict(_DEFAULT_SETTINGS)  # type: ignore[return-value]


class HostStorage(Protocol):
    """Protocol for the host side of record persistence.

    The host owns the actual I/O. Both operations may fail by raising; those
    failures are the only source of "load failed"/"save failed" reports.
    """

    async def load_data(self) -> Any:
        """Read the raw stored record.

        Returns:
            The decoded record, or None when nothing has been stored yet.

        Raises:
            OSError: If the storage cannot be read.
        """
        ...

    async def save_data(self, data: Any) -> None:
        """Replace the stored record with ``data``.

        Args:
            data: A JSON-compatible record.

        Raises:
            OSError: If the storage cannot be written.
            ValueError: If the record cannot be serialized.
        """
        ...


class RecordReadError(OSError):
    """Raised by a backend when the stored record exists but cannot be decoded."""
