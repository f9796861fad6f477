"""Persistent view state for the card view explorer.

This package keeps a single preferences-and-view-state record trustworthy
across sessions: schema validation, versioned migration, a rolling backup
ring with recovery, and a categorized error/retry policy, behind the
PluginDataStore façade.

Host storage is chosen from the CARDVIEW_STORAGE_BACKEND environment variable.

Supported backends:
    - "json" (default): JSON file-based storage
    - "sqlite": SQLite single-record storage

Environment Variables:
    CARDVIEW_STORAGE_BACKEND: "json" (default) or "sqlite"
    CARDVIEW_DATA_PATH: Custom path for JSON backend (relative or absolute)
    CARDVIEW_SQLITE_PATH: Custom path for SQLite backend (relative or absolute)
    CARDVIEW_IO_RETRIES: Retry host I/O this many times before giving up

Example:
    from cardview_state import create_store
    from pathlib import Path

    store = create_store(Path("/home/user/.cardview"))
    result = await store.load()
    await store.save(result.data)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from cardview_state.errors import (
    ErrorCategory,
    ErrorInfo,
    ErrorLog,
    ErrorReporter,
    Notifier,
    RetryOptions,
    handle_error,
    safe_sync,
    with_retry,
)
from cardview_state.json_backend import JSONHostStorage
from cardview_state.persistence import LoadResult, PluginDataStore
from cardview_state.protocol import (
    CURRENT_DATA_VERSION,
    MAX_BACKUPS,
    HostStorage,
    PluginData,
    PluginSettings,
    RecordReadError,
    default_data,
    default_settings,
)
from cardview_state.sqlite_backend import SQLiteHostStorage

__all__ = [
    "CURRENT_DATA_VERSION",
    "MAX_BACKUPS",
    "ErrorCategory",
    "ErrorInfo",
    "ErrorLog",
    "ErrorReporter",
    "HostStorage",
    "JSONHostStorage",
    "LoadResult",
    "PluginData",
    "PluginDataStore",
    "PluginSettings",
    "RecordReadError",
    "RetryOptions",
    "SQLiteHostStorage",
    "create_store",
    "default_data",
    "default_settings",
    "get_host_storage",
    "handle_error",
    "safe_sync",
    "with_retry",
    "_resolve_safe_path",
]


def _resolve_safe_path(base_dir: Path, user_path: str) -> Path | None:
    """Resolve a path, ensuring it stays within base_dir.

    Args:
        base_dir: The base directory paths must stay within.
        user_path: User-provided path (relative or absolute).

    Returns:
        Resolved absolute path, or None if path escapes base_dir.
    """
    if not user_path or not user_path.strip():
        return None

    if "\x00" in user_path:
        return None

    candidate = Path(user_path)
    if not candidate.is_absolute():
        candidate = base_dir / candidate

    # Resolve to absolute, following symlinks
    resolved = candidate.resolve()
    base_resolved = base_dir.resolve()

    try:
        resolved.relative_to(base_resolved)
        return resolved
    except ValueError:
        return None  # Path escapes data directory


def _get_path(data_dir: Path, env_var: str, default_name: str) -> Path:
    """Get a storage path from the environment or the default.

    Raises:
        ValueError: If the configured path escapes the data directory.
    """
    custom_path = os.environ.get(env_var, "").strip()

    if custom_path:
        safe_path = _resolve_safe_path(data_dir, custom_path)
        if safe_path is None:
            raise ValueError(f"{env_var} '{custom_path}' escapes data directory")
        return safe_path

    return data_dir / default_name


def _get_retry_options() -> Optional[RetryOptions]:
    """Read CARDVIEW_IO_RETRIES; None when unset.

    Raises:
        ValueError: If the value is not a non-negative integer.
    """
    raw = os.environ.get("CARDVIEW_IO_RETRIES", "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        raise ValueError(
            f"CARDVIEW_IO_RETRIES must be a non-negative integer, got {raw!r}"
        )
    return RetryOptions(max_retries=int(raw))


def get_host_storage(data_dir: Path) -> HostStorage:
    """Get the configured host storage backend.

    Reads the CARDVIEW_STORAGE_BACKEND environment variable to determine which
    backend to use. Defaults to JSON if not set.

    Path configuration:
        - JSON backend: Uses CARDVIEW_DATA_PATH or defaults to data.json
        - SQLite backend: Uses CARDVIEW_SQLITE_PATH or defaults to data.db

    Args:
        data_dir: The plugin data directory used for resolving paths.

    Returns:
        An instance of the configured HostStorage.

    Raises:
        ValueError: If the storage backend or path configuration is invalid.
    """
    backend_type = os.environ.get("CARDVIEW_STORAGE_BACKEND", "json").strip().lower()

    if backend_type == "json":
        return JSONHostStorage(_get_path(data_dir, "CARDVIEW_DATA_PATH", "data.json"))
    elif backend_type == "sqlite":
        return SQLiteHostStorage(_get_path(data_dir, "CARDVIEW_SQLITE_PATH", "data.db"))
    else:
        raise ValueError(
            f"Unknown storage backend: {backend_type!r}. "
            f"Expected 'json' or 'sqlite'."
        )


def create_store(
    data_dir: Path,
    *,
    notifier: Optional[Notifier] = None,
    reporter: Optional[ErrorReporter] = None,
) -> PluginDataStore:
    """Build a PluginDataStore wired to the configured host storage.

    Args:
        data_dir: The plugin data directory.
        notifier: Host callback ``(text, duration_ms)`` for transient notices.
        reporter: Error reporter to use instead of a fresh one.

    Returns:
        A ready-to-use PluginDataStore.

    Raises:
        ValueError: If the environment configuration is invalid.
    """
    storage = get_host_storage(data_dir)
    return PluginDataStore(
        storage,
        reporter=reporter or ErrorReporter(notifier=notifier),
        retry=_get_retry_options(),
    )
