"""Runtime validation for persisted plugin records.

Every predicate takes an untyped value, returns a bool and never raises: a
value whose inspection raises (for example a mapping with a hostile
``__getitem__``) is simply invalid. Extra fields are tolerated so records
written by newer builds still validate.

Loading is a two-stage pipeline. ``parse_record`` first turns the raw stored
value into a ParsedRecord, rejecting anything that is not a record and
splitting off a sanitized backup ring. The predicates then run on the
migrated record as an independent second check.
"""

from __future__ import annotations

import functools
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from cardview_state.protocol import BACKUPS_KEY, BackupEntry

DATE_RANGE_TYPES = frozenset({"within", "after"})
SORT_ORDERS = frozenset({"asc", "desc"})
FILTER_LIST_FIELDS = ("folders", "tags")
FILTER_EXCLUDE_FIELDS = ("excludeFolders", "excludeTags", "excludeFilenames")

# Extended ISO 8601 calendar dates with optional time and offset. Accepts the
# same set on every supported interpreter version.
ISO_DATE_RE = re.compile(
    r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})"
    r"(?:[Tt ](?P<hour>\d{2}):(?P<minute>\d{2})"
    r"(?::(?P<second>\d{2})(?:[.,]\d+)?)?"
    r"(?P<offset>[Zz]|[+-]\d{2}:?\d{2})?)?$"
)


def _never_raises(predicate: Callable[[Any], bool]) -> Callable[[Any], bool]:
    @functools.wraps(predicate)
    def wrapper(value: Any) -> bool:
        try:
            return bool(predicate(value))
        except Exception:
            # Malformed input is invalid input
            return False

    return wrapper


def _is_record(value: Any) -> bool:
    return isinstance(value, Mapping)


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value) and value.is_integer()


@_never_raises
def is_string_list(value: Any) -> bool:
    """Return True for a list whose elements are all ``str``."""
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _parses_as_iso(text: str) -> bool:
    match = ISO_DATE_RE.match(text)
    if match is None:
        return False
    year, month, day, hour, minute, second, offset = match.group(
        "year", "month", "day", "hour", "minute", "second", "offset"
    )
    try:
        datetime(
            int(year),
            int(month),
            int(day),
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
        )
    except ValueError:
        return False
    if offset and offset not in ("Z", "z"):
        digits = offset[1:].replace(":", "")
        return int(digits[:2]) < 24 and int(digits[2:]) < 60
    return True


def _parses_as_date(text: str) -> bool:
    candidate = text.strip()
    if not candidate:
        return False
    if _parses_as_iso(candidate):
        return True
    try:
        parsedate_to_datetime(candidate)
        return True
    except (TypeError, ValueError, IndexError):
        return False


@_never_raises
def is_valid_date_value(value: Any) -> bool:
    """Return True for a date/datetime or a string that parses as a date."""
    if isinstance(value, date):
        return True
    if isinstance(value, str):
        return _parses_as_date(value)
    return False


@_never_raises
def is_valid_version(value: Any) -> bool:
    """Return True for a non-negative integer version number."""
    return _is_integer(value) and value >= 0


@_never_raises
def validate_date_range(value: Any) -> bool:
    """Validate an optional date filter; None means no date filtering."""
    if value is None:
        return True
    if not _is_record(value):
        return False
    kind = value.get("type")
    if not isinstance(kind, str) or kind not in DATE_RANGE_TYPES:
        return False
    return is_valid_date_value(value.get("value"))


@_never_raises
def validate_filter_state(value: Any) -> bool:
    """Validate a FilterState."""
    if not _is_record(value):
        return False
    for name in FILTER_LIST_FIELDS:
        if not is_string_list(value.get(name)):
            return False
    for name in FILTER_EXCLUDE_FIELDS:
        excluded = value.get(name)
        if excluded is not None and not is_string_list(excluded):
            return False
    if not isinstance(value.get("filename"), str):
        return False
    return validate_date_range(value.get("dateRange"))


@_never_raises
def validate_sort_config(value: Any) -> bool:
    """Validate a SortConfig."""
    if not _is_record(value):
        return False
    if not isinstance(value.get("key"), str):
        return False
    order = value.get("order")
    return isinstance(order, str) and order in SORT_ORDERS


@_never_raises
def validate_plugin_settings(value: Any) -> bool:
    """Validate a fully populated PluginSettings."""
    if not _is_record(value):
        return False
    return (
        isinstance(value.get("sortKey"), str)
        and isinstance(value.get("autoStart"), bool)
        and isinstance(value.get("showInSidebar"), bool)
    )


@_never_raises
def validate_plugin_data_snapshot(value: Any) -> bool:
    """Validate a PluginData without looking at its backups field.

    Used for backup entries so validation recurses at most one level.
    """
    if not _is_record(value):
        return False
    if not is_string_list(value.get("pinnedNotes")):
        return False
    if not validate_filter_state(value.get("lastFilters")):
        return False
    if not validate_sort_config(value.get("sortConfig")):
        return False
    if "version" in value and not is_valid_version(value.get("version")):
        return False
    return True


@_never_raises
def validate_backup_entry(value: Any) -> bool:
    """Validate one BackupEntry, including its snapshot data."""
    if not _is_record(value):
        return False
    if not _is_integer(value.get("timestamp")):
        return False
    if not _is_integer(value.get("version")):
        return False
    return validate_plugin_data_snapshot(value.get("data"))


@_never_raises
def validate_backups(value: Any) -> bool:
    """Validate a backup ring: a list of valid BackupEntry objects."""
    return isinstance(value, list) and all(
        validate_backup_entry(entry) for entry in value
    )


@_never_raises
def validate_plugin_data(value: Any) -> bool:
    """Validate a complete PluginData record.

    The ``backups`` field is optional; when present every entry must be a
    self-restorable snapshot.
    """
    if not validate_plugin_data_snapshot(value):
        return False
    if BACKUPS_KEY in value and not validate_backups(value.get(BACKUPS_KEY)):
        return False
    return True


@dataclass
class ParsedRecord:
    """Result of the structural parse of a raw stored value.

    Attributes:
        record: Shallow copy of the record without its backups field.
        backups: Backup entries that passed validation, in stored order.
        dropped_backups: Number of malformed backup entries discarded.
        declared_version: The record's version, or 0 when absent or invalid.
    """

    record: dict[str, Any]
    backups: list[BackupEntry] = field(default_factory=list)
    dropped_backups: int = 0
    declared_version: int = 0


def parse_record(raw: Any) -> Optional[ParsedRecord]:
    """Parse a raw stored value into a ParsedRecord.

    Args:
        raw: Whatever the host returned.

    Returns:
        A ParsedRecord, or None if ``raw`` is not a string-keyed mapping.
    """
    try:
        if not _is_record(raw):
            return None
        record = dict(raw.items())
    except Exception:
        return None
    if not all(isinstance(key, str) for key in record):
        return None

    stored_backups = record.pop(BACKUPS_KEY, None)
    backups: list[BackupEntry] = []
    dropped = 0
    if isinstance(stored_backups, list):
        for entry in stored_backups:
            if validate_backup_entry(entry):
                backups.append(entry)
            else:
                dropped += 1
    elif stored_backups is not None:
        dropped = 1

    version = record.get("version")
    declared_version = int(version) if is_valid_version(version) else 0

    return ParsedRecord(
        record=record,
        backups=backups,
        dropped_backups=dropped,
        declared_version=declared_version,
    )
