"""Schema migration for persisted plugin records.

Each MigrationStep upgrades a record from ``version`` to ``version + 1`` and
is a pure function of its input. Steps are looked up in MIGRATION_STEPS and
applied in ascending order until the record reaches the current version.

Records declaring a version newer than the current one come from a newer
build and are passed through untouched. The pipeline does not validate its
output; callers must run the schema validator afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Optional

from cardview_state.protocol import CURRENT_DATA_VERSION, default_data

logger = logging.getLogger(__name__)

StepFunction = Callable[[dict[str, Any]], tuple[dict[str, Any], list[str]]]


@dataclass
class MigrationResult:
    """Summary of what the pipeline did to a record.

    Attributes:
        migrated: True if at least one step was applied (or the record was
            replaced during loading).
        to_version: Version of the returned record.
        from_version: Original version, set only when migrated.
        warnings: Non-fatal issues, or None when there were none.
    """

    migrated: bool
    to_version: int
    from_version: Optional[int] = None
    warnings: Optional[list[str]] = None


@dataclass
class MigrationOutcome:
    data: dict[str, Any]
    migration: MigrationResult


@dataclass(frozen=True)
class MigrationStep:
    """Upgrade from ``version`` to ``version + 1``."""

    version: int
    description: str
    migrate: StepFunction


def _fill_missing(value: Any, defaults: Mapping[str, Any]) -> Any:
    if not isinstance(value, Mapping):
        return value
    filled = dict(value)
    for key, default in defaults.items():
        filled.setdefault(key, default)
    return filled


def _migrate_v0(data: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Bring legacy (unversioned) data up to version 1.

    Covers both data written by old builds and files that lost their
    version tag.
    """
    warnings: list[str] = []
    defaults = default_data()
    migrated = dict(data)

    for name in ("pinnedNotes", "lastFilters", "sortConfig"):
        if migrated.get(name) is None:
            migrated[name] = defaults[name]

    migrated["lastFilters"] = _fill_missing(
        migrated["lastFilters"], defaults["lastFilters"]
    )
    migrated["sortConfig"] = _fill_missing(
        migrated["sortConfig"], defaults["sortConfig"]
    )

    pinned = migrated["pinnedNotes"]
    if not isinstance(pinned, list):
        migrated["pinnedNotes"] = defaults["pinnedNotes"]
        warnings.append("Fixed invalid pinnedNotes array")
    else:
        migrated["pinnedNotes"] = [path for path in pinned if isinstance(path, str)]

    migrated["version"] = 1
    warnings.append("Added version info to data format")
    return migrated, warnings


MIGRATION_STEPS: dict[int, MigrationStep] = {
    0: MigrationStep(
        version=0,
        description="Add version info to data format",
        migrate=_migrate_v0,
    ),
}


def migrate_plugin_data(
    data: Mapping[str, Any],
    from_version: int = 0,
    *,
    current_version: int = CURRENT_DATA_VERSION,
    steps: Optional[Mapping[int, MigrationStep]] = None,
) -> MigrationOutcome:
    """Migrate a record from ``from_version`` to ``current_version``.

    Args:
        data: The raw record; never mutated.
        from_version: Version the record declares (0 for legacy data).
        current_version: Target version.
        steps: Step registry, defaults to MIGRATION_STEPS.

    Returns:
        The migrated record and a MigrationResult. A missing or failing step
        stops the pipeline early with a warning; the partially migrated
        record is still returned.
    """
    registry = MIGRATION_STEPS if steps is None else steps
    current_data = dict(data)
    all_warnings: list[str] = []
    version = from_version

    while version < current_version:
        step = registry.get(version)
        if step is None:
            all_warnings.append(f"No migration strategy found for version {version}")
            break

        try:
            current_data, warnings = step.migrate(current_data)
        except Exception as e:
            all_warnings.append(f"Migration from version {version} failed: {e}")
            break

        all_warnings.extend(warnings)
        logger.info(
            "Applied migration from version %d: %s", version, step.description
        )
        version += 1

    migrated = version != from_version
    return MigrationOutcome(
        data=current_data,
        migration=MigrationResult(
            migrated=migrated,
            to_version=version,
            from_version=from_version if migrated else None,
            warnings=all_warnings or None,
        ),
    )
