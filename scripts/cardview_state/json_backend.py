"""JSON file-based host storage for the plugin record.

This module provides a storage backend that keeps the record in a single JSON
file. It uses atomic writes (temp file + os.replace) so a crash mid-write
never leaves a truncated record behind.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Any

from cardview_state.protocol import RecordReadError


def json_default(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JSONHostStorage:
    """JSON file-based host storage for the plugin record.

    Attributes:
        data_file: The Path to the JSON record file.

    Example:
        storage = JSONHostStorage(Path("/home/user/.cardview/data.json"))
        raw = await storage.load_data()
        await storage.save_data(record)
    """

    def __init__(self, data_file: Path) -> None:
        """Initialize the JSON host storage.

        Args:
            data_file: The path to the JSON record file.
        """
        self.data_file = data_file

    def read_record(self) -> Any:
        """Read and decode the record file.

        Returns:
            The decoded JSON value, or None if the file doesn't exist.

        Raises:
            RecordReadError: If the file is unreadable or not valid JSON.
        """
        if not self.data_file.exists():
            return None

        try:
            with open(self.data_file, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise RecordReadError(f"Cannot read record file: {e}") from e

        if not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise RecordReadError(
                f"Record file {self.data_file} is corrupt: {e.msg} at line {e.lineno}"
            ) from e

    def write_record(self, data: Any) -> None:
        """Atomically replace the record file with ``data``.

        Creates the parent directory if needed and writes to a temporary file
        before atomically moving it to the final location.

        Args:
            data: A JSON-compatible record; dates are written as ISO strings.

        Raises:
            OSError: If there's an error creating directories or writing files.
            TypeError: If the record holds values that cannot be serialized.
        """
        self.data_file.parent.mkdir(parents=True, exist_ok=True)

        temp_fd, temp_path = tempfile.mkstemp(
            dir=self.data_file.parent, suffix=".tmp"
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=json_default)
            os.replace(temp_path, self.data_file)  # Atomic on POSIX
        except (OSError, TypeError, ValueError):
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    async def load_data(self) -> Any:
        return await asyncio.to_thread(self.read_record)

    async def save_data(self, data: Any) -> None:
        await asyncio.to_thread(self.write_record, data)
