"""Data model for technology journal ingestion."""

import logging
import os
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

import pandas as pd

log = logging.getLogger(__name__)

# Columns every destination table carries, with their ClickHouse types.
DEFAULT_COLUMNS: "OrderedDict[str, str]" = OrderedDict([
    ("filename", "String"),
    ("parent", "String"),
    ("source", "String"),
    ("source_pid", "UInt32"),
    ("line_number", "UInt32"),
    ("datetime", "DateTime64(6)"),
    ("duration", "Int64"),
    ("event", "String"),
    ("level", "String"),
])

# Type for every property column discovered while parsing.
PROPERTY_COLUMN_TYPE = "String"

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

_FILENAME_PATTERN = re.compile(r"^(\d{8})\.[^.]+$")


class FileAccessError(Exception):
    """Raised when a journal file cannot be opened, read or identified."""


def column_type(name: str) -> str:
    """Return the ClickHouse type for a column name."""
    return DEFAULT_COLUMNS.get(name, PROPERTY_COLUMN_TYPE)


@dataclass(frozen=True)
class LogRecord:
    """One logical journal event.

    Identity for resume purposes is (timestamp, duration, event, level);
    ``line_number`` is an optional secondary check.
    """

    timestamp: datetime
    duration: int
    event: str
    level: str
    line_number: int
    fields: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def identity(self) -> tuple:
        return (self.timestamp, self.duration, self.event, self.level)

    def same_identity(self, other: "LogRecord", check_line_number: bool = False) -> bool:
        """Compare two records by identity, optionally also by line number."""
        if self.identity != other.identity:
            return False
        return not check_line_number or self.line_number == other.line_number

    @property
    def datetime_text(self) -> str:
        return self.timestamp.strftime(DATETIME_FORMAT)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.fields.get(key, default)

    @classmethod
    def from_row(
        cls,
        timestamp: Any,
        duration: Any,
        event: str,
        level: Any,
        line_number: Any,
    ) -> "LogRecord":
        """Build a checkpoint record from a destination table row.

        ``timestamp`` may be a ``datetime``, a pandas ``Timestamp`` or
        ``YYYY-MM-DD HH:MM:SS.ffffff`` text.
        """
        if isinstance(timestamp, str):
            moment = datetime.strptime(timestamp, DATETIME_FORMAT)
        else:
            moment = pd.Timestamp(timestamp).to_pydatetime()
        return cls(
            timestamp=moment.replace(tzinfo=None),
            duration=int(duration),
            event=str(event),
            level=str(level),
            line_number=int(line_number),
        )

    def __str__(self) -> str:
        return (
            f"LogRecord[{self.line_number}](timestamp={self.timestamp}, "
            f"duration={self.duration}, event='{self.event}', level='{self.level}')"
        )


@dataclass(frozen=True)
class FileTask:
    """A discovered journal file and the metadata derived from its path."""

    path: str
    filename: str
    hour_stamp: str
    parent: str
    source: str
    source_pid: int
    size: int

    @classmethod
    def from_path(cls, path: str) -> "FileTask":
        """Derive a task from ``.../{source}_{pid}/YYMMDDHH.log``.

        Raises:
            FileAccessError: If the file name is not ``YYMMDDHH.<ext>`` or
                the file cannot be stat-ed.
        """
        abs_path = os.path.abspath(path)
        filename = os.path.basename(abs_path)
        match = _FILENAME_PATTERN.match(filename)
        if not match:
            raise FileAccessError(
                f"Unexpected journal file name '{filename}', expected YYMMDDHH.log"
            )

        try:
            size = os.path.getsize(abs_path)
        except OSError as exc:
            raise FileAccessError(f"Failed to stat journal file '{abs_path}': {exc}") from exc

        parent = os.path.basename(os.path.dirname(abs_path))
        source, source_pid = _split_parent(parent, abs_path)
        return cls(
            path=abs_path,
            filename=filename,
            hour_stamp=match.group(1),
            parent=parent,
            source=source,
            source_pid=source_pid,
            size=size,
        )


def _split_parent(parent: str, path: str) -> tuple:
    parts = parent.split("_")
    if len(parts) != 2:
        log.error("Cannot derive source process from journal directory of %s", path)
        return "unknown", 0
    source, pid = parts
    if not pid.isdigit():
        log.error("Cannot derive PID from journal directory of %s", path)
        return source, 0
    return source, int(pid)
