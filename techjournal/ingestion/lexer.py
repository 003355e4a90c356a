"""Lexer for technology journal records.

A record has a fixed prefix followed by ``key=value`` properties::

    mm:ss.ffffff-duration,EVENT,level[,key=value]*

Values may be quoted with ``'`` or ``"``. Inside a quoted value the quote
character is escaped by doubling it. A closing quote only counts when it
is followed by ``,`` or the end of the record.
"""

import logging
import re
import threading
from datetime import datetime
from typing import Dict, Optional

from .models import LogRecord

log = logging.getLogger(__name__)

FIELD_SEPARATOR = ","
KEY_VALUE_SEPARATOR = "="
QUOTES = ("'", '"')

# Reserved keys for the fixed part of a record.
TIME_KEY = "min_sec_microsec"
DURATION_KEY = "duration"
EVENT_KEY = "event"
LEVEL_KEY = "level"
FIXED_KEYS = (TIME_KEY, DURATION_KEY, EVENT_KEY, LEVEL_KEY)

MANDATORY_PREFIX = re.compile(r"^\d\d:\d\d\.\d{6}-(-?\d+),[A-Za-z]+,\d+(,|$)")
IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class MalformedRecordError(Exception):
    """Raised when a record does not match the journal grammar."""


class KeyNormalizer:
    """Thread-safe memo cache that makes property keys usable as column names.

    Keys such as ``ProcessList[pid, mem(Kb)]`` or ``p:processName`` are not
    valid ClickHouse identifiers, so they are wrapped in double quotes.

    Args:
        max_size: Maximum number of cached keys. ``None`` means unbounded;
            once full, further keys are normalized without being cached.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize(key: str) -> str:
        if IDENTIFIER.fullmatch(key):
            return key
        return f'"{key}"'

    def __call__(self, key: str) -> str:
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        normalized = self.normalize(key)
        with self._lock:
            if self.max_size is None or len(self._cache) < self.max_size:
                normalized = self._cache.setdefault(key, normalized)
        return normalized

    def __len__(self) -> int:
        return len(self._cache)


def variable_fields(mapping: Dict[str, str]) -> Dict[str, str]:
    """Return ``mapping`` without the fixed-part keys."""
    return {key: value for key, value in mapping.items() if key not in FIXED_KEYS}


class RecordLexer:
    """Turns one assembled raw record into a field mapping."""

    def __init__(self, normalizer: Optional[KeyNormalizer] = None):
        self.normalizer = normalizer or KeyNormalizer()

    def lex(self, raw: str) -> Dict[str, str]:
        """Parse a raw record.

        Returns:
            Ordered mapping with the fixed part under ``FIXED_KEYS`` and
            every property under its normalized key. Repeated keys are
            joined with ``,``.

        Raises:
            MalformedRecordError: If the fixed prefix does not match.
        """
        if not MANDATORY_PREFIX.match(raw):
            raise MalformedRecordError(
                f"Record start does not match pattern '{MANDATORY_PREFIX.pattern}'"
            )

        fields: Dict[str, str] = {}
        dash = raw.index("-")
        fields[TIME_KEY] = raw[:dash]

        end = raw.index(FIELD_SEPARATOR, dash)
        fields[DURATION_KEY] = raw[dash + 1:end]

        start = end
        end = raw.index(FIELD_SEPARATOR, start + 1)
        fields[EVENT_KEY] = raw[start + 1:end].upper()

        start = end
        end = raw.find(FIELD_SEPARATOR, start + 1)
        if end == -1:
            fields[LEVEL_KEY] = raw[start + 1:]
            return fields
        fields[LEVEL_KEY] = raw[start + 1:end]

        self._lex_properties(raw, end, fields)
        return fields

    def _lex_properties(self, raw: str, pos: int, fields: Dict[str, str]) -> None:
        length = len(raw)
        while pos != -1 and pos < length:
            equals = raw.find(KEY_VALUE_SEPARATOR, pos + 1)
            if equals == -1:
                log.info("Unexpected end of journal record: %s", raw)
                return

            key = self.normalizer(raw[pos + 1:equals])
            value, pos = self._read_value(raw, equals + 1)

            current = fields.get(key)
            if current is None:
                fields[key] = value
            else:
                log.debug("Duplicate property %s: %r + %r", key, current, value)
                fields[key] = current + FIELD_SEPARATOR + value

    @staticmethod
    def _read_value(raw: str, start: int) -> tuple:
        """Read the value starting at ``start``.

        Returns:
            ``(value, position of the separator after the value)``. The
            position is past the end of ``raw`` when nothing follows.
        """
        length = len(raw)
        if start >= length:
            return "", length

        quote = raw[start]
        if quote not in QUOTES:
            end = raw.find(FIELD_SEPARATOR, start)
            if end == -1:
                return raw[start:], length
            return raw[start:end], end

        end = raw.find(quote, start + 1)
        # A doubled quote is an escape: skip both characters and keep looking.
        while end != -1 and end + 1 != length and raw[end + 1] != FIELD_SEPARATOR:
            end = raw.find(quote, end + 2)
        if end == -1:
            return raw[start + 1:], length + 1
        return raw[start + 1:end], end + 1

    def to_record(self, raw: str, line_number: int, hour_stamp: str) -> LogRecord:
        """Lex ``raw`` and build a typed LogRecord.

        Args:
            raw: Assembled record text.
            line_number: 1-based line where the record starts.
            hour_stamp: ``YYMMDDHH`` taken from the file name.

        Raises:
            MalformedRecordError: If the record or its timestamp is invalid.
        """
        fields = self.lex(raw)
        try:
            timestamp = datetime.strptime(hour_stamp + fields[TIME_KEY], "%y%m%d%H%M:%S.%f")
            duration = int(fields[DURATION_KEY])
        except ValueError as exc:
            raise MalformedRecordError(f"Invalid fixed fields in record: {exc}") from exc

        return LogRecord(
            timestamp=timestamp,
            duration=duration,
            event=fields[EVENT_KEY],
            level=fields[LEVEL_KEY],
            line_number=line_number,
            fields=variable_fields(fields),
        )
