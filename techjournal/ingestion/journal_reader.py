"""Stateful reader that assembles journal records from physical lines.

A logical record starts with a line matching ``START_OF_RECORD`` and
continues over every following line that does not. Records are handed
out in batches; a checkpoint record makes the reader skip everything up
to and including the already-loaded record.
"""

import logging
import re
from typing import List, Optional, Set

from .lexer import MalformedRecordError, RecordLexer
from .models import FileAccessError, FileTask, LogRecord

log = logging.getLogger(__name__)

START_OF_RECORD = re.compile(r"^\d\d:\d\d\.\d+--?\d+,")
_LEADING_NON_DIGITS = re.compile(r"^\D+")
_LINE_END = "\r\n"


class JournalReader:
    """Reads one journal file and yields LogRecord batches.

    Args:
        task: File to read.
        lexer: Record lexer; a private one is created if omitted.
        registry: Optional EventPropertyRegistry notified of every parsed
            record.
        encoding: File encoding. Undecodable bytes are replaced.
    """

    def __init__(self, task: FileTask, lexer: Optional[RecordLexer] = None,
                 registry=None, encoding: str = "utf-8"):
        self.task = task
        self.lexer = lexer or RecordLexer()
        self.registry = registry
        self.encoding = encoding
        self.fields_seen: Set[str] = set()
        self.record_count = 0
        self.skipped_count = 0
        self.error_count = 0
        self._file = None
        self._pending_line: Optional[str] = None
        self._pending_line_number = 0
        self._line_number = 0
        self._checkpoint: Optional[LogRecord] = None
        self._completed = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def completed(self) -> bool:
        return self._completed

    def is_empty(self, threshold: int = 3) -> bool:
        return self.task.size <= threshold

    def open(self) -> None:
        """Open the underlying file.

        Raises:
            FileAccessError: If the file cannot be opened.
        """
        if self._file is not None:
            return
        try:
            self._file = open(self.task.path, "r", encoding=self.encoding, errors="replace")
        except OSError as exc:
            raise FileAccessError(f"Failed to open journal file '{self.task.path}': {exc}") from exc
        log.info("File %s of %d bytes ready for parsing", self.task.path, self.task.size)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _read_line(self) -> Optional[str]:
        """Return the next physical line without its terminator, or None at EOF."""
        try:
            line = self._file.readline()
        except OSError as exc:
            log.error("Failed to read journal file %s: %s", self.task.path, exc)
            return None
        if not line:
            return None
        self._line_number += 1
        return line.rstrip(_LINE_END)

    def _finish(self) -> None:
        self._completed = True
        self.close()
        log.info("Finished parsing %s: %d records loaded, %d skipped, %d malformed",
                 self.task.path, self.record_count, self.skipped_count, self.error_count)

    def next_records(self, count: int, checkpoint: Optional[LogRecord] = None) -> List[LogRecord]:
        """Read up to ``count`` records.

        Args:
            count: Maximum number of records to return.
            checkpoint: Last record already loaded from this file. Records
                up to and including it are discarded, and do not count
                toward ``count``.

        Returns:
            Records in file order. Fewer than ``count`` means the file is
            exhausted and ``completed`` is set.
        """
        if self._completed:
            return []
        if checkpoint is not None:
            self._checkpoint = checkpoint
        self.open()

        if self._pending_line is None:
            first = self._read_line()
            if first is None:
                self._finish()
                return []
            # The first line may start with a byte-order mark
            self._pending_line = _LEADING_NON_DIGITS.sub("", first)
            self._pending_line_number = self._line_number

        batch: List[LogRecord] = []
        while len(batch) < count:
            lines = [self._pending_line]
            line = self._read_line()
            while line is not None and not START_OF_RECORD.match(line):
                # Blank lines inside a record carry no text
                if line:
                    lines.append(line)
                line = self._read_line()

            record = self._parse("\n".join(lines), self._pending_line_number)
            if record is not None and self._accept(record):
                batch.append(record)
                self.fields_seen.update(record.fields)
                self.record_count += 1

            if line is None:
                self._finish()
                break
            self._pending_line = line
            self._pending_line_number = self._line_number

        return batch

    def _parse(self, raw: str, line_number: int) -> Optional[LogRecord]:
        try:
            record = self.lexer.to_record(raw, line_number, self.task.hour_stamp)
        except MalformedRecordError as exc:
            self.error_count += 1
            log.info("Failed to parse record at %s:%d: %s. Reason: %s",
                     self.task.path, line_number, raw[:200], exc)
            return None
        if self.registry is not None:
            self.registry.observe(record.event, record.fields.keys())
        return record

    def _accept(self, record: LogRecord) -> bool:
        """Apply checkpoint skipping; True when ``record`` should be emitted."""
        if self._checkpoint is None:
            return True
        self.skipped_count += 1
        if record.same_identity(self._checkpoint):
            log.info("Resuming %s after line %d", self.task.path, record.line_number)
            self._checkpoint = None
        return False
