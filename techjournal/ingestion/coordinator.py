"""Parallel loading of journal files into ClickHouse.

Tasks go into a shared queue drained by a fixed pool of worker threads.
Each worker loads one file at a time, batch by batch, and moves on to the
next file when one fails.
"""

import concurrent.futures
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from techjournal.config.loader_config import LoaderConfig
from techjournal.utils.logging_config import file_logging_context

from .event_registry import EventPropertyRegistry
from .journal_reader import JournalReader
from .lexer import KeyNormalizer, RecordLexer
from .models import DEFAULT_COLUMNS, FileAccessError, FileTask, LogRecord
from .schema_sync import SchemaSynchronizer
from .sink import ClickHouseSink, SchemaError, SinkWriteError

log = logging.getLogger(__name__)

TABLE_NAME_TEMPLATE = "{prefix}_{suffix}_TJ"


@dataclass
class IngestionSummary:
    """Totals of one coordinator run."""

    elapsed: float = 0.0
    files: int = 0
    records: int = 0
    failed_files: List[str] = field(default_factory=list)
    workers: int = 0


def table_name_for(task: FileTask, suffix: str) -> str:
    """Destination table for a file: ``YYMMDD_<suffix>_TJ``."""
    return TABLE_NAME_TEMPLATE.format(prefix=task.hour_stamp[:6], suffix=suffix)


def build_rows(records: Sequence[LogRecord], task: FileTask, extra_columns: Sequence[str]) -> List[tuple]:
    """Turn records into insert rows ordered as DEFAULT_COLUMNS + ``extra_columns``."""
    rows = []
    for record in records:
        row = [
            task.filename,
            task.parent,
            task.source,
            task.source_pid,
            record.line_number,
            record.datetime_text,
            record.duration,
            record.event,
            record.level,
        ]
        row.extend(record.fields.get(name, "") for name in extra_columns)
        rows.append(tuple(row))
    return rows


class IngestionCoordinator:
    """Loads journal files with a pool of worker threads.

    Args:
        config: Loader configuration.
        sink: Destination store.
        schema_sync: Shared schema synchronizer; created from ``config`` if
            omitted.
        registry: Shared event/property registry; created on ``sink`` if
            omitted.
        normalizer: Shared key normalizer for all workers' lexers.
    """

    def __init__(
        self,
        config: LoaderConfig,
        sink: ClickHouseSink,
        schema_sync: Optional[SchemaSynchronizer] = None,
        registry: Optional[EventPropertyRegistry] = None,
        normalizer: Optional[KeyNormalizer] = None,
    ):
        self.config = config
        self.sink = sink
        self.schema_sync = schema_sync or SchemaSynchronizer(sink, config.clickhouse)
        self.registry = registry or EventPropertyRegistry(sink)
        self.normalizer = normalizer or KeyNormalizer()
        self._stats_lock = threading.Lock()
        self._summary = IngestionSummary()

    def table_name_for(self, task: FileTask) -> str:
        return table_name_for(task, self.config.clickhouse.table_suffix)

    def run(self, tasks: Sequence[FileTask]) -> IngestionSummary:
        """Load ``tasks`` and return the run totals.

        Raises:
            SchemaError: If the event/property registry cannot be loaded,
                which means the destination store is unusable.
        """
        start = time.monotonic()
        self._summary = IngestionSummary()
        if not tasks:
            log.info("No journal files to load")
            return self._summary

        self.registry.load()

        pool: "queue.Queue[FileTask]" = queue.Queue()
        for task in tasks:
            pool.put(task)

        workers = max(1, min(self.config.threads_count, len(tasks)))
        self._summary.workers = workers
        log.info("Starting %d workers for %d journal files", workers, len(tasks))

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="tj-worker"
        )
        try:
            futures = [executor.submit(self._worker, f"worker-{i + 1}", pool) for i in range(workers)]
            done, not_done = concurrent.futures.wait(futures, timeout=self.config.shutdown_timeout)
            if not_done:
                log.warning("%d workers still running after %s seconds",
                            len(not_done), self.config.shutdown_timeout)
            for future in done:
                exc = future.exception()
                if exc is not None:
                    log.error("Worker terminated with an error: %s", exc, exc_info=exc)
        finally:
            executor.shutdown(wait=self.config.shutdown_timeout is None)

        self._flush_registry()

        self._summary.elapsed = time.monotonic() - start
        log.info(
            "Load finished in %.3f s: %d non-empty files, %d records",
            self._summary.elapsed, self._summary.files, self._summary.records,
        )
        if self._summary.failed_files:
            log.warning("Failed to load %d files: %s",
                        len(self._summary.failed_files), ", ".join(self._summary.failed_files))
        return self._summary

    def _worker(self, name: str, pool: "queue.Queue[FileTask]") -> None:
        files = 0
        records = 0
        while True:
            try:
                task = pool.get_nowait()
            except queue.Empty:
                break
            with file_logging_context(name, task.path):
                try:
                    loaded = self.load_file(task)
                    files += 1
                    records += loaded
                except (FileAccessError, SchemaError, SinkWriteError) as exc:
                    log.error("Failed to load %s: %s", task.path, exc)
                    self._mark_failed(task)
                except Exception:
                    log.exception("Unexpected error while loading %s", task.path)
                    self._mark_failed(task)
                finally:
                    self._flush_registry()
        with file_logging_context(name):
            log.info("%s finished: %d files, %d records", name, files, records)

    def _mark_failed(self, task: FileTask) -> None:
        with self._stats_lock:
            self._summary.failed_files.append(task.path)

    def load_file(self, task: FileTask) -> int:
        """Load one journal file, resuming after its last loaded record.

        Returns:
            Number of records inserted.

        Raises:
            FileAccessError: If the file cannot be opened.
            SchemaError: If the destination table cannot be prepared.
            SinkWriteError: If a batch insert fails.
        """
        if task.size <= self.config.empty_file_threshold:
            log.info("Skipping empty journal file %s", task.path)
            return 0
        with self._stats_lock:
            self._summary.files += 1

        table_name = self.table_name_for(task)
        checkpoint = self.schema_sync.prepare_table(table_name, task.filename, task.parent)

        lexer = RecordLexer(self.normalizer)
        loaded = 0
        with JournalReader(task, lexer=lexer, registry=self.registry) as reader:
            while not reader.completed:
                batch = reader.next_records(self.config.batch_size, checkpoint)
                checkpoint = None
                if not batch:
                    continue
                loaded += self._insert_batch(table_name, task, reader, batch)

        log.info("Loaded %d records from %s into %s", loaded, task.path, table_name)
        return loaded

    def _insert_batch(self, table_name: str, task: FileTask, reader: JournalReader,
                      batch: Sequence[LogRecord]) -> int:
        extra = sorted(set(reader.fields_seen) - set(DEFAULT_COLUMNS))
        self.schema_sync.sync_columns(table_name, extra)

        columns = list(DEFAULT_COLUMNS) + extra
        rows = build_rows(batch, task, extra)
        with self.schema_sync.inserting(table_name):
            inserted = self.sink.insert_rows(table_name, columns, rows)
        with self._stats_lock:
            self._summary.records += inserted
        log.debug("Inserted %d records into %s", inserted, table_name)
        return inserted

    def _flush_registry(self) -> None:
        try:
            self.registry.flush()
        except SinkWriteError as exc:
            log.error("Failed to write event/property pairs, will retry: %s", exc)

