"""Schema synchronization for journal destination tables.

Each destination table gets a column cache, a DDL mutex and a read/write
guard. Batch inserts hold the guard's shared side and may run together;
CREATE TABLE and ADD COLUMN hold the exclusive side, so they never run
while an insert into the same table is in flight. Different tables never
block each other.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

from techjournal.config.loader_config import ClickHouseConfig

from .lexer import KeyNormalizer
from .models import DEFAULT_COLUMNS, LogRecord, column_type
from .sink import ClickHouseSink

log = logging.getLogger(__name__)


class TableGuard:
    """Writer-preferring read/write lock.

    Inserts take ``shared()``; DDL takes ``exclusive()``. A waiting writer
    blocks new readers so schema changes are not starved by a steady
    stream of inserts.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._active_inserts = 0
        self._writer_active = False
        self._writers_waiting = 0

    @property
    def active_inserts(self) -> int:
        return self._active_inserts

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            while self._writer_active or self._writers_waiting:
                self._cond.wait()
            self._active_inserts += 1
        try:
            yield
        finally:
            with self._cond:
                self._active_inserts -= 1
                if self._active_inserts == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._active_inserts:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            with self._cond:
                self._writer_active = False
                self._cond.notify_all()


@dataclass
class _TableState:
    columns: Set[str] = field(default_factory=set)
    ddl_mutex: threading.Lock = field(default_factory=threading.Lock)
    guard: TableGuard = field(default_factory=TableGuard)


class SchemaSynchronizer:
    """Keeps destination table schemas ahead of the rows inserted into them.

    Args:
        sink: Destination store.
        config: ClickHouse section of the configuration (table engine,
            ORDER BY and PARTITION BY expressions).
    """

    def __init__(self, sink: ClickHouseSink, config: Optional[ClickHouseConfig] = None):
        self.sink = sink
        self.config = config or ClickHouseConfig()
        self._tables: Dict[str, _TableState] = {}
        self._tables_lock = threading.Lock()

    def _state(self, table_name: str) -> _TableState:
        with self._tables_lock:
            state = self._tables.get(table_name)
            if state is None:
                log.debug("No cached columns for table %s yet", table_name)
                state = self._tables[table_name] = _TableState()
            return state

    def known_columns(self, table_name: str) -> List[str]:
        state = self._state(table_name)
        with state.ddl_mutex:
            return sorted(state.columns)

    def prepare_table(
        self,
        table_name: str,
        filename: Optional[str] = None,
        parent: Optional[str] = None,
        fields: Iterable[str] = (),
    ) -> Optional[LogRecord]:
        """Create or reconcile a table, then look up the file's checkpoint.

        Args:
            table_name: Destination table.
            filename: Journal file name for the checkpoint lookup.
            parent: Journal directory name for the checkpoint lookup.
            fields: Extra property columns the caller already knows about.

        Returns:
            The last loaded record for (filename, parent), or None.

        Raises:
            SchemaError: If DDL or introspection fails.
        """
        state = self._state(table_name)
        with state.ddl_mutex, state.guard.exclusive():
            log.debug("Preparing table %s for loading", table_name)
            wanted = set(DEFAULT_COLUMNS) | state.columns | set(fields)
            if self.sink.table_exists(table_name):
                self._reconcile(table_name, state, wanted)
            else:
                self._create(table_name, state, wanted)

        if filename is None or parent is None:
            return None
        checkpoint = self.sink.fetch_last_record(table_name, filename, parent)
        if checkpoint is None:
            log.info("File %s/%s was not loaded before", parent, filename)
        else:
            log.info("Last loaded record of %s/%s: %s", parent, filename, checkpoint)
        return checkpoint

    def _create(self, table_name: str, state: _TableState, wanted: Set[str]) -> None:
        columns = {name: DEFAULT_COLUMNS[name] for name in DEFAULT_COLUMNS}
        for name in sorted(wanted - set(DEFAULT_COLUMNS)):
            columns[name] = column_type(name)
        self.sink.create_table(
            table_name,
            columns,
            engine=self.config.engine,
            order_by=self.config.order_by,
            partition_by=self.config.partition_by,
        )
        state.columns.update(columns)

    def _reconcile(self, table_name: str, state: _TableState, wanted: Set[str]) -> None:
        # DESCRIBE returns bare names; cached names are in insert form
        described = self.sink.describe_table(table_name)
        live = {KeyNormalizer.normalize(name): type_ for name, type_ in described.items()}
        log.debug("Table %s has columns %s", table_name, sorted(live))
        state.columns.update(live)
        missing = sorted(wanted - set(live))
        for name in missing:
            self.sink.add_column(table_name, name, column_type(name))
        state.columns.update(missing)
        if missing:
            log.info("Added columns to %s: %s", table_name, ", ".join(missing))

    def sync_columns(self, table_name: str, fields: Iterable[str]) -> Set[str]:
        """Make sure every name in ``fields`` is a column of the table.

        Returns:
            Names of the columns that were added.

        Raises:
            SchemaError: If a column cannot be added.
        """
        state = self._state(table_name)
        with state.ddl_mutex:
            missing = set(fields) - state.columns
            if not missing:
                log.debug("No new columns for table %s", table_name)
                return set()

            with state.guard.exclusive():
                added = []
                try:
                    for name in sorted(missing):
                        self.sink.add_column(table_name, name, column_type(name))
                        added.append(name)
                finally:
                    state.columns.update(added)
            log.info("Added columns to %s: %s", table_name, ", ".join(added))
            return set(added)

    def inserting(self, table_name: str):
        """Context manager held around a batch insert into ``table_name``."""
        return self._state(table_name).guard.shared()
