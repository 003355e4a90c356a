"""Registry of which properties appear with which journal events.

The mapping is kept in a two-column table (``event``, ``property``), one
row per pairing. It is loaded once, extended in memory as records are
parsed, and new pairs are written back in batches by ``flush``.
"""

import logging
import threading
from typing import Dict, Iterable, List, Set, Tuple

from .models import DEFAULT_COLUMNS
from .sink import ClickHouseSink

log = logging.getLogger(__name__)

PROPERTIES_TABLE = "properties_by_events_tj"


class EventPropertyRegistry:
    """Tracks event -> property pairs for all workers.

    Args:
        sink: Destination store holding the metadata table.
        table_name: Metadata table name.
    """

    def __init__(self, sink: ClickHouseSink, table_name: str = PROPERTIES_TABLE):
        self.sink = sink
        self.table_name = table_name
        self._properties: Dict[str, Set[str]] = {}
        self._pending: List[Tuple[str, str]] = []
        self._lock = threading.Lock()
        self._loaded = False

    def load(self) -> None:
        """Read the stored pairs, or create the table on first use.

        Raises:
            SchemaError: If the table cannot be read or created.
        """
        with self._lock:
            self._load_locked()

    def _load_locked(self) -> None:
        if self._loaded:
            return
        if self.sink.table_exists(self.table_name):
            pairs = self.sink.fetch_pairs(self.table_name)
            for event, prop in pairs:
                self._properties.setdefault(event, set()).add(prop)
            log.info("Loaded %d event/property pairs from %s", len(pairs), self.table_name)
        else:
            self.sink.create_pairs_table(self.table_name)
        self._loaded = True

    def observe(self, event: str, properties: Iterable[str]) -> None:
        """Record that ``properties`` were seen on an ``event`` record."""
        with self._lock:
            self._load_locked()
            known = self._properties.get(event)
            if known is None:
                known = self._properties[event] = set(DEFAULT_COLUMNS)
                self._pending.extend((event, name) for name in DEFAULT_COLUMNS)
                log.debug("New event %s registered with default properties", event)
            for prop in properties:
                if prop not in known:
                    known.add(prop)
                    self._pending.append((event, prop))

    def properties_for(self, event: str) -> Set[str]:
        with self._lock:
            return set(self._properties.get(event, ()))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def flush(self) -> int:
        """Write pending pairs to the metadata table.

        Pending pairs are kept when the insert fails, so a later flush
        retries them.

        Returns:
            Number of pairs written.

        Raises:
            SinkWriteError: If the insert fails.
        """
        with self._lock:
            if not self._pending:
                return 0
            count = self.sink.insert_rows(self.table_name, ("event", "property"), self._pending)
            self._pending = []
        log.debug("Added %d event/property pairs to %s", count, self.table_name)
        return count
