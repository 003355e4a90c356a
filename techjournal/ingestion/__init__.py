"""Technology journal ingestion modules.

Modules:
    models: LogRecord, FileTask and the default destination columns.
    lexer: Split a raw record into named fields and normalize keys.
    journal_reader: Assemble multi-line records from a journal file in batches.
    sink: ClickHouse DDL, introspection and batch inserts.
    schema_sync: Keep destination table columns ahead of inserted rows.
    event_registry: Track which properties appear with which events.
    discovery: Find new or changed journal files.
    coordinator: Load files in parallel with a worker pool.
"""

from .models import (
    DEFAULT_COLUMNS,
    LogRecord,
    FileTask,
    FileAccessError,
)
from .lexer import (
    RecordLexer,
    KeyNormalizer,
    MalformedRecordError,
)
from .journal_reader import JournalReader
from .sink import (
    ClickHouseSink,
    SchemaError,
    SinkWriteError,
)
from .schema_sync import (
    SchemaSynchronizer,
    TableGuard,
)
from .event_registry import EventPropertyRegistry
from .discovery import (
    FileDiscovery,
    compute_file_fingerprint,
)
from .coordinator import (
    IngestionCoordinator,
    IngestionSummary,
    table_name_for,
)

__all__ = [
    # Data model
    "DEFAULT_COLUMNS",
    "LogRecord",
    "FileTask",
    "FileAccessError",
    # Lexing and reading
    "RecordLexer",
    "KeyNormalizer",
    "MalformedRecordError",
    "JournalReader",
    # Destination store
    "ClickHouseSink",
    "SchemaError",
    "SinkWriteError",
    "SchemaSynchronizer",
    "TableGuard",
    "EventPropertyRegistry",
    # Loading
    "FileDiscovery",
    "compute_file_fingerprint",
    "IngestionCoordinator",
    "IngestionSummary",
    "table_name_for",
]
