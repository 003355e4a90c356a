"""ClickHouse sink for journal records.

Wraps the DDL, introspection and insert statements the loader needs.
Introspection and DDL failures surface as SchemaError; insert failures
as SinkWriteError.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.engine import Engine

from techjournal.utils.clickhouse_client import execute_query, fetch_dataframe, insert_rows

from .models import LogRecord

log = logging.getLogger(__name__)


class SchemaError(Exception):
    """Raised when a DDL or introspection statement fails."""


class SinkWriteError(Exception):
    """Raised when a batch insert fails."""


class ClickHouseSink:
    """Destination store operations over a SQLAlchemy engine.

    Args:
        engine: SQLAlchemy engine bound to the target database.
        database: Database name used to qualify DESCRIBE statements.
    """

    def __init__(self, engine: Engine, database: str = "default"):
        self.engine = engine
        self.database = database

    def _ddl(self, sql: str, params: Optional[dict] = None) -> List[tuple]:
        try:
            return execute_query(sql, self.engine, params=params)
        except Exception as exc:
            raise SchemaError(f"Failed to execute '{sql[:200]}': {exc}") from exc

    def table_exists(self, table_name: str) -> bool:
        rows = self._ddl(f"EXISTS TABLE {table_name}")
        return bool(rows) and str(rows[0][0]) == "1"

    def describe_table(self, table_name: str) -> Dict[str, str]:
        """Return the live column name -> type mapping of a table."""
        sql = f"DESCRIBE TABLE {self.database}.{table_name}"
        try:
            df = fetch_dataframe(sql, self.engine)
        except Exception as exc:
            raise SchemaError(f"Failed to describe table '{table_name}': {exc}") from exc
        if df.empty:
            return {}
        names = df["name"] if "name" in df.columns else df.iloc[:, 0]
        types = df["type"] if "type" in df.columns else df.iloc[:, 1]
        return {str(n): str(t) for n, t in zip(names, types)}

    def create_table(
        self,
        table_name: str,
        columns: Mapping[str, str],
        engine: str,
        order_by: str,
        partition_by: str,
    ) -> None:
        column_sql = ",\n    ".join(f"{name} {ctype}" for name, ctype in columns.items())
        sql = (
            f"CREATE TABLE IF NOT EXISTS {table_name} (\n    {column_sql}\n) "
            f"ENGINE = {engine} "
            f"ORDER BY ({order_by}) "
            f"PARTITION BY ({partition_by})"
        )
        self._ddl(sql)
        log.info("Created table %s with %d columns", table_name, len(columns))
        log.debug("CREATE TABLE statement: %s", sql)

    def add_column(self, table_name: str, column: str, column_type: str) -> None:
        sql = f"ALTER TABLE {table_name} ADD COLUMN IF NOT EXISTS {column} {column_type}"
        log.debug("Adding column: %s", sql)
        self._ddl(sql)

    def fetch_last_record(self, table_name: str, filename: str, parent: str) -> Optional[LogRecord]:
        """Return the loaded row with the highest line number for a file.

        Line number rather than time decides, since journal records may be
        written slightly out of timestamp order.
        """
        sql = (
            f"SELECT datetime, duration, event, level, line_number FROM {table_name} "
            "WHERE filename = :filename AND parent = :parent "
            "ORDER BY line_number DESC LIMIT 1"
        )
        try:
            df = fetch_dataframe(sql, self.engine, params={"filename": filename, "parent": parent})
        except Exception as exc:
            raise SchemaError(
                f"Failed to query last record of '{parent}/{filename}' in '{table_name}': {exc}"
            ) from exc
        if df.empty:
            return None
        row = df.iloc[0]
        return LogRecord.from_row(
            row["datetime"], row["duration"], row["event"], row["level"], row["line_number"]
        )

    def insert_rows(self, table_name: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> int:
        try:
            return insert_rows(table_name, columns, rows, self.engine)
        except Exception as exc:
            raise SinkWriteError(
                f"Failed to insert {len(rows)} rows into '{table_name}': {exc}"
            ) from exc

    def create_pairs_table(self, table_name: str) -> None:
        """Create the two-column event/property metadata table."""
        self._ddl(
            f"CREATE TABLE IF NOT EXISTS {table_name} (event String, property String) "
            "ENGINE = MergeTree ORDER BY (event)"
        )
        log.info("Created table %s", table_name)

    def fetch_pairs(self, table_name: str) -> List[Tuple[str, str]]:
        try:
            df = fetch_dataframe(f"SELECT event, property FROM {table_name}", self.engine)
        except Exception as exc:
            raise SchemaError(f"Failed to read '{table_name}': {exc}") from exc
        return [(str(e), str(p)) for e, p in zip(df["event"], df["property"])] if not df.empty else []
