"""Pytest configuration and shared fixtures for journal loader tests."""

import os
import sys
import threading
from collections import OrderedDict
from unittest.mock import MagicMock

import pytest

# Ensure techjournal package is importable without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from techjournal.config.loader_config import LoaderConfig
from techjournal.ingestion.models import FileTask, LogRecord
from techjournal.ingestion.sink import SchemaError, SinkWriteError


class FakeSink:
    """In-memory stand-in for ClickHouseSink.

    Tables are ordered column -> type mappings plus a list of row dicts.
    Inserts fail when a column is not part of the table, which is how
    ClickHouse reacts to an unknown column.
    """

    def __init__(self):
        self.tables = {}
        self.rows = {}
        self.ddl = []
        self.insert_calls = []
        self.fail_inserts = False
        self._lock = threading.Lock()

    def table_exists(self, table_name):
        with self._lock:
            return table_name in self.tables

    def describe_table(self, table_name):
        with self._lock:
            if table_name not in self.tables:
                raise SchemaError(f"Table {table_name} does not exist")
            # ClickHouse reports column names without identifier quotes
            return {name.strip('"'): t for name, t in self.tables[table_name].items()}

    def create_table(self, table_name, columns, engine, order_by, partition_by):
        with self._lock:
            self.ddl.append(("create", table_name, tuple(columns)))
            self.tables.setdefault(table_name, OrderedDict(columns))
            self.rows.setdefault(table_name, [])

    def add_column(self, table_name, column, column_type):
        with self._lock:
            self.ddl.append(("add_column", table_name, column))
            self.tables[table_name].setdefault(column, column_type)

    def fetch_last_record(self, table_name, filename, parent):
        with self._lock:
            matching = [
                row for row in self.rows.get(table_name, [])
                if row["filename"] == filename and row["parent"] == parent
            ]
        if not matching:
            return None
        row = max(matching, key=lambda r: r["line_number"])
        return LogRecord.from_row(
            row["datetime"], row["duration"], row["event"], row["level"], row["line_number"]
        )

    def insert_rows(self, table_name, columns, rows):
        with self._lock:
            self.insert_calls.append((table_name, list(columns), len(rows)))
            if self.fail_inserts:
                raise SinkWriteError(f"Failed to insert {len(rows)} rows into '{table_name}'")
            if table_name not in self.tables:
                raise SinkWriteError(f"Table {table_name} does not exist")
            unknown = [c for c in columns if c not in self.tables[table_name]]
            if unknown:
                raise SinkWriteError(f"Unknown columns {unknown} in table {table_name}")
            for row in rows:
                self.rows[table_name].append(dict(zip(columns, row)))
            return len(rows)

    def create_pairs_table(self, table_name):
        with self._lock:
            self.ddl.append(("create", table_name, ("event", "property")))
            self.tables.setdefault(table_name, OrderedDict([("event", "String"), ("property", "String")]))
            self.rows.setdefault(table_name, [])

    def fetch_pairs(self, table_name):
        with self._lock:
            return [(r["event"], r["property"]) for r in self.rows.get(table_name, [])]


@pytest.fixture
def fake_sink():
    """Empty in-memory destination store."""
    return FakeSink()


@pytest.fixture
def loader_config():
    """Loader configuration with small batches for tests."""
    return LoaderConfig(threads_count=2, batch_size=2)


@pytest.fixture
def write_journal(tmp_path):
    """Factory writing a journal file and returning its FileTask.

    Usage:
        task = write_journal(["15:20.957001-3,DBMSSQL,2,OSThread=9952"])
    """

    def _write(lines, parent="rphost_1234", name="21102215.log", bom=False, raw=None):
        directory = tmp_path / parent
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        content = raw if raw is not None else "\r\n".join(lines) + "\r\n"
        data = content.encode("utf-8")
        if bom:
            data = b"\xef\xbb\xbf" + data
        path.write_bytes(data)
        return FileTask.from_path(str(path))

    return _write


@pytest.fixture
def mock_airflow_context():
    """Create a mock Airflow task context."""
    ti = MagicMock()
    ti.xcom_pull.return_value = None
    ti.xcom_push.return_value = None

    return {
        "ds": "2024-01-01",
        "ds_nodash": "20240101",
        "logical_date": "2024-01-01T00:00:00+00:00",
        "dag": MagicMock(dag_id="test_dag"),
        "task_instance": ti,
        "ti": ti,
        "params": {},
    }
