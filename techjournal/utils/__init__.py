"""Shared utility functions for the journal loader."""

from techjournal.utils.clickhouse_client import (
    ensure_database,
    execute_query,
    fetch_dataframe,
    get_clickhouse_connection,
    insert_rows,
)
from techjournal.utils.logging_config import file_logging_context, setup_logging

__all__ = [
    "get_clickhouse_connection",
    "execute_query",
    "fetch_dataframe",
    "insert_rows",
    "ensure_database",
    "setup_logging",
    "file_logging_context",
]
