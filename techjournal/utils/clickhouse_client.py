"""ClickHouse client utilities for the journal loader."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from techjournal.config.loader_config import ClickHouseConfig, ConfigurationError

log = logging.getLogger(__name__)


def get_clickhouse_connection(
    config: Optional[ClickHouseConfig] = None,
    connection_string: Optional[str] = None,
) -> Engine:
    """Create a SQLAlchemy engine for ClickHouse.

    Args:
        config: ClickHouse configuration (defaults are used if omitted).
        connection_string: Optional explicit connection string, which
            takes precedence over ``config``.

    Returns:
        SQLAlchemy Engine instance.
    """
    if connection_string is None:
        connection_string = (config or ClickHouseConfig()).connection_string

    engine = create_engine(
        connection_string,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
    log.info("ClickHouse engine created")
    return engine


@contextmanager
def _get_connection(engine: Engine):
    """Context manager for database connections with automatic cleanup."""
    conn = engine.connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def execute_query(sql: str, engine: Engine, params: Optional[dict] = None) -> List[tuple]:
    """Execute a SQL statement and return any result rows.

    Args:
        sql: SQL statement.
        engine: SQLAlchemy engine.
        params: Optional query parameters.

    Returns:
        List of result row tuples (empty for statements without rows).
    """
    with _get_connection(engine) as conn:
        result = conn.execute(text(sql), params or {})
        rows = [tuple(row) for row in result] if result.returns_rows else []
        log.debug("Executed query: %s", sql[:100])
        return rows


def fetch_dataframe(sql: str, engine: Engine, params: Optional[dict] = None) -> pd.DataFrame:
    """Execute a SQL query and return results as a pandas DataFrame.

    Args:
        sql: SQL query string.
        engine: SQLAlchemy engine.
        params: Optional query parameters.

    Returns:
        pandas DataFrame with query results.
    """
    with engine.connect() as conn:
        df = pd.read_sql(text(sql), conn, params=params or {})
    log.debug("Fetched DataFrame with %d rows from query: %s", len(df), sql[:100])
    return df


def insert_rows(
    table_name: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    engine: Engine,
) -> int:
    """Insert rows into a table with one parameterized batch statement.

    Column names are used verbatim (already quoted where needed); values
    are always bound as parameters.

    Args:
        table_name: Target table name.
        columns: Column names in row order.
        rows: Row value sequences, each aligned with ``columns``.
        engine: SQLAlchemy engine.

    Returns:
        Number of rows inserted.
    """
    if not rows:
        return 0

    placeholders = ", ".join(f":p{i}" for i in range(len(columns)))
    sql = f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES ({placeholders})"
    params: List[Dict[str, Any]] = [
        {f"p{i}": value for i, value in enumerate(row)} for row in rows
    ]
    with _get_connection(engine) as conn:
        conn.execute(text(sql), params)
    log.debug("Inserted %d rows into %s", len(rows), table_name)
    return len(rows)


def ensure_database(config: ClickHouseConfig, create: bool = True) -> None:
    """Check that the configured database exists, optionally creating it.

    Connects through the ``system`` database so a missing target database
    does not prevent the check itself.

    Args:
        config: ClickHouse configuration.
        create: Create the database when it is missing.

    Raises:
        ConfigurationError: If ClickHouse is unreachable, or the database
            is missing and ``create`` is False.
    """
    engine = get_clickhouse_connection(connection_string=config.url_for("system"))
    try:
        rows = execute_query(
            "SELECT name FROM system.databases WHERE name = :name",
            engine,
            params={"name": config.database},
        )
        if rows:
            return
        if not create:
            raise ConfigurationError(f"Database '{config.database}' does not exist")
        execute_query(f"CREATE DATABASE IF NOT EXISTS {config.database}", engine)
        log.info("Created database %s", config.database)
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(
            f"Failed to reach ClickHouse at {config.host}:{config.port}: {exc}"
        ) from exc
    finally:
        engine.dispose()
