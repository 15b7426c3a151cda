"""
Database path configuration and connection helper.

Only the storage collaborator (unveil.storage) opens connections; the
analysis core never touches the database.

Usage:
    from unveil.config import UNVEIL_DB_PATH, get_connection

    conn = get_connection(read_only=True)
"""

import os
from pathlib import Path
from typing import Union

import duckdb


# Default database path - can be overridden via environment variable
UNVEIL_DB_PATH = Path(os.getenv("UNVEIL_DB_PATH", "data/unveil.duckdb"))


def get_connection(
    db_path: Union[str, Path, None] = None, read_only: bool = False
) -> duckdb.DuckDBPyConnection:
    """
    Get a DuckDB connection.

    Args:
        db_path: Database file (":memory:" for an in-memory database);
            defaults to UNVEIL_DB_PATH
        read_only: If True, open connection in read-only mode

    Returns:
        DuckDB connection object

    Example:
        >>> conn = get_connection(":memory:")
        >>> conn.execute("SELECT 42").fetchone()
        (42,)
        >>> conn.close()
    """
    path = str(db_path) if db_path is not None else str(UNVEIL_DB_PATH)
    if path != ":memory:" and not read_only:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(path, read_only=read_only)
