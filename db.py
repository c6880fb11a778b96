"""
Database connection utilities for Aquamonitor.

SQLite with WAL mode. The database file lives under DATA_DIR and is
resolved on every connection so tests can point DATA_DIR at a temp dir.
"""

import os
import sqlite3
import logging
from contextlib import contextmanager

from config import Config

logger = logging.getLogger(__name__)


class RecordNotFound(ValueError):
    """Raised when a requested row does not exist."""


def get_db_path():
    """Return the SQLite path, creating DATA_DIR if needed."""
    data_dir = os.environ.get('DATA_DIR', Config.DATA_DIR)
    if not os.path.exists(data_dir):
        os.makedirs(data_dir, exist_ok=True)
    return os.path.join(data_dir, Config.DB_FILENAME)


@contextmanager
def get_db(db_path=None):
    """
    Context manager for database connections.

    Usage:
        with get_db() as conn:
            conn.execute('SELECT ...')

    Commits on success, rolls back and re-raises on error.
    """
    if db_path is None:
        db_path = get_db_path()
    conn = sqlite3.connect(db_path)
    conn.execute('PRAGMA journal_mode=WAL')
    conn.execute('PRAGMA foreign_keys=ON')
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def add_column(conn, table, column, col_type):
    """Add a column to a table if it doesn't exist."""
    existing = {row['name'] for row in conn.execute(f'PRAGMA table_info({table})')}
    if column not in existing:
        conn.execute(f'ALTER TABLE {table} ADD COLUMN {column} {col_type}')


def init_all_tables():
    """Initialize database tables for every module, in dependency order."""
    from amenity_limits import init_amenity_tables
    from elements import init_element_tables
    from analyses import init_analysis_tables

    for init_fn in (init_amenity_tables, init_element_tables, init_analysis_tables):
        init_fn()
    logger.info(f"Database ready at {get_db_path()}")
