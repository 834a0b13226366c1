"""
Database connection helper for SQLite.
"""

import sqlite3
from pathlib import Path

import config
from sop_engine.db.models import SCHEMA
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)


def get_db_connection(db_path: str = None) -> sqlite3.Connection:
    """Get SQLite connection with row factory"""
    db_path = Path(db_path or config.DATABASE_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # The API serves requests from a thread pool as well as the event loop
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    return conn


def init_database(conn: sqlite3.Connection = None):
    """Initialize database with schema"""
    own = conn is None
    conn = conn or get_db_connection()
    try:
        conn.executescript(SCHEMA)
        conn.commit()
        logger.info("Database initialized")
    finally:
        if own:
            conn.close()
