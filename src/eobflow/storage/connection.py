"""Shared psycopg connection handling."""

import logging
from contextlib import contextmanager
from typing import Optional

import psycopg
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)


class PostgresClient:
    """Lazily connected PostgreSQL client with explicit transactions."""

    def __init__(self, database_url: str):
        """Initialize client.

        Args:
            database_url: PostgreSQL connection string
        """
        self.database_url = database_url
        self._conn: Optional[psycopg.Connection] = None

    def connect(self):
        """Establish database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg.connect(
                self.database_url,
                row_factory=dict_row,
                autocommit=False,  # Transactions are managed explicitly
            )
            logger.info(f"{type(self).__name__} connection established")
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info(f"{type(self).__name__} connection closed")

    @contextmanager
    def transaction(self):
        """Context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                conn.execute("UPDATE ...")
                # Commits on success, rolls back on exception

        Yields:
            psycopg.Connection: Database connection object
        """
        conn = self.connect()
        try:
            yield conn
            conn.commit()
            logger.debug("Transaction committed")
        except Exception as e:
            conn.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise
