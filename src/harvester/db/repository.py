"""Database operations for scraping results."""

import asyncio
import json
import logging
import os
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

import aiosqlite

from ..models.scrape_models import Contact, JobResultRecord

# Set up logging
logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 1

# Database configuration
MAX_RETRIES = 3
RETRY_DELAY = 0.5  # seconds
BUSY_TIMEOUT_MS = 5000

# created_at is stored as UTC text with millisecond precision
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class DatabaseError(Exception):
    """Custom exception for database operations."""

    pass


class DatabaseLockError(DatabaseError):
    """Exception raised when database is locked."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Exception raised when database connection fails."""

    pass


def _day_start(day: date) -> str:
    return datetime(day.year, day.month, day.day).strftime("%Y-%m-%d %H:%M:%S")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    # Millisecond precision to match the column default
    return value.strftime(TIMESTAMP_FORMAT)[:-3]


class ResultsDatabase:
    """Append-only store of per-URL job results."""

    def __init__(self, db_path: str):
        """Create the handle and make sure the schema exists.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path

        # Ensure the database directory exists (only if directory part is non-empty)
        db_dirname = os.path.dirname(self.db_path)
        if db_dirname:
            os.makedirs(db_dirname, exist_ok=True)

        self._ensure_schema_sync()
        logger.info(f"Results database ready: {self.db_path}")

    def _ensure_schema_sync(self) -> None:
        """Create tables and indexes synchronously so the handle is usable at once."""
        with sqlite3.connect(self.db_path) as conn:
            c = conn.cursor()
            c.execute("""
                CREATE TABLE IF NOT EXISTS schema_version(
                    version INTEGER PRIMARY KEY,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            row = c.execute("SELECT MAX(version) FROM schema_version").fetchone()
            current_version = row[0] if row and row[0] is not None else 0

            if current_version < SCHEMA_VERSION:
                logger.info(
                    f"Upgrading schema from version {current_version} to {SCHEMA_VERSION}"
                )
                c.execute("""
                    CREATE TABLE IF NOT EXISTS scraping_results(
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        batch_id TEXT NOT NULL,
                        url TEXT NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('success', 'error')),
                        contacts TEXT,
                        error_message TEXT,
                        created_at TEXT NOT NULL
                            DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
                    )
                """)
                c.execute(
                    "CREATE INDEX IF NOT EXISTS idx_results_batch_id ON scraping_results(batch_id)"
                )
                c.execute(
                    "CREATE INDEX IF NOT EXISTS idx_results_created_at ON scraping_results(created_at)"
                )
                c.execute(
                    "INSERT OR REPLACE INTO schema_version(version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
            conn.commit()

    async def ainit(self) -> "ResultsDatabase":
        """
        Async helper so callers can do:

            db = await ResultsDatabase(path).ainit()

        It verifies the database answers before the handle is handed out.
        """
        if not await self.check_connection():
            raise DatabaseConnectionError(f"Cannot open database at {self.db_path}")
        return self

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=BUSY_TIMEOUT_MS / 1000)

    async def check_connection(self) -> bool:
        """Check if the database connection is working."""
        try:
            async with self._connect() as conn:
                async with conn.execute("SELECT 1") as cursor:
                    await cursor.fetchone()
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    async def insert_result(self, record: JobResultRecord) -> int:
        """Append one job result row with retry logic.

        Returns:
            int: The id of the new row
        """
        contacts_json = None
        if record.contacts is not None:
            contacts_json = json.dumps([c.model_dump() for c in record.contacts])

        if record.created_at is None:
            query = (
                "INSERT INTO scraping_results (batch_id, url, status, contacts, error_message) "
                "VALUES (?, ?, ?, ?, ?)"
            )
            params: Tuple = (
                record.batch_id, record.url, record.status, contacts_json, record.error_message,
            )
        else:
            query = (
                "INSERT INTO scraping_results "
                "(batch_id, url, status, contacts, error_message, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)"
            )
            params = (
                record.batch_id, record.url, record.status, contacts_json,
                record.error_message, _format_timestamp(record.created_at),
            )

        for attempt in range(MAX_RETRIES):
            try:
                async with self._connect() as conn:
                    cursor = await conn.execute(query, params)
                    await conn.commit()
                    return cursor.lastrowid
            except sqlite3.OperationalError as e:
                if "locked" not in str(e).lower():
                    raise DatabaseError(f"Failed to insert result: {str(e)}") from e
                if attempt == MAX_RETRIES - 1:
                    raise DatabaseLockError(
                        f"Database locked, insert failed after {MAX_RETRIES} attempts"
                    ) from e
                logger.warning(
                    f"Database locked, attempt {attempt + 1}/{MAX_RETRIES}: {str(e)}"
                )
                await asyncio.sleep(RETRY_DELAY * (attempt + 1))
            except sqlite3.Error as e:
                raise DatabaseError(f"Failed to insert result: {str(e)}") from e
        raise DatabaseError("Failed to insert result")

    async def fetch_batch_rows(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Tuple[str, datetime]]:
        """Return (batch_id, created_at) for every row, oldest first.

        Args:
            start_date: Keep rows created on or after this day
            end_date: Keep rows created on or before this day (whole day included)
        """
        query = "SELECT batch_id, created_at FROM scraping_results"
        clauses: List[str] = []
        params: List[str] = []
        if start_date is not None:
            clauses.append("created_at >= ?")
            params.append(_day_start(start_date))
        if end_date is not None:
            clauses.append("created_at < ?")
            params.append(_day_start(end_date + timedelta(days=1)))
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC, id ASC"

        try:
            async with self._connect() as conn:
                async with conn.execute(query, params) as cursor:
                    rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to fetch batch rows: {str(e)}") from e
        return [(batch_id, _parse_timestamp(created_at)) for batch_id, created_at in rows]

    async def get_batch_results(self, batch_id: str) -> List[JobResultRecord]:
        """All rows of one batch, oldest first, with contacts decoded."""
        query = (
            "SELECT batch_id, url, status, contacts, error_message, created_at "
            "FROM scraping_results WHERE batch_id = ? ORDER BY created_at ASC, id ASC"
        )
        try:
            async with self._connect() as conn:
                async with conn.execute(query, (batch_id,)) as cursor:
                    rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to fetch batch {batch_id}: {str(e)}") from e

        records: List[JobResultRecord] = []
        for row_batch_id, url, status, contacts_json, error_message, created_at in rows:
            contacts = None
            if contacts_json:
                try:
                    contacts = [Contact(**c) for c in json.loads(contacts_json)]
                except (ValueError, TypeError) as e:
                    logger.warning(f"Unreadable contacts for {url} in batch {batch_id}: {e}")
            records.append(
                JobResultRecord(
                    batch_id=row_batch_id,
                    url=url,
                    status=status,
                    contacts=contacts,
                    error_message=error_message,
                    created_at=_parse_timestamp(created_at),
                )
            )
        return records

    async def delete_batch(self, batch_id: str) -> int:
        """Delete every row of a batch; returns the number of rows removed."""
        try:
            async with self._connect() as conn:
                cursor = await conn.execute(
                    "DELETE FROM scraping_results WHERE batch_id = ?", (batch_id,)
                )
                await conn.commit()
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to delete batch {batch_id}: {str(e)}") from e
        logger.info(f"Deleted {deleted} rows for batch {batch_id}")
        return deleted

    async def close(self) -> None:
        """Connections are per-operation; nothing is held open between calls."""
        logger.debug(f"Results database closed: {self.db_path}")
