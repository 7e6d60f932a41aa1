"""
Storage Backend Module

Provides the persistence interface used by the services and two
implementations: in-memory (testing) and SQLite (persistence). Records are
JSON documents keyed by id; all monetary values are stored as Decimal strings
and all timestamps as ISO-8601 strings with microsecond precision.

Ordering and limiting are explicit parameters of ``find`` so callers state
exactly which rows they expect back. Rows that tie on the ordering key come
back in reverse insertion order when descending, insertion order otherwise.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import re
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class DuplicateKeyError(Exception):
    """Raised by insert when a primary or unique key is already taken"""

    def __init__(self, table: str, field: str, value: Any):
        self.table = table
        self.field = field
        self.value = value
        super().__init__(f"Duplicate value for {table}.{field}")


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime so that string order equals time order"""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = format_timestamp(value)
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Iterable[str] = ()) -> None:
        """
        Insert a new record.

        Raises:
            DuplicateKeyError: If record_id or any unique field value is taken
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any], order_by: Optional[str] = None,
             descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        pass

    @abstractmethod
    def update_if(self, table: str, record_id: str, expected: Dict[str, Any],
                  changes: Dict[str, Any]) -> bool:
        """
        Apply changes only if the stored record still has the expected values.

        Returns:
            True if the record was updated
        """
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete all records matching filters, returning how many were removed"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def find_one(self, table: str, filters: Dict[str, Any], order_by: Optional[str] = None,
                 descending: bool = False) -> Optional[Dict[str, Any]]:
        """First record matching filters under the given ordering"""
        results = self.find(table, filters, order_by=order_by, descending=descending, limit=1)
        return results[0] if results else None

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self._data:
            self._data[table] = {}
        return self._data[table]

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        # Round-trip through JSON so callers never share state with the store
        return json.loads(json.dumps(record, default=str))

    @staticmethod
    def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        for key, value in filters.items():
            if key not in record or record[key] != value:
                return False
        return True

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            rows = self._ensure_table(table)
            rows[record_id] = self._copy(data)

    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Iterable[str] = ()) -> None:
        with self._lock:
            rows = self._ensure_table(table)
            if record_id in rows:
                raise DuplicateKeyError(table, "id", record_id)
            for field_name in unique_fields:
                value = data.get(field_name)
                if any(row.get(field_name) == value for row in rows.values()):
                    raise DuplicateKeyError(table, field_name, value)
            rows[record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._ensure_table(table).get(record_id)
            if record:
                return self._copy(record)
            return None

    def find(self, table: str, filters: Dict[str, Any], order_by: Optional[str] = None,
             descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            results = [
                record for record in self._ensure_table(table).values()
                if self._matches(record, filters)
            ]
            if order_by:
                if descending:
                    # sort() is stable, so reversing first puts later inserts first among ties
                    results.reverse()
                results.sort(key=lambda record: record.get(order_by), reverse=descending)
            if limit is not None:
                results = results[:limit]
            return [self._copy(record) for record in results]

    def update_if(self, table: str, record_id: str, expected: Dict[str, Any],
                  changes: Dict[str, Any]) -> bool:
        with self._lock:
            record = self._ensure_table(table).get(record_id)
            if record is None or not self._matches(record, expected):
                return False
            record.update(self._copy(changes))
            return True

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            rows = self._ensure_table(table)
            if record_id in rows:
                del rows[record_id]
                return True
            return False

    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        with self._lock:
            rows = self._ensure_table(table)
            doomed = [record_id for record_id, record in rows.items() if self._matches(record, filters)]
            for record_id in doomed:
                del rows[record_id]
            return len(doomed)

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._ensure_table(table)

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._ensure_table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        _check_identifier(table)
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._maybe_commit()
            self._tables.add(table)

    def _maybe_commit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    @staticmethod
    def _where(filters: Dict[str, Any]):
        conditions = []
        params = []
        for key, value in filters.items():
            conditions.append(f"json_extract(data, '$.{_check_identifier(key)}') = ?")
            if isinstance(value, bool):
                value = int(value)
            params.append(value)
        clause = " AND ".join(conditions) if conditions else "1 = 1"
        return clause, params

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = format_timestamp(datetime.now(timezone.utc))
            data_json = json.dumps(data, default=str)

            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))
            self._maybe_commit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Iterable[str] = ()) -> None:
        with self._lock:
            self._ensure_table(table)
            for field_name in unique_fields:
                clause, params = self._where({field_name: data.get(field_name)})
                cursor = self._connection.execute(
                    f"SELECT 1 FROM {table} WHERE {clause} LIMIT 1", params
                )
                if cursor.fetchone() is not None:
                    raise DuplicateKeyError(table, field_name, data.get(field_name))

            now = format_timestamp(datetime.now(timezone.utc))
            try:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, json.dumps(data, default=str), now, now))
            except sqlite3.IntegrityError:
                raise DuplicateKeyError(table, "id", record_id)
            self._maybe_commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def find(self, table: str, filters: Dict[str, Any], order_by: Optional[str] = None,
             descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            clause, params = self._where(filters)
            direction = "DESC" if descending else "ASC"
            if order_by:
                ordering = f"json_extract(data, '$.{_check_identifier(order_by)}') {direction}, rowid {direction}"
            else:
                ordering = "rowid ASC"
            sql = f"SELECT data FROM {table} WHERE {clause} ORDER BY {ordering}"
            if limit is not None:
                sql += " LIMIT ?"
                params.append(int(limit))
            cursor = self._connection.execute(sql, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def update_if(self, table: str, record_id: str, expected: Dict[str, Any],
                  changes: Dict[str, Any]) -> bool:
        if not changes:
            raise ValueError("update_if requires at least one change")
        with self._lock:
            self._ensure_table(table)
            clause, params = self._where(expected)
            assignments = []
            values = []
            for key, value in changes.items():
                assignments.append(f"'$.{_check_identifier(key)}', json(?)")
                values.append(json.dumps(value, default=str))
            now = format_timestamp(datetime.now(timezone.utc))
            # Single statement, so the compare and the write cannot interleave
            cursor = self._connection.execute(f"""
                UPDATE {table}
                SET data = json_set(data, {', '.join(assignments)}), updated_at = ?
                WHERE id = ? AND {clause}
            """, values + [now, record_id] + params)
            self._maybe_commit()
            return cursor.rowcount > 0

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0

    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        with self._lock:
            self._ensure_table(table)
            clause, params = self._where(filters)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE {clause}", params)
            self._maybe_commit()
            return cursor.rowcount

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._maybe_commit()

    @contextmanager
    def atomic(self):
        """Atomic block holding the connection lock until commit or rollback"""
        # One connection serves every thread; other writers wait for this block
        with self._lock:
            self.begin_transaction()
            try:
                yield
                self.commit()
            except Exception:
                self.rollback()
                raise

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # isolation_level='DEFERRED' opens the transaction on the next write
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False
                # A rollback may undo a CREATE TABLE issued inside the transaction
                self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    ``memory://`` gives InMemoryStorage, ``sqlite:///<path>`` gives
    SQLiteStorage (``sqlite:///:memory:`` for a private in-memory database).
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
