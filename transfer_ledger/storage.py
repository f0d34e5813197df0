"""
Storage Backend Module

Provides the abstract Ledger Store interface and implementations for in-memory
(testing) and SQLite (persistence). All monetary values stored as Decimal
strings. Rows get integer ids assigned by the store.

Atomic units are serialized: a backend holds its lock for the whole unit, so a
"check balance, then decrement" sequence can never interleave with another
unit touching the same rows.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import copy
import json
import re
import sqlite3
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager

T = TypeVar("T")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StorageError(Exception):
    """Raised by storage backends for any underlying store failure"""


class DuplicateKeyError(StorageError):
    """Raised when a write violates a unique key constraint"""

    def __init__(self, table: str, field: str, value: Any):
        super().__init__(f"Duplicate value {value!r} for {table}.{field}")
        self.table = table
        self.field = field
        self.value = value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: Optional[int]
    created_at: datetime
    updated_at: datetime

    # Fields held on the object but never written to storage
    transient_fields = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = {}
        for f in fields(self):
            if f.name in self.transient_fields:
                continue
            value = getattr(self, f.name)
            # Convert datetime, Decimal and Enum values to JSON-safe forms
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, Enum):
                value = value.value
            result[f.name] = value
        return result

    @classmethod
    def _parse_common(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Convert ISO strings back to datetime objects"""
        data = dict(data)
        for key in ('created_at', 'updated_at'):
            if key in data and isinstance(data[key], str):
                data[key] = datetime.fromisoformat(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        return cls(**cls._parse_common(data))


def _copy_record(data: Dict[str, Any]) -> Dict[str, Any]:
    # JSON round trip doubles as a deep copy and a serializability check
    return json.loads(json.dumps(data, default=str))


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise StorageError(f"Invalid identifier: {name!r}")
    return name


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0

    @abstractmethod
    def insert(self, table: str, data: Dict[str, Any]) -> int:
        """Insert a new record and return its assigned id"""
        pass

    @abstractmethod
    def save(self, table: str, record_id: int, data: Dict[str, Any]) -> None:
        """Save a record to storage (full-row upsert)"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, ordered by id"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters, ordered by id"""
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
    def _ensure_table(self, table: str) -> None:
        pass

    def ensure_table(self, table: str) -> None:
        """Create a table up front, outside any atomic unit"""
        with self._lock:
            self._ensure_table(table)

    @abstractmethod
    def ensure_unique(self, table: str, field: str) -> None:
        """Declare a unique key on a record field"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a database transaction"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit current transaction"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Rollback current transaction"""
        pass

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations

        Commits on success and rolls back on any exception, including
        KeyboardInterrupt and other BaseException subclasses. Nested units
        join the outermost one.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self.begin_transaction()
            self._depth = 1
            try:
                yield
                self._depth = 0
                self.commit()
            except BaseException:
                self._depth = 0
                self.rollback()
                raise

    def run_in_transaction(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run fn inside one atomic unit and return its result"""
        with self.atomic():
            return fn(*args, **kwargs)


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._unique: Dict[str, Set[str]] = {}
        self._snapshot = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}
            self._sequences.setdefault(table, 0)

    def _check_unique(self, table: str, data: Dict[str, Any], record_id: Optional[int] = None) -> None:
        for field in self._unique.get(table, ()):
            value = data.get(field)
            for existing_id, record in self._data[table].items():
                if existing_id != record_id and record.get(field) == value:
                    raise DuplicateKeyError(table, field, value)

    def insert(self, table: str, data: Dict[str, Any]) -> int:
        """Insert a record and assign the next id"""
        with self._lock:
            self._ensure_table(table)
            self._check_unique(table, data)
            self._sequences[table] += 1
            record_id = self._sequences[table]
            record = _copy_record(data)
            record['id'] = record_id
            self._data[table][record_id] = record
            return record_id

    def save(self, table: str, record_id: int, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._check_unique(table, data, record_id)
            record = _copy_record(data)
            record['id'] = record_id
            self._data[table][record_id] = record
            self._sequences[table] = max(self._sequences[table], record_id)

    def load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return _copy_record(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [_copy_record(self._data[table][key]) for key in sorted(self._data[table])]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for key in sorted(self._data[table]):
                record = self._data[table][key]
                if all(k in record and record[k] == v for k, v in filters.items()):
                    results.append(_copy_record(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def ensure_unique(self, table: str, field: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._unique.setdefault(table, set()).add(field)

    def begin_transaction(self) -> None:
        """Snapshot all tables so the unit can be undone"""
        with self._lock:
            self._snapshot = (copy.deepcopy(self._data), dict(self._sequences))

    def commit(self) -> None:
        with self._lock:
            self._snapshot = None

    def rollback(self) -> None:
        """Restore the snapshot taken at the start of the unit"""
        with self._lock:
            if self._snapshot is not None:
                self._data, self._sequences = self._snapshot
                self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout: float = 5.0):
        super().__init__()
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are opened explicitly with BEGIN IMMEDIATE
        try:
            self._connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
                timeout=busy_timeout,
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open database {self.db_path}: {e}") from e
        self._connection.row_factory = sqlite3.Row
        self._tables: Set[str] = set()
        self._unique: Dict[str, Set[str]] = {}
        self._in_transaction = False

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock, self._translate_errors():
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    @contextmanager
    def _translate_errors(self, table: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """Re-raise sqlite3 errors as StorageError"""
        try:
            yield
        except sqlite3.IntegrityError as e:
            if table and data is not None:
                for field in self._unique.get(table, ()):
                    if f"uq_{table}_{field}" in str(e):
                        raise DuplicateKeyError(table, field, data.get(field)) from e
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        _check_identifier(table)
        with self._lock, self._translate_errors():
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # Create index on timestamps for better query performance
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
        # DDL inside an open unit is undone by a rollback, so only cache it once committed
        if not self._in_transaction:
            self._tables.add(table)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Dict[str, Any]:
        record = json.loads(row['data'])
        record['id'] = row['id']
        return record

    @staticmethod
    def _encode(data: Dict[str, Any]) -> str:
        payload = {k: v for k, v in data.items() if k != 'id'}
        return json.dumps(payload, default=str)

    def insert(self, table: str, data: Dict[str, Any]) -> int:
        """Insert a record and return the id SQLite assigned"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            with self._translate_errors(table, data):
                cursor = self._connection.execute(f"""
                    INSERT INTO {table} (data, created_at, updated_at)
                    VALUES (?, ?, ?)
                """, (self._encode(data), now, now))
            return cursor.lastrowid

    def save(self, table: str, record_id: int, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            with self._translate_errors(table, data):
                cursor = self._connection.execute(f"""
                    UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?
                """, (self._encode(data), now, record_id))
                if cursor.rowcount == 0:
                    self._connection.execute(f"""
                        INSERT INTO {table} (id, data, created_at, updated_at)
                        VALUES (?, ?, ?, ?)
                    """, (record_id, self._encode(data), now, now))

    def load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    SELECT id, data FROM {table} WHERE id = ?
                """, (record_id,))
                row = cursor.fetchone()
            if row:
                return self._row_to_record(row)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return self.find(table, {})

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        with self._lock:
            self._ensure_table(table)
            conditions = []
            params = []
            for key, value in filters.items():
                conditions.append(f"json_extract(data, '$.{_check_identifier(key)}') IS ?")
                params.append(value)

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    SELECT id, data FROM {table}
                    {where_clause}
                    ORDER BY id
                """, params)
                return [self._row_to_record(row) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    SELECT COUNT(*) as count FROM {table}
                """)
                return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                self._connection.execute(f"DELETE FROM {table}")

    def ensure_unique(self, table: str, field: str) -> None:
        """Create a unique expression index over a JSON field"""
        _check_identifier(field)
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                self._connection.execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field}
                    ON {table}(json_extract(data, '$.{field}'))
                """)
            self._unique.setdefault(table, set()).add(field)

    def begin_transaction(self) -> None:
        """Start a write transaction; takes the database write lock up front"""
        with self._lock:
            if not self._in_transaction:
                with self._translate_errors():
                    self._connection.execute("BEGIN IMMEDIATE")
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                try:
                    with self._translate_errors():
                        self._connection.execute("COMMIT")
                finally:
                    self._in_transaction = self._connection.in_transaction

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._in_transaction = False
                if self._connection.in_transaction:
                    with self._translate_errors():
                        self._connection.execute("ROLLBACK")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
