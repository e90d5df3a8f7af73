"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Every backend supports a unit of work (`atomic`) that either commits all of
its writes or none of them, and a compare-and-set write used to guard loan
status transitions against concurrent callers.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Iterable
from decimal import Decimal
from datetime import datetime, date
from enum import Enum
import sqlite3
import json
import threading
import copy
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from contextlib import contextmanager

from .errors import DependencyFailure


def _to_storable(value: Any) -> Any:
    """Convert a Python value to a JSON-compatible one"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_storable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_storable(v) for v in value]
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    # Field name -> Enum/Decimal/datetime type, used by from_dict
    _enum_fields = {}
    _decimal_fields = ()
    _datetime_fields = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return _to_storable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in data.items() if k in known}

        for key in ('created_at', 'updated_at') + tuple(cls._datetime_fields):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        for key in cls._decimal_fields:
            if data.get(key) is not None:
                data[key] = Decimal(str(data[key]))
        for key, enum_type in cls._enum_fields.items():
            if isinstance(data.get(key), str):
                data[key] = enum_type(data[key])

        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    _lock: threading.RLock

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage (insert or overwrite)"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
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
        """
        Context manager for atomic operations

        Holds the backend lock for the whole unit of work, so units of work
        against the same store are serialized.
        """
        with self._lock:
            self.begin_transaction()
            try:
                yield
                self.commit()
            except Exception:
                self.rollback()
                raise

    def compare_and_set(
        self,
        table: str,
        record_id: str,
        field_name: str,
        expected: Union[Any, Iterable[Any]],
        data: Dict[str, Any]
    ) -> bool:
        """
        Overwrite a record only if one of its fields still holds the expected value

        Args:
            table: Table name
            record_id: Record to overwrite
            field_name: Field to compare, e.g. "status"
            expected: Expected value, or a list/tuple/set of acceptable values
            data: Full replacement record

        Returns:
            True if the write happened, False if the record was missing or
            the field no longer matched
        """
        if isinstance(expected, (list, tuple, set, frozenset)):
            accepted = set(expected)
        else:
            accepted = {expected}

        with self._lock:
            current = self.load(table, record_id)
            if current is None or current.get(field_name) not in accepted:
                return False
            self.save(table, record_id, data)
            return True


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._depth = 0

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, in insertion order"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(json.loads(json.dumps(record)))
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

    def begin_transaction(self) -> None:
        """Snapshot the data so a rollback can restore it"""
        with self._lock:
            if self._depth == 0:
                self._snapshot = copy.deepcopy(self._data)
            self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    self._snapshot = None

    def rollback(self) -> None:
        """Restore the snapshot taken by the outermost begin_transaction"""
        with self._lock:
            if self._depth > 0:
                self._data = self._snapshot
                self._snapshot = None
                self._depth = 0

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def get_all_data(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Get all data for debugging/inspection"""
        with self._lock:
            return json.loads(json.dumps(self._data, default=str))


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = set()

        with self._guard():
            # Set isolation_level to 'DEFERRED' to enable manual transaction control
            self._connection = sqlite3.connect(
                self.db_path, timeout=timeout,
                check_same_thread=False, isolation_level='DEFERRED'
            )
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @contextmanager
    def _guard(self):
        """Translate backend errors into DependencyFailure"""
        try:
            yield
        except sqlite3.Error as e:
            raise DependencyFailure(f"SQLite storage error: {e}") from e

    @property
    def _in_transaction(self) -> bool:
        return self._depth > 0

    def _maybe_commit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                data TEXT NOT NULL
            )
        """)
        self._maybe_commit()
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock, self._guard():
            self._ensure_table(table)
            data_json = json.dumps(data, default=str)

            # Upsert keeps the original insertion sequence
            self._connection.execute(f"""
                INSERT INTO {table} (id, data) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """, (record_id, data_json))
            self._maybe_commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, in insertion order"""
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY seq
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [
            record for record in self.load_all(table)
            if all(key in record and record[key] == value for key, value in filters.items())
        ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock, self._guard():
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._maybe_commit()

    def compare_and_set(
        self,
        table: str,
        record_id: str,
        field_name: str,
        expected: Union[Any, Iterable[Any]],
        data: Dict[str, Any]
    ) -> bool:
        """Conditional overwrite as a single UPDATE, checked against other connections too"""
        if isinstance(expected, (list, tuple, set, frozenset)):
            accepted = [_to_storable(v) for v in expected]
        else:
            accepted = [_to_storable(expected)]
        if not accepted:
            return False

        placeholders = ", ".join("?" for _ in accepted)
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                UPDATE {table} SET data = ?
                WHERE id = ? AND json_extract(data, ?) IN ({placeholders})
            """, [json.dumps(data, default=str), record_id, f"$.{field_name}"] + accepted)
            self._maybe_commit()
            return cursor.rowcount == 1

    def begin_transaction(self) -> None:
        """Start a database transaction, taking the write lock up front"""
        with self._lock, self._guard():
            if self._depth == 0:
                # Reads inside the unit of work must not go stale under another connection
                self._connection.execute("BEGIN IMMEDIATE")
            self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock, self._guard():
            if self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    self._connection.commit()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock, self._guard():
            if self._depth > 0:
                self._depth = 0
                self._connection.rollback()
                # Tables created inside the transaction are gone too
                self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(use_sqlite: bool, db_path: Union[str, Path] = ":memory:",
                   timeout: float = 5.0) -> StorageInterface:
    """Select a storage backend"""
    if use_sqlite:
        return SQLiteStorage(db_path, timeout=timeout)
    return InMemoryStorage()
