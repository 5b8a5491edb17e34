"""Persistent indexed record storage.

A :class:`Store` maps an index (raw bytes) to one pydantic record. How the
index is derived from a record is left to an :class:`Indexer`, so the same
engine can hold any record type whose natural key differs.

SQLite layout
-------------
Table ``records``:
  key    BLOB PRIMARY KEY   index produced by the indexer
  value  BLOB NOT NULL      JSON-encoded record (private to the store)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Generic, Iterator, Optional, Protocol, TypeVar, Union

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
T_contra = TypeVar("T_contra", contravariant=True)

MAX_UPDATE_RETRIES = 16
_ITER_BATCH_SIZE = 64


class StoreError(Exception):
    """Base class for storage failures."""


class StoreIOError(StoreError):
    """Raised when the storage medium cannot be opened or accessed."""


class StoreFormatError(StoreError):
    """Raised when stored bytes do not decode as the expected record type."""


class UpdateConflictError(StoreError):
    """Raised when a read-modify-write keeps losing to concurrent writers."""


class Indexer(Protocol[T_contra]):
    """Derives the storage index of a record from the record itself."""

    def index(self, value: T_contra) -> bytes: ...


class Store(Generic[T]):
    """SQLite-backed durable map from index to record.

    Thread-safe via a reentrant lock around the shared connection. ``update``
    additionally uses compare-and-swap on the stored bytes so it stays atomic
    against writers in other processes.
    """

    def __init__(self, path: Union[str, Path], model: type[T], indexer: Indexer[T]) -> None:
        self.path = Path(path)
        self.model = model
        self.indexer = indexer
        self._lock = threading.RLock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        except (OSError, sqlite3.Error) as exc:
            raise StoreIOError(f"Cannot open store at {self.path}: {exc}") from exc
        self._create_tables()
        logger.debug("Opened store %s for %s", self.path, model.__name__)

    @classmethod
    def open(cls, path: Union[str, Path], model: type[T], indexer: Indexer[T]) -> Store[T]:
        return cls(path, model, indexer)

    def _create_tables(self) -> None:
        with self._lock:
            try:
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA busy_timeout=5000")
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS records (
                        key   BLOB PRIMARY KEY,
                        value BLOB NOT NULL
                    ) WITHOUT ROWID
                    """
                )
                self._conn.commit()
            except sqlite3.DatabaseError as exc:
                self._conn.close()
                if isinstance(exc, sqlite3.OperationalError):
                    raise StoreIOError(f"Cannot access store at {self.path}: {exc}") from exc
                raise StoreFormatError(f"{self.path} is not a valid store: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set(self, value: T) -> None:
        """Insert *value*, replacing any record with the same index."""
        key = self.indexer.index(value)
        data = self._encode(value)
        with self._lock:
            self._execute(
                "INSERT INTO records (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, data),
            )
        logger.debug("Stored record %s", key.hex())

    def get(self, index: bytes) -> Optional[T]:
        """Return the record at *index*, or ``None`` if there is none."""
        data = self._fetch(index)
        if data is None:
            return None
        return self._decode(data)

    def remove(self, index: bytes) -> bool:
        """Delete the record at *index*. Returns True if one was removed."""
        with self._lock:
            cursor = self._execute("DELETE FROM records WHERE key = ?", (index,))
        removed = cursor.rowcount > 0
        if removed:
            logger.debug("Removed record %s", index.hex())
        return removed

    def update(self, index: bytes, mutator: Callable[[T], T]) -> Optional[T]:
        """Atomically replace the record at *index* with ``mutator(record)``.

        Does nothing and returns ``None`` if *index* is absent. The new value
        is written only if the stored bytes are still the ones that were read;
        otherwise the cycle is retried up to :data:`MAX_UPDATE_RETRIES` times.
        """
        with self._lock:
            for attempt in range(MAX_UPDATE_RETRIES):
                current = self._fetch(index)
                if current is None:
                    return None
                new_value = mutator(self._decode(current))
                if self.indexer.index(new_value) != index:
                    raise ValueError("update must not change the record's index")
                cursor = self._execute(
                    "UPDATE records SET value = ? WHERE key = ? AND value = ?",
                    (self._encode(new_value), index, current),
                )
                if cursor.rowcount > 0:
                    return new_value
                logger.debug("Record %s changed during update, retrying (%d)", index.hex(), attempt + 1)
        raise UpdateConflictError(
            f"Record {index.hex()} kept changing; gave up after {MAX_UPDATE_RETRIES} attempts."
        )

    def iter(self) -> Iterator[Union[T, StoreFormatError]]:
        """Lazily yield every record in key order.

        A record that fails to decode is yielded as a :class:`StoreFormatError`
        instead of ending the iteration.
        """
        last_key: Optional[bytes] = None
        while True:
            with self._lock:
                if last_key is None:
                    rows = self._execute(
                        "SELECT key, value FROM records ORDER BY key LIMIT ?",
                        (_ITER_BATCH_SIZE,),
                    ).fetchall()
                else:
                    rows = self._execute(
                        "SELECT key, value FROM records WHERE key > ? ORDER BY key LIMIT ?",
                        (last_key, _ITER_BATCH_SIZE),
                    ).fetchall()
            if not rows:
                return
            for _, data in rows:
                try:
                    yield self._decode(data)
                except StoreFormatError as exc:
                    yield exc
            last_key = rows[-1][0]

    def __iter__(self) -> Iterator[Union[T, StoreFormatError]]:
        return self.iter()

    def __len__(self) -> int:
        with self._lock:
            ((count,),) = self._execute("SELECT COUNT(*) FROM records").fetchall()
        return count

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Store[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(sql, params)
            if self._conn.in_transaction:
                self._conn.commit()
            return cursor
        except sqlite3.DatabaseError as exc:
            if self._conn.in_transaction:
                self._conn.rollback()
            if isinstance(exc, sqlite3.OperationalError):
                raise StoreIOError(str(exc)) from exc
            raise StoreFormatError(str(exc)) from exc

    def _fetch(self, index: bytes) -> Optional[bytes]:
        with self._lock:
            rows = self._execute("SELECT value FROM records WHERE key = ?", (index,)).fetchall()
        return rows[0][0] if rows else None

    def _encode(self, value: T) -> bytes:
        try:
            return value.model_dump_json().encode("utf-8")
        except (PydanticSerializationError, ValueError, TypeError) as exc:
            raise StoreFormatError(f"Cannot encode {type(value).__name__}: {exc}") from exc

    def _decode(self, data: bytes) -> T:
        try:
            return self.model.model_validate_json(data)
        except ValidationError as exc:
            raise StoreFormatError(
                f"Stored record is not a valid {self.model.__name__}: {exc.error_count()} error(s)"
            ) from exc
