# Offline_Storage_DB.py
# Description: Local-first SQLite store for notes, files, the sync queue, preferences, cached content
#   and quiz autosave snapshots.
#
"""
Offline_Storage_DB.py
---------------------

SQLite-backed offline store used while the remote backend is unreachable or has not yet
confirmed a write.

The store keeps six logical partitions:
- `notes` / `files`: local copies of the user's records. Every local mutation stamps
  `synced = 0` and a `pending_operation`, and appends an entry to `sync_queue` in the
  same transaction.
- `sync_queue`: pending remote mutations, one row per local mutation. Rows for the same
  entity coexist; the sync engine decides how to fold them.
- `user_preferences`: JSON values keyed by name.
- `cached_content`: TTL cache keyed by URL, lazily evicted on read.
- `quiz_autosaves`: one snapshot per quiz id.

Unlike the other DB classes the store is not opened in `__init__`; callers run
`initialize()` and check its result. Every other public method raises
`StorageNotInitializedError` until initialization succeeded.

Connections are thread-local. For `:memory:` databases each thread sees its own empty
database, so use a file path when more than one thread touches the store.
"""
# Imports
import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, Union
#
# Third-Party Libraries
from pydantic import BaseModel
#
# Local Imports
from studyvault.Constants import ALL_PARTITIONS, DEFAULT_CACHE_TTL_MINUTES
from studyvault.DB.Offline_Records import (
    AnalyticsPayload,
    CachedContentEntry,
    EntityType,
    FilePayload,
    FileRecord,
    NotePayload,
    NoteRecord,
    ProfilePayload,
    QuizAutosaveSnapshot,
    SyncOperation,
    SyncQueueEntry,
)
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class OfflineStorageDBError(Exception):
    """Base exception for offline store errors."""
    pass


class SchemaError(OfflineStorageDBError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class StorageNotInitializedError(OfflineStorageDBError):
    """Raised when the store is used before `initialize()` succeeded."""
    pass


AnyPayload = Union[NotePayload, FilePayload, ProfilePayload, AnalyticsPayload]

_NOTE_COLUMNS = ['id', 'user_id', 'title', 'content', 'is_favorite', 'is_pinned', 'tags', 'category',
                 'created_at', 'updated_at', 'synced', 'pending_operation', 'last_synced_at']
_FILE_COLUMNS = ['id', 'user_id', 'name', 'file_type', 'file_size', 'file_path', 'thumbnail_path', 'ocr_text',
                 'ocr_status', 'tags', 'category', 'created_at', 'updated_at', 'synced', 'pending_operation',
                 'last_synced_at']
_JSON_COLUMNS = ('tags',)
_BOOL_COLUMNS = ('is_favorite', 'is_pinned', 'synced')
_SYNC_QUEUE_UPDATABLE = {'retry_count', 'last_error'}


def _format_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# --- Database Class ---
class OfflineStorageDB:
    """
    Offline store for a single client.

    Attributes:
        db_path (Path): Path to the SQLite file, or Path(":memory:").
        db_path_str (str): String form used for connections.
        is_memory_db (bool): True for `:memory:` databases.
        client_id (str): Identifier of this client, used in log lines.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "studyvault_offline_schema"

    _FULL_SCHEMA_SQL_V1 = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name, version) VALUES('studyvault_offline_schema', 0);

/*----------------------------------------------------------------
  1. Notes
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS notes(
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL DEFAULT '',
  title TEXT NOT NULL DEFAULT '',
  content TEXT NOT NULL DEFAULT '',
  is_favorite BOOLEAN NOT NULL DEFAULT 0,
  is_pinned BOOLEAN NOT NULL DEFAULT 0,
  tags TEXT NOT NULL DEFAULT '[]',
  category TEXT,
  created_at DATETIME NOT NULL,
  updated_at DATETIME NOT NULL,
  synced BOOLEAN NOT NULL DEFAULT 0,
  pending_operation TEXT CHECK(pending_operation IN ('create', 'update', 'delete')),
  last_synced_at DATETIME,
  CHECK (synced = 0 OR pending_operation IS NULL)
);
CREATE INDEX IF NOT EXISTS idx_notes_user_id ON notes(user_id);
CREATE INDEX IF NOT EXISTS idx_notes_synced ON notes(synced);

/*----------------------------------------------------------------
  2. Files
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS files(
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL DEFAULT '',
  name TEXT NOT NULL DEFAULT '',
  file_type TEXT NOT NULL DEFAULT '',
  file_size INTEGER NOT NULL DEFAULT 0,
  file_path TEXT NOT NULL DEFAULT '',
  thumbnail_path TEXT,
  ocr_text TEXT,
  ocr_status TEXT,
  tags TEXT NOT NULL DEFAULT '[]',
  category TEXT,
  created_at DATETIME NOT NULL,
  updated_at DATETIME NOT NULL,
  synced BOOLEAN NOT NULL DEFAULT 0,
  pending_operation TEXT CHECK(pending_operation IN ('create', 'update', 'delete')),
  last_synced_at DATETIME,
  CHECK (synced = 0 OR pending_operation IS NULL)
);
CREATE INDEX IF NOT EXISTS idx_files_user_id ON files(user_id);
CREATE INDEX IF NOT EXISTS idx_files_synced ON files(synced);

/*----------------------------------------------------------------
  3. Sync queue (seq keeps insertion order)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS sync_queue(
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT UNIQUE NOT NULL,
  entity_type TEXT NOT NULL CHECK(entity_type IN ('note', 'file', 'profile', 'analytics')),
  entity_id TEXT NOT NULL,
  operation TEXT NOT NULL CHECK(operation IN ('create', 'update', 'delete')),
  payload TEXT NOT NULL,
  created_at DATETIME NOT NULL,
  retry_count INTEGER NOT NULL DEFAULT 0,
  last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_entity ON sync_queue(entity_type, entity_id);

/*----------------------------------------------------------------
  4. Preferences, cache, quiz autosaves
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS user_preferences(
  key TEXT PRIMARY KEY,
  value TEXT,
  updated_at DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS cached_content(
  url TEXT PRIMARY KEY,
  data TEXT,
  cached_at DATETIME NOT NULL,
  expires_at DATETIME NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cached_content_expires_at ON cached_content(expires_at);

CREATE TABLE IF NOT EXISTS quiz_autosaves(
  quiz_id TEXT PRIMARY KEY,
  snapshot TEXT NOT NULL,
  last_saved DATETIME NOT NULL
);

UPDATE db_schema_version
   SET version = 1
 WHERE schema_name = 'studyvault_offline_schema'
   AND version < 1;
"""

    def __init__(self, db_path: Union[str, Path], client_id: str,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            db_path: Path to the SQLite file or ":memory:".
            client_id: Identifier of this client. Must not be empty.
            clock: Returns the current time as an aware UTC datetime. Defaults to the system clock.

        Raises:
            ValueError: If `client_id` is empty.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id
        self._clock = clock or _utc_now
        self._local = threading.local()
        self._initialized = False
        self._queue_stamp_lock = threading.Lock()
        self._last_queue_stamp = 0

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self, raise_on_error: bool = False) -> bool:
        """
        Opens the database and applies the schema.

        Failures are logged at CRITICAL and leave the store uninitialized. They are
        only raised (as OfflineStorageDBError) when `raise_on_error` is True.

        Returns:
            True if the store is ready for use.
        """
        if self._initialized:
            return True
        logger.info(f"Initializing OfflineStorageDB for path: {self.db_path_str} [Client ID: {self.client_id}]")
        try:
            if not self.is_memory_db:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._initialize_schema()
        except (OfflineStorageDBError, sqlite3.Error, OSError) as e:
            logger.critical(f"Offline store initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            if raise_on_error:
                raise OfflineStorageDBError(f"Offline store initialization failed: {e}") from e
            return False
        self._initialized = True
        logger.debug(f"OfflineStorageDB ready at {self.db_path_str}")
        return True

    def _ensure_initialized(self):
        if not self._initialized:
            raise StorageNotInitializedError("Offline store not initialized. Call initialize() first.")

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(
                    f"Thread-local connection for {self.db_path_str} was closed or became unusable. Reopening.")
                try:
                    conn.close()
                except sqlite3.Error:
                    pass
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=15, isolation_level=None)
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA foreign_keys = ON;")
                self._local.conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                self._local.conn = None
                raise OfflineStorageDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        """
        Closes the current thread's connection, checkpointing the WAL file first.

        Closing an in-memory database discards it, so the store goes back to
        uninitialized in that case.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} is in an uncommitted transaction during close. "
                               f"Rolling back.")
                conn.rollback()
            if not self.is_memory_db:
                mode_row = conn.execute("PRAGMA journal_mode;").fetchone()
                if mode_row and mode_row[0].lower() == 'wal':
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            conn.close()
            logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")
        finally:
            self._local.conn = None
            if self.is_memory_db:
                self._initialized = False

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None) -> sqlite3.Cursor:
        """
        Executes a single SQL statement on the thread's connection.

        Connections run in autocommit mode: outside `transaction()` a write is
        committed as soon as it executes.

        Raises:
            OfflineStorageDBError: If SQLite rejects the statement.
        """
        conn = self.get_connection()
        try:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Executing SQL: {query[:300]}... Params: {str(params)[:200]}...")
            return conn.execute(query, params or ())
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            raise OfflineStorageDBError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}", exc_info=True)
            raise OfflineStorageDBError(f"Query execution failed: {e}") from e

    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager that commits on success and rolls back on error.

        Usage:
            with store.transaction() as conn:
                conn.execute(...)
        """
        return TransactionContextManager(self)

    # --- Schema ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        try:
            with TransactionContextManager(self):
                current_version = self._get_db_version(conn)
                target_version = self._CURRENT_SCHEMA_VERSION
                if current_version == target_version:
                    logger.debug(f"Database schema '{self._SCHEMA_NAME}' is up to date (Version {target_version}).")
                    return
                if current_version > target_version:
                    raise SchemaError(
                        f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than "
                        f"supported by code ({target_version}).")
                logger.info(f"Applying schema Version {target_version} for '{self._SCHEMA_NAME}' "
                            f"to DB: {self.db_path_str}...")
                conn.executescript(self._FULL_SCHEMA_SQL_V1)
                final_version = self._get_db_version(conn)
                if final_version != target_version:
                    raise SchemaError(f"Schema version update check failed. Expected {target_version}, "
                                      f"got: {final_version}")
        except sqlite3.Error as e:
            raise SchemaError(f"Schema initialization for '{self._SCHEMA_NAME}' failed: {e}") from e

    # --- Internal Helpers ---
    def _now(self) -> datetime:
        return self._clock()

    def _now_iso(self) -> str:
        return _format_iso(self._now())

    def _generate_uuid(self) -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _coerce_operation(operation: Union[SyncOperation, str]) -> SyncOperation:
        try:
            return SyncOperation(operation)
        except ValueError as e:
            raise InputError(f"Unknown sync operation: {operation!r}") from e

    def _next_queue_stamp(self) -> int:
        """Epoch milliseconds, bumped so two queue ids from this instance never share a stamp."""
        stamp = int(self._now().timestamp() * 1000)
        with self._queue_stamp_lock:
            if stamp <= self._last_queue_stamp:
                stamp = self._last_queue_stamp + 1
            self._last_queue_stamp = stamp
        return stamp

    @staticmethod
    def _row_to_record_dict(row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        for col in _JSON_COLUMNS:
            if col in data:
                try:
                    data[col] = json.loads(data[col]) if data[col] else []
                except json.JSONDecodeError:
                    logger.warning(f"Failed to decode JSON column '{col}' for record {data.get('id')}")
                    data[col] = []
        for col in _BOOL_COLUMNS:
            if col in data:
                data[col] = bool(data[col])
        return data

    @staticmethod
    def _record_to_params(record: BaseModel, columns: List[str]) -> tuple:
        values = []
        for col in columns:
            value = getattr(record, col)
            if col in _JSON_COLUMNS:
                value = json.dumps(value or [])
            elif col in _BOOL_COLUMNS:
                value = int(bool(value))
            elif isinstance(value, SyncOperation):
                value = value.value
            values.append(value)
        return tuple(values)

    # --- Generic record helpers (notes and files) ---
    def _save_generic_record(self, table_name: str, columns: List[str], model_cls: Type[BaseModel],
                             payload_cls: Type[BaseModel], record: Union[BaseModel, Dict[str, Any]],
                             operation: Union[SyncOperation, str]) -> BaseModel:
        self._ensure_initialized()
        operation = self._coerce_operation(operation)
        if operation == SyncOperation.DELETE:
            raise InputError(f"Deletes on '{table_name}' go through the delete methods, not save.")

        data = record.model_dump() if isinstance(record, BaseModel) else dict(record)
        now = self._now_iso()
        if not data.get('id'):
            data['id'] = self._generate_uuid()
        if not data.get('created_at'):
            data['created_at'] = now
        data.update(updated_at=now, synced=False, pending_operation=operation)
        prepared = model_cls.model_validate(data)

        col_list = ', '.join(columns)
        placeholders = ', '.join('?' for _ in columns)
        updates = ', '.join(f"{c} = excluded.{c}" for c in columns if c not in ('id', 'last_synced_at'))
        query = (f"INSERT INTO {table_name} ({col_list}) VALUES ({placeholders}) "
                 f"ON CONFLICT(id) DO UPDATE SET {updates}, "
                 f"last_synced_at = COALESCE(excluded.last_synced_at, {table_name}.last_synced_at)")
        try:
            with self.transaction() as conn:
                conn.execute(query, self._record_to_params(prepared, columns))
                row = conn.execute(f"SELECT * FROM {table_name} WHERE id = ?", (prepared.id,)).fetchone()
                stored = model_cls.model_validate(self._row_to_record_dict(row))
                self._insert_sync_queue_entry(conn, payload_cls(id=stored.id, record=stored), operation)
        except sqlite3.Error as e:
            logger.error(f"Failed to save record {prepared.id} to '{table_name}': {e}", exc_info=True)
            raise OfflineStorageDBError(f"Failed to save record to '{table_name}': {e}") from e
        logger.debug(f"Saved {table_name} record {stored.id} with pending operation '{operation.value}'")
        return stored

    def _get_generic_record(self, table_name: str, model_cls: Type[BaseModel], record_id: str) -> Optional[BaseModel]:
        self._ensure_initialized()
        row = self.execute_query(f"SELECT * FROM {table_name} WHERE id = ?", (record_id,)).fetchone()
        return model_cls.model_validate(self._row_to_record_dict(row)) if row else None

    def _list_generic_records(self, table_name: str, model_cls: Type[BaseModel], where: str = "",
                              params: tuple = ()) -> List[BaseModel]:
        self._ensure_initialized()
        query = f"SELECT * FROM {table_name} {where} ORDER BY rowid"
        rows = self.execute_query(query, params).fetchall()
        return [model_cls.model_validate(self._row_to_record_dict(row)) for row in rows]

    def _mark_generic_synced(self, table_name: str, record_id: str) -> bool:
        self._ensure_initialized()
        cursor = self.execute_query(
            f"UPDATE {table_name} SET synced = 1, pending_operation = NULL, last_synced_at = ? WHERE id = ?",
            (self._now_iso(), record_id))
        if cursor.rowcount == 0:
            logger.debug(f"mark synced: no record {record_id} in '{table_name}'")
            return False
        return True

    def _mark_generic_pushed(self, table_name: str, record_id: str) -> bool:
        self._ensure_initialized()
        cursor = self.execute_query(f"UPDATE {table_name} SET last_synced_at = ? WHERE id = ?",
                                    (self._now_iso(), record_id))
        return cursor.rowcount > 0

    def _delete_generic_record(self, table_name: str, entity_type: EntityType, payload_cls: Type[BaseModel],
                               record_id: str) -> bool:
        self._ensure_initialized()
        try:
            with self.transaction() as conn:
                row = conn.execute(f"SELECT pending_operation, last_synced_at FROM {table_name} WHERE id = ?",
                                   (record_id,)).fetchone()
                if not row:
                    return False
                if row['pending_operation'] == SyncOperation.DELETE.value:
                    logger.debug(f"{table_name} record {record_id} is already a pending delete.")
                    return True
                if row['last_synced_at']:
                    conn.execute(f"UPDATE {table_name} SET synced = 0, pending_operation = ?, updated_at = ? "
                                 f"WHERE id = ?", (SyncOperation.DELETE.value, self._now_iso(), record_id))
                    self._insert_sync_queue_entry(conn, payload_cls(id=record_id, record=None), SyncOperation.DELETE)
                    logger.info(f"{table_name} record {record_id} marked for remote deletion.")
                else:
                    conn.execute(f"DELETE FROM {table_name} WHERE id = ?", (record_id,))
                    removed = conn.execute("DELETE FROM sync_queue WHERE entity_type = ? AND entity_id = ?",
                                           (entity_type.value, record_id)).rowcount
                    logger.info(f"{table_name} record {record_id} never synced; purged with {removed} queued entries.")
        except sqlite3.Error as e:
            raise OfflineStorageDBError(f"Failed to delete record {record_id} from '{table_name}': {e}") from e
        return True

    def _purge_generic_record(self, table_name: str, record_id: str) -> bool:
        self._ensure_initialized()
        cursor = self.execute_query(f"DELETE FROM {table_name} WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    # --- Notes ---
    def save_note(self, note: Union[NoteRecord, Dict[str, Any]],
                  operation: Union[SyncOperation, str] = SyncOperation.CREATE) -> NoteRecord:
        """
        Upserts a note as an unsynced local change and queues it for the remote.

        Args:
            note: The note, as a NoteRecord or a dict of its fields. A missing id is generated.
            operation: 'create' or 'update'.

        Returns:
            The stored NoteRecord.

        Raises:
            InputError: If operation is 'delete' or unknown.
        """
        return self._save_generic_record('notes', _NOTE_COLUMNS, NoteRecord, NotePayload, note, operation)

    def get_note(self, note_id: str) -> Optional[NoteRecord]:
        return self._get_generic_record('notes', NoteRecord, note_id)

    def get_all_notes(self, user_id: str) -> List[NoteRecord]:
        return self._list_generic_records('notes', NoteRecord, "WHERE user_id = ?", (user_id,))

    def get_unsynced_notes(self) -> List[NoteRecord]:
        return self._list_generic_records('notes', NoteRecord, "WHERE synced = 0")

    def mark_note_synced(self, note_id: str) -> bool:
        return self._mark_generic_synced('notes', note_id)

    def mark_note_pushed(self, note_id: str) -> bool:
        """
        Records that the remote holds a copy of the note without clearing its pending state.

        Used when a push succeeded but a newer local edit is still queued.
        """
        return self._mark_generic_pushed('notes', note_id)

    def delete_note(self, note_id: str) -> bool:
        """
        Deletes a note locally.

        A note that has reached the remote at least once becomes a pending-delete
        tombstone with a queued delete entry. A note that never left the device is
        removed together with all of its queued entries.

        Returns:
            False if no such note exists.
        """
        return self._delete_generic_record('notes', EntityType.NOTE, NotePayload, note_id)

    def purge_note(self, note_id: str) -> bool:
        return self._purge_generic_record('notes', note_id)

    # --- Files ---
    def save_file(self, file: Union[FileRecord, Dict[str, Any]],
                  operation: Union[SyncOperation, str] = SyncOperation.CREATE) -> FileRecord:
        """Same contract as `save_note`, for file metadata."""
        return self._save_generic_record('files', _FILE_COLUMNS, FileRecord, FilePayload, file, operation)

    def get_file(self, file_id: str) -> Optional[FileRecord]:
        return self._get_generic_record('files', FileRecord, file_id)

    def get_all_files(self, user_id: str) -> List[FileRecord]:
        return self._list_generic_records('files', FileRecord, "WHERE user_id = ?", (user_id,))

    def get_unsynced_files(self) -> List[FileRecord]:
        return self._list_generic_records('files', FileRecord, "WHERE synced = 0")

    def mark_file_synced(self, file_id: str) -> bool:
        return self._mark_generic_synced('files', file_id)

    def mark_file_pushed(self, file_id: str) -> bool:
        return self._mark_generic_pushed('files', file_id)

    def delete_file(self, file_id: str) -> bool:
        return self._delete_generic_record('files', EntityType.FILE, FilePayload, file_id)

    def purge_file(self, file_id: str) -> bool:
        return self._purge_generic_record('files', file_id)

    # --- Sync Queue ---
    def _insert_sync_queue_entry(self, conn: sqlite3.Connection, payload: AnyPayload,
                                 operation: SyncOperation) -> SyncQueueEntry:
        entity_type = EntityType(payload.entity_type)
        entry_id = f"{entity_type.value}-{payload.id}-{operation.value}-{self._next_queue_stamp()}"
        entry = SyncQueueEntry(id=entry_id, entity_type=entity_type, entity_id=payload.id, operation=operation,
                               payload=payload, created_at=self._now_iso())
        conn.execute(
            "INSERT OR REPLACE INTO sync_queue (id, entity_type, entity_id, operation, payload, created_at, "
            "retry_count, last_error) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (entry.id, entity_type.value, entry.entity_id, operation.value, payload.model_dump_json(),
             entry.created_at, entry.retry_count, entry.last_error))
        return entry

    def add_to_sync_queue(self, payload: AnyPayload, operation: Union[SyncOperation, str]) -> SyncQueueEntry:
        """
        Appends a pending remote mutation.

        The entry id is `{entity_type}-{entity_id}-{operation}-{epoch_ms}`; repeated calls
        for the same entity and operation produce distinct entries.
        """
        self._ensure_initialized()
        operation = self._coerce_operation(operation)
        try:
            with self.transaction() as conn:
                entry = self._insert_sync_queue_entry(conn, payload, operation)
        except sqlite3.Error as e:
            raise OfflineStorageDBError(f"Failed to add sync queue entry: {e}") from e
        logger.debug(f"Queued sync entry {entry.id}")
        return entry

    def get_sync_queue(self, entity_type: Optional[Union[EntityType, str]] = None) -> List[SyncQueueEntry]:
        """Returns queued entries in insertion order, optionally for one entity type."""
        self._ensure_initialized()
        if entity_type is None:
            rows = self.execute_query("SELECT * FROM sync_queue ORDER BY seq").fetchall()
        else:
            rows = self.execute_query("SELECT * FROM sync_queue WHERE entity_type = ? ORDER BY seq",
                                      (EntityType(entity_type).value,)).fetchall()
        entries = []
        for row in rows:
            data = dict(row)
            data.pop('seq', None)
            data['payload'] = json.loads(data['payload'])
            entries.append(SyncQueueEntry.model_validate(data))
        return entries

    def remove_from_sync_queue(self, entity_type: Union[EntityType, str], entity_id: str) -> int:
        self._ensure_initialized()
        cursor = self.execute_query("DELETE FROM sync_queue WHERE entity_type = ? AND entity_id = ?",
                                    (EntityType(entity_type).value, entity_id))
        return cursor.rowcount

    def delete_sync_queue_items(self, item_ids: Iterable[str]) -> int:
        self._ensure_initialized()
        removed = 0
        try:
            with self.transaction() as conn:
                for item_id in item_ids:
                    removed += conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,)).rowcount
        except sqlite3.Error as e:
            raise OfflineStorageDBError(f"Failed to delete sync queue entries: {e}") from e
        return removed

    def update_sync_queue_item(self, item_id: str, updates: Dict[str, Any]) -> bool:
        """
        Updates the retry bookkeeping of one queue entry.

        Raises:
            InputError: If `updates` names a field other than retry_count or last_error.
        """
        self._ensure_initialized()
        unknown = set(updates) - _SYNC_QUEUE_UPDATABLE
        if unknown:
            raise InputError(f"Sync queue entries only allow updates to {sorted(_SYNC_QUEUE_UPDATABLE)}; "
                             f"got {sorted(unknown)}")
        if not updates:
            return False
        set_clause = ', '.join(f"{key} = ?" for key in updates)
        cursor = self.execute_query(f"UPDATE sync_queue SET {set_clause} WHERE id = ?",
                                    tuple(updates.values()) + (item_id,))
        return cursor.rowcount > 0

    # --- Preferences ---
    def set_preference(self, key: str, value: Any):
        self._ensure_initialized()
        self.execute_query(
            "INSERT OR REPLACE INTO user_preferences (key, value, updated_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), self._now_iso()))

    def get_preference(self, key: str, default: Any = None) -> Any:
        self._ensure_initialized()
        row = self.execute_query("SELECT value FROM user_preferences WHERE key = ?", (key,)).fetchone()
        if not row or row['value'] is None:
            return default
        return json.loads(row['value'])

    # --- Cached Content ---
    def cache_content(self, url: str, data: Any, ttl_minutes: float = DEFAULT_CACHE_TTL_MINUTES) -> CachedContentEntry:
        self._ensure_initialized()
        if ttl_minutes < 0:
            raise InputError("ttl_minutes cannot be negative.")
        now = self._now()
        entry = CachedContentEntry(url=url, data=data, cached_at=_format_iso(now),
                                   expires_at=_format_iso(now + timedelta(minutes=ttl_minutes)))
        self.execute_query(
            "INSERT OR REPLACE INTO cached_content (url, data, cached_at, expires_at) VALUES (?, ?, ?, ?)",
            (url, json.dumps(data), entry.cached_at, entry.expires_at))
        return entry

    def get_cached_content(self, url: str) -> Any:
        """Returns the cached payload, or None if missing. An expired entry is deleted on read."""
        self._ensure_initialized()
        row = self.execute_query("SELECT data, expires_at FROM cached_content WHERE url = ?", (url,)).fetchone()
        if not row:
            return None
        if self._now() > _parse_iso(row['expires_at']):
            self.execute_query("DELETE FROM cached_content WHERE url = ?", (url,))
            logger.debug(f"Cached content for {url} expired and was evicted.")
            return None
        return json.loads(row['data']) if row['data'] is not None else None

    def clear_expired_cache(self) -> int:
        self._ensure_initialized()
        cursor = self.execute_query("DELETE FROM cached_content WHERE expires_at <= ?", (self._now_iso(),))
        if cursor.rowcount:
            logger.info(f"Cleared {cursor.rowcount} expired cache entries.")
        return cursor.rowcount

    # --- Quiz Autosave Snapshots ---
    def save_quiz_snapshot(self, snapshot: QuizAutosaveSnapshot) -> QuizAutosaveSnapshot:
        """
        Stores the snapshot for its quiz id, replacing the previous one.

        `last_saved` never moves backwards: an older stamp is raised to the stored one.
        """
        self._ensure_initialized()
        last_saved = snapshot.last_saved
        if last_saved.tzinfo is None:
            last_saved = last_saved.replace(tzinfo=timezone.utc)
        try:
            with self.transaction() as conn:
                row = conn.execute("SELECT last_saved FROM quiz_autosaves WHERE quiz_id = ?",
                                   (snapshot.quiz_id,)).fetchone()
                if row:
                    previous = _parse_iso(row['last_saved'])
                    if last_saved < previous:
                        last_saved = previous
                snapshot = snapshot.model_copy(update={'last_saved': last_saved})
                conn.execute("INSERT OR REPLACE INTO quiz_autosaves (quiz_id, snapshot, last_saved) VALUES (?, ?, ?)",
                             (snapshot.quiz_id, snapshot.model_dump_json(), _format_iso(last_saved)))
        except sqlite3.Error as e:
            raise OfflineStorageDBError(f"Failed to save quiz snapshot for {snapshot.quiz_id}: {e}") from e
        return snapshot

    def get_quiz_snapshot(self, quiz_id: str) -> Optional[QuizAutosaveSnapshot]:
        self._ensure_initialized()
        row = self.execute_query("SELECT snapshot FROM quiz_autosaves WHERE quiz_id = ?", (quiz_id,)).fetchone()
        return QuizAutosaveSnapshot.model_validate_json(row['snapshot']) if row else None

    def delete_quiz_snapshot(self, quiz_id: str) -> bool:
        self._ensure_initialized()
        cursor = self.execute_query("DELETE FROM quiz_autosaves WHERE quiz_id = ?", (quiz_id,))
        return cursor.rowcount > 0

    # --- Maintenance ---
    def clear_all_data(self):
        """Wipes every partition. Irreversible."""
        self._ensure_initialized()
        try:
            with self.transaction() as conn:
                for table_name in ALL_PARTITIONS:
                    conn.execute(f"DELETE FROM {table_name}")
        except sqlite3.Error as e:
            raise OfflineStorageDBError(f"Failed to clear offline store: {e}") from e
        logger.warning(f"All offline data cleared for {self.db_path_str}")

    def get_storage_stats(self) -> Dict[str, int]:
        self._ensure_initialized()
        stats = {}
        for table_name in ALL_PARTITIONS:
            stats[table_name] = self.execute_query(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
        return stats


class TransactionContextManager:
    def __init__(self, db_instance: OfflineStorageDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN IMMEDIATE")
            self.is_outermost_transaction = True
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False
        if exc_type:
            logger.error(f"Transaction failed, rolling back on thread {threading.get_ident()}: "
                         f"{exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}", exc_info=True)
            return False
        try:
            self.conn.commit()
        except sqlite3.Error as commit_err:
            logger.error(f"Commit FAILED on thread {threading.get_ident()}, attempting rollback: {commit_err}",
                         exc_info=True)
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback after failed commit also FAILED: {rb_err}", exc_info=True)
            raise OfflineStorageDBError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Offline_Storage_DB.py
########################################################################################################################
