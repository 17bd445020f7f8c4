"""
Local SQLite store for the person list and the link state.

The store is a key/value table next to a metadata table. The database schema is verified
on start and recreated when the metadata table is missing or outdated.

The store is best effort: when the database cannot be opened, read or written, the failure is
logged as a warning and reads return defaults. The application keeps working from memory.
"""

import datetime
import enum
import json
import logging
import sqlite3
import time
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from . import model
from ..settings import lib
from ..status import status

SCHEMA_VERSION = 1

# Define the expected schema for the metadata table
META_SCHEMA: Dict[str, str] = {
    'meta_id': 'INTEGER PRIMARY KEY',
    'schema_version': 'INTEGER',
    'created': 'TEXT',
    'last_write': 'TEXT',
}

VALUE_SCHEMA: Dict[str, str] = {
    'key': 'TEXT PRIMARY KEY',
    'value': 'TEXT',
}


class Table(enum.StrEnum):
    """Enum for database tables."""
    Meta = 'metatable'
    Values = 'keyvalue'


class Key(enum.StrEnum):
    """Keys of the key/value table."""
    People = 'giftlist_people'
    SpreadsheetId = 'google_sheet_id'
    Worksheet = 'google_sheet_name'
    DemoLinked = 'is_demo_linked'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DatabaseAPI(QtCore.QObject):
    """Key/value access to the local store. Handles schema creation and validation."""

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.available = True
        try:
            self._initialize_schema_if_needed()
        except status.LocalStoreUnavailableException:
            self.available = False

    def _initialize_schema_if_needed(self) -> None:
        """
        Ensures the database file and schema are valid.
        If the DB file doesn't exist, or a table is missing or invalid, the schema is recreated.

        Raises:
            status.LocalStoreUnavailableException: If the database cannot be created.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            db_file_exists = lib.settings.db_path.exists()
            conn = self.connection()

            schema_is_valid = (
                db_file_exists and
                self._columns_match(conn, Table.Meta.value, META_SCHEMA) and
                self._columns_match(conn, Table.Values.value, VALUE_SCHEMA)
            )
            if schema_is_valid:
                row = conn.execute(
                    f'SELECT schema_version FROM {Table.Meta.value} WHERE meta_id=1'
                ).fetchone()
                schema_is_valid = bool(row) and row[0] == SCHEMA_VERSION

            if schema_is_valid:
                logging.debug('Existing database schema is valid.')
                return

            logging.info(f'Recreating database schema (DB exists: {db_file_exists}).')
            conn.execute(f'DROP TABLE IF EXISTS {Table.Meta.value}')
            conn.execute(f'DROP TABLE IF EXISTS {Table.Values.value}')

            meta_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in META_SCHEMA.items())
            conn.execute(f'CREATE TABLE {Table.Meta.value} ({meta_cols_sql})')
            value_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in VALUE_SCHEMA.items())
            conn.execute(f'CREATE TABLE {Table.Values.value} ({value_cols_sql})')

            conn.execute(
                f'INSERT INTO {Table.Meta.value} (meta_id, schema_version, created, last_write) '
                'VALUES (1, ?, ?, ?)',
                (SCHEMA_VERSION, now_str(), '')
            )
            conn.commit()
            logging.info('Database schema recreated successfully.')
        except (sqlite3.Error, OSError) as ex:
            raise status.LocalStoreUnavailableException(f'Could not initialize the local store: {ex}') from ex
        finally:
            if conn:
                conn.close()

    @staticmethod
    def _columns_match(conn: sqlite3.Connection, table_name: str, schema: Dict[str, str]) -> bool:
        cursor = conn.execute(f'PRAGMA table_info({table_name})')
        current_columns = {row[1] for row in cursor.fetchall()}
        if not current_columns:
            logging.warning(f'Table "{table_name}" is missing.')
            return False
        if not set(schema).issubset(current_columns):
            logging.warning(f'Table "{table_name}" is missing columns: {set(schema) - current_columns}.')
            return False
        return True

    @classmethod
    def connection(cls) -> sqlite3.Connection:
        """Return a new connection to the store database."""
        lib.settings.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(lib.settings.db_path), timeout=2.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    def _ensure_available(self) -> bool:
        if self.available:
            return True
        try:
            self._initialize_schema_if_needed()
        except status.LocalStoreUnavailableException:
            return False
        self.available = True
        return True

    def get_value(self, key: str, default: Any = None) -> Any:
        """Return the JSON decoded value stored under key, or default."""
        if not self._ensure_available():
            return default

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(
                f'SELECT value FROM {Table.Values.value} WHERE key=?', (str(key),)
            ).fetchone()
        except (sqlite3.Error, OSError) as ex:
            logging.warning(f'Could not read "{key}" from the local store: {ex}')
            return default
        finally:
            if conn:
                conn.close()

        if not row or row[0] is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as ex:
            logging.warning(f'Stored value of "{key}" is not valid JSON: {ex}')
            return default

    def set_value(self, key: str, value: Any) -> bool:
        """Store a JSON encodable value under key. Returns False if the store is unavailable."""
        if not self._ensure_available():
            return False

        conn: Optional[sqlite3.Connection] = None
        try:
            data = json.dumps(value, ensure_ascii=False)
            conn = self.connection()
            conn.execute(
                f'INSERT OR REPLACE INTO {Table.Values.value} (key, value) VALUES (?, ?)',
                (str(key), data)
            )
            conn.execute(f'UPDATE {Table.Meta.value} SET last_write=? WHERE meta_id=1', (now_str(),))
            conn.commit()
            return True
        except (sqlite3.Error, OSError) as ex:
            logging.warning(f'Could not write "{key}" to the local store: {ex}')
            if conn:
                conn.rollback()
            return False
        finally:
            if conn:
                conn.close()

    def delete_value(self, key: str) -> bool:
        if not self._ensure_available():
            return False

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'DELETE FROM {Table.Values.value} WHERE key=?', (str(key),))
            conn.commit()
            return True
        except (sqlite3.Error, OSError) as ex:
            logging.warning(f'Could not delete "{key}" from the local store: {ex}')
            return False
        finally:
            if conn:
                conn.close()

    def load_people(self) -> List[model.Person]:
        """Load the stored person list. Returns an empty list when nothing valid is stored."""
        data = self.get_value(Key.People, default=[])
        if not isinstance(data, list):
            logging.warning('Stored person list is not a list, ignoring it.')
            return []
        people = model.people_from_json_list(data)
        logging.debug(f'Loaded {len(people)} people from the local store.')
        return people

    def save_people(self, people: List[model.Person]) -> bool:
        """Persist the whole person list."""
        return self.set_value(Key.People, model.people_to_json_list(people))

    @QtCore.Slot()
    def reset(self) -> None:
        """Delete the database file and recreate an empty store."""
        logging.debug('Resetting local store.')
        try:
            self.delete()
        except status.LocalStoreUnavailableException:
            self.available = False
            return
        try:
            self._initialize_schema_if_needed()
            self.available = True
        except status.LocalStoreUnavailableException:
            self.available = False

    @classmethod
    def delete(cls) -> None:
        """Delete the database file, retrying on failure.

        Raises:
            status.LocalStoreUnavailableException: If the file cannot be removed.
        """
        if not lib.settings.db_path.exists():
            logging.debug('Database file does not exist, nothing to delete.')
            return

        max_attempts = 3
        for attempt in range(1, max_attempts + 1):
            try:
                lib.settings.db_path.unlink()
                logging.debug(f'Deleted database file: {lib.settings.db_path}')
                return
            except OSError as ex:
                logging.warning(f'Attempt {attempt} to delete database file failed: {ex}')
                time.sleep(0.1)

        raise status.LocalStoreUnavailableException(
            f'Could not delete database file after {max_attempts} attempts: {lib.settings.db_path}'
        )


database = DatabaseAPI()
