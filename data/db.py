import os
import queue
import sqlite3
import threading
from typing import Dict, Optional, Tuple

from core.exceptions import DatabaseError
from core.types import DatabaseResult

from config.paths import VPNPaths

DATABASE_FILE = VPNPaths.get_database_file()

class Database:
    """Handles all low-level interactions with the SQLite database."""

    # Connection pools per database file
    _pools: Dict[str, queue.Queue] = {}
    _locks: Dict[str, threading.Lock] = {}
    _registry_lock = threading.Lock()

    def __init__(self, db_file: str = DATABASE_FILE) -> None:
        """Initialize the database connection and pool."""

        self.db_file = db_file
        directory = os.path.dirname(self.db_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with Database._registry_lock:
            if db_file not in Database._locks:
                Database._locks[db_file] = threading.Lock()
        self._ensure_pool()

    # Internal helpers -------------------------------------------------

    def _ensure_pool(self) -> None:
        """Create a connection pool for the database file if needed."""
        if self.db_file in Database._pools:
            return
        with Database._locks[self.db_file]:
            if self.db_file in Database._pools:
                return
            pool = queue.Queue(maxsize=self._calculate_pool_size())
            try:
                for _ in range(pool.maxsize):
                    pool.put(self._open_connection())
            except sqlite3.Error as e:
                raise DatabaseError(f"Failed to open database '{self.db_file}': {e}")
            Database._pools[self.db_file] = pool

    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_file, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _get_from_pool(self) -> sqlite3.Connection:
        self._ensure_pool()
        return Database._pools[self.db_file].get()

    def _return_to_pool(self, conn: sqlite3.Connection) -> None:
        self._ensure_pool()
        Database._pools[self.db_file].put(conn)

    def _calculate_pool_size(self) -> int:
        """Determine an appropriate connection pool size."""
        cores = os.cpu_count() or 1
        return max(5, min(50, cores * 5))

    @classmethod
    def close_all(cls, db_file: Optional[str] = None) -> None:
        """Close pooled connections, for one file or all of them."""
        with cls._registry_lock:
            files = [db_file] if db_file else list(cls._pools)
            for name in files:
                pool = cls._pools.pop(name, None)
                while pool is not None and not pool.empty():
                    pool.get_nowait().close()

    def execute_query(self, query: str, params: Tuple = ()) -> DatabaseResult:
        """
        Executes a given SQL query (e.g., SELECT, INSERT, UPDATE, DELETE).
        For queries that modify data, this method handles commit and rollback.

        Args:
            query (str): The SQL query to execute.
            params (tuple): The parameters to substitute into the query.

        Returns:
            list: A list of rows for SELECT queries, otherwise an empty list.
        """
        conn = self._get_from_pool()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)

            if query.strip().upper().startswith("SELECT"):
                return [dict(row) for row in cursor.fetchall()]
            conn.commit()
            return []
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database query failed: {e}")
        finally:
            self._return_to_pool(conn)

    def execute_insert(self, query: str, params: Tuple = ()) -> int:
        """Executes an INSERT and returns the new row id."""
        conn = self._get_from_pool()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database insert failed: {e}")
        finally:
            self._return_to_pool(conn)

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Executes an UPDATE or DELETE and returns the affected row count."""
        conn = self._get_from_pool()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database update failed: {e}")
        finally:
            self._return_to_pool(conn)

    def execute_script(self, script: str) -> None:
        """
        Executes a multi-statement SQL script.

        Args:
            script (str): The SQL script to execute.
        """
        conn = self._get_from_pool()
        try:
            conn.executescript(script)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database script execution failed: {e}")
        finally:
            self._return_to_pool(conn)

    def get_connection(self):
        """
        Returns a context manager for a pooled connection.
        Commits on success and rolls back if the block raises.
        """
        db = self

        class ConnectionContext:
            def __init__(self):
                self.conn = None

            def __enter__(self):
                self.conn = db._get_from_pool()
                return self.conn

            def __exit__(self, exc_type, exc_val, exc_tb):
                try:
                    if exc_type:
                        self.conn.rollback()
                    else:
                        self.conn.commit()
                finally:
                    db._return_to_pool(self.conn)
                    self.conn = None
                if isinstance(exc_val, sqlite3.Error):
                    raise DatabaseError(f"Database operation failed: {exc_val}") from exc_val
                return False

        return ConnectionContext()
