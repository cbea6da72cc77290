"""Storage backend clients.

A client offers primitive item operations against a *physical* table name.
It knows nothing about environments or sessions; ResourceStore layers those
on top.
"""

import contextlib
import copy
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .domain import ConflictError, NotFound, TransientIOError
from .keys import KeyCondition, KeySchema
from .logs import get_logger

logger = get_logger(__name__)

Item = Dict[str, Any]
PageResult = Tuple[List[Item], Optional[Dict[str, str]]]


def item_size(item: Mapping[str, Any]) -> int:
    """Bytes an item counts against a page budget (compact JSON)."""
    return len(json.dumps(item, separators=(",", ":"), sort_keys=True, default=str).encode("utf-8"))


def matches_filter(item: Mapping[str, Any], filter: Optional[Mapping[str, Any]]) -> bool:
    if not filter:
        return True
    missing = object()
    return all(item.get(name, missing) == value for name, value in filter.items())


def cut_page(
    rows: Iterable[Item],
    schema: KeySchema,
    page_bytes: int,
    limit: Optional[int] = None,
    keep: Optional[Callable[[Item], bool]] = None,
) -> PageResult:
    """Read ordered rows into one page.

    A page stops before the item that would exceed ``page_bytes`` or ``limit``
    (always taking at least one). ``keep`` runs after an item is counted, so a
    filtered page can be empty. The returned key is the last item read, or
    None when nothing is left.
    """
    items: List[Item] = []
    used = 0
    read = 0
    last: Optional[Item] = None
    for row in rows:
        size = item_size(row)
        if read and (used + size > page_bytes or (limit is not None and read >= limit)):
            return items, schema.key_of(last)
        used += size
        read += 1
        last = row
        if keep is None or keep(row):
            items.append(row)
    return items, None


class StorageClient(ABC):
    """Primitive operations the resource store is built on."""

    @abstractmethod
    def get_item(self, table: str, schema: KeySchema, key: Dict[str, str]) -> Optional[Item]:
        ...

    @abstractmethod
    def put_item(self, table: str, schema: KeySchema, item: Item, if_absent: bool = False) -> Optional[Item]:
        """Store ``item``, returning the item it replaced (or None).

        Raises:
            ConflictError: if ``if_absent`` and an item exists at the key
        """
        ...

    @abstractmethod
    def update_item(self, table: str, schema: KeySchema, key: Dict[str, str], patch: Item) -> Item:
        """Merge ``patch`` into the stored item and return the result.

        Raises:
            NotFound: if no item exists at the key
        """
        ...

    @abstractmethod
    def delete_item(self, table: str, schema: KeySchema, key: Dict[str, str]) -> None:
        ...

    @abstractmethod
    def query(
        self,
        table: str,
        schema: KeySchema,
        condition: KeyCondition,
        start_key: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
        page_bytes: int = 1024 * 1024,
    ) -> PageResult:
        ...

    @abstractmethod
    def scan(
        self,
        table: str,
        schema: KeySchema,
        filter: Optional[Mapping[str, Any]] = None,
        start_key: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
        page_bytes: int = 1024 * 1024,
    ) -> PageResult:
        ...

    def close(self) -> None:
        """Release backend resources."""


class MemoryClient(StorageClient):
    """Keeps every table in process memory. Items are copied in and out."""

    def __init__(self):
        self.tables: Dict[str, Dict[Tuple[str, str], Item]] = {}
        self.lock = threading.Lock()

    def _table(self, table: str) -> Dict[Tuple[str, str], Item]:
        return self.tables.setdefault(table, {})

    def get_item(self, table, schema, key):
        with self.lock:
            item = self._table(table).get(schema.position(key))
            return copy.deepcopy(item)

    def put_item(self, table, schema, item, if_absent=False):
        position = schema.position(schema.key_of(item))
        with self.lock:
            rows = self._table(table)
            previous = rows.get(position)
            if if_absent and previous is not None:
                raise ConflictError(f"Item already exists in {table}")
            rows[position] = copy.deepcopy(dict(item))
            return previous

    def update_item(self, table, schema, key, patch):
        with self.lock:
            rows = self._table(table)
            position = schema.position(key)
            if position not in rows:
                raise NotFound(f"No item at {key} in {table}")
            merged = {**rows[position], **copy.deepcopy(dict(patch))}
            rows[position] = merged
            return copy.deepcopy(merged)

    def delete_item(self, table, schema, key):
        with self.lock:
            self._table(table).pop(schema.position(key), None)

    def query(self, table, schema, condition, start_key=None, limit=None, page_bytes=1024 * 1024):
        with self.lock:
            rows = [
                (position, item)
                for position, item in self._table(table).items()
                if position[0] == condition.partition
                and (condition.sort is None or condition.sort.matches(position[1]))
            ]
        rows.sort(key=lambda row: row[0], reverse=condition.descending)
        if start_key is not None:
            start = schema.position(start_key)
            if condition.descending:
                rows = [row for row in rows if row[0] < start]
            else:
                rows = [row for row in rows if row[0] > start]
        return cut_page((copy.deepcopy(item) for _, item in rows), schema, page_bytes, limit)

    def scan(self, table, schema, filter=None, start_key=None, limit=None, page_bytes=1024 * 1024):
        with self.lock:
            rows = sorted(self._table(table).items(), key=lambda row: row[0])
        if start_key is not None:
            start = schema.position(start_key)
            rows = [row for row in rows if row[0] > start]
        return cut_page(
            (copy.deepcopy(item) for _, item in rows),
            schema,
            page_bytes,
            limit,
            keep=lambda item: matches_filter(item, filter),
        )


SORT_CLAUSES = {
    "eq": ("sk = ?", lambda c: (c.value,)),
    "lt": ("sk < ?", lambda c: (c.value,)),
    "lte": ("sk <= ?", lambda c: (c.value,)),
    "gt": ("sk > ?", lambda c: (c.value,)),
    "gte": ("sk >= ?", lambda c: (c.value,)),
    "begins_with": ("substr(sk, 1, length(?)) = ?", lambda c: (c.value, c.value)),
    "between": ("sk BETWEEN ? AND ?", lambda c: (c.value, c.upper)),
}


class SqliteClient(StorageClient):
    """
    Stores every logical table in one SQLite file.

    Rows live in a single ``items`` table keyed by (tbl, pk, sk) with the item
    serialized as JSON in ``body``. Tables without a sort key use '' for sk.
    Writes are serialized with a thread lock; the connection runs in WAL mode.

    Attributes:
        db_path (str): Path to the SQLite database file (must be a real file,
            each operation opens its own connection)
        lock (threading.Lock): Thread lock for safe concurrent writes
    """

    def __init__(self, db_path: str = "notes.db"):
        self.db_path = db_path
        self.lock = threading.Lock()
        self._create_table()
        logger.info("sqlite_client_initialized", path=db_path)

    @contextlib.contextmanager
    def _get_db_connection(self):
        """
        Open a connection and translate backend hiccups.

        ``sqlite3.OperationalError`` (locked database, unreadable file, ...)
        surfaces as TransientIOError so callers can decide whether to retry.
        """
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=FULL;")
            yield conn
        except sqlite3.OperationalError as e:
            logger.warning("storage_transient_error", backend="sqlite", error=str(e))
            raise TransientIOError(f"SQLite operation failed: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def _create_table(self):
        with self._get_db_connection() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS items (
                tbl TEXT NOT NULL,
                pk TEXT NOT NULL,
                sk TEXT NOT NULL,
                body TEXT NOT NULL,
                PRIMARY KEY (tbl, pk, sk)
            )
            """)
            conn.commit()

    @staticmethod
    def _select(conn, table: str, pk: str, sk: str) -> Optional[Item]:
        row = conn.execute(
            "SELECT body FROM items WHERE tbl=? AND pk=? AND sk=?", (table, pk, sk)
        ).fetchone()
        return json.loads(row[0]) if row else None

    def get_item(self, table, schema, key):
        pk, sk = schema.position(key)
        with self._get_db_connection() as conn:
            return self._select(conn, table, pk, sk)

    def put_item(self, table, schema, item, if_absent=False):
        pk, sk = schema.position(schema.key_of(item))
        body = json.dumps(item, default=str)
        with self.lock:
            with self._get_db_connection() as conn:
                try:
                    previous = self._select(conn, table, pk, sk)
                    if if_absent and previous is not None:
                        raise ConflictError(f"Item already exists in {table}")
                    conn.execute(
                        "INSERT OR REPLACE INTO items (tbl, pk, sk, body) VALUES (?, ?, ?, ?)",
                        (table, pk, sk, body),
                    )
                    conn.commit()
                    return previous
                except sqlite3.Error:
                    conn.rollback()
                    raise

    def update_item(self, table, schema, key, patch):
        pk, sk = schema.position(key)
        with self.lock:
            with self._get_db_connection() as conn:
                try:
                    current = self._select(conn, table, pk, sk)
                    if current is None:
                        raise NotFound(f"No item at {key} in {table}")
                    merged = {**current, **patch}
                    conn.execute(
                        "UPDATE items SET body=? WHERE tbl=? AND pk=? AND sk=?",
                        (json.dumps(merged, default=str), table, pk, sk),
                    )
                    conn.commit()
                    return merged
                except sqlite3.Error:
                    conn.rollback()
                    raise

    def delete_item(self, table, schema, key):
        pk, sk = schema.position(key)
        with self.lock:
            with self._get_db_connection() as conn:
                conn.execute("DELETE FROM items WHERE tbl=? AND pk=? AND sk=?", (table, pk, sk))
                conn.commit()

    def query(self, table, schema, condition, start_key=None, limit=None, page_bytes=1024 * 1024):
        clauses = ["tbl = ?", "pk = ?"]
        params: List[Any] = [table, condition.partition]
        if condition.sort is not None:
            clause, values = SORT_CLAUSES[condition.sort.op]
            clauses.append(clause)
            params.extend(values(condition.sort))
        if start_key is not None:
            clauses.append("sk < ?" if condition.descending else "sk > ?")
            params.append(schema.position(start_key)[1])
        order = "DESC" if condition.descending else "ASC"
        sql = f"SELECT body FROM items WHERE {' AND '.join(clauses)} ORDER BY sk {order}"
        with self._get_db_connection() as conn:
            rows = (json.loads(body) for (body,) in conn.execute(sql, params))
            return cut_page(rows, schema, page_bytes, limit)

    def scan(self, table, schema, filter=None, start_key=None, limit=None, page_bytes=1024 * 1024):
        sql = "SELECT body FROM items WHERE tbl = ?"
        params: List[Any] = [table]
        if start_key is not None:
            pk, sk = schema.position(start_key)
            sql += " AND (pk > ? OR (pk = ? AND sk > ?))"
            params.extend([pk, pk, sk])
        sql += " ORDER BY pk, sk"
        with self._get_db_connection() as conn:
            rows = (json.loads(body) for (body,) in conn.execute(sql, params))
            return cut_page(rows, schema, page_bytes, limit, keep=lambda item: matches_filter(item, filter))
