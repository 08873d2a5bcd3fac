from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock, local
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)

# Core BBCodes (b, i, url, quote, ...) occupy the ids up to this value.
NUM_CORE_BBCODES = 12
BBCODE_LIMIT = 1511

BBCODE_COLUMNS = (
    "bbcode_id",
    "bbcode_tag",
    "bbcode_order",
    "bbcode_helpline",
    "display_on_posting",
    "bbcode_match",
    "bbcode_tpl",
    "first_pass_match",
    "first_pass_replace",
    "second_pass_match",
    "second_pass_replace",
)

QueryType = Literal["INSERT", "UPDATE", "SELECT"]

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteConnectionManager:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = local()

    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.connection = conn
        return conn

    def close_connection(self) -> None:
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


class DataStore:
    """SQLite gateway for the forum's custom BBCode table.

    Mirrors the small driver surface the installer needs: run a query, walk
    its rows, release it, build field lists from a mapping and wrap work in a
    transaction. Statements issued outside :meth:`transaction` are committed
    as soon as they run.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.db_path = self.base_path / "bbcodes.sqlite3"
        self._connection_manager = SQLiteConnectionManager(self.db_path)
        self._setup_lock = RLock()
        self._setup_complete = False
        self._local = local()
        self._setup_database()

    def _conn(self) -> sqlite3.Connection:
        return self._connection_manager.get_connection()

    def close(self) -> None:
        self._connection_manager.close_connection()

    def _setup_database(self) -> None:
        if self._setup_complete:
            return
        with self._setup_lock:
            if self._setup_complete:
                return
            self._ensure_schema(self._conn())
            self._setup_complete = True

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        with conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS bbcodes (
                    bbcode_id INTEGER PRIMARY KEY,
                    bbcode_tag TEXT NOT NULL,
                    bbcode_order INTEGER NOT NULL DEFAULT 0,
                    bbcode_helpline TEXT NOT NULL DEFAULT '',
                    display_on_posting INTEGER NOT NULL DEFAULT 0,
                    bbcode_match TEXT NOT NULL,
                    bbcode_tpl TEXT NOT NULL,
                    first_pass_match TEXT NOT NULL DEFAULT '',
                    first_pass_replace TEXT NOT NULL DEFAULT '',
                    second_pass_match TEXT NOT NULL DEFAULT '',
                    second_pass_replace TEXT NOT NULL DEFAULT ''
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_bbcodes_tag_lower ON bbcodes(LOWER(bbcode_tag));
                CREATE INDEX IF NOT EXISTS idx_bbcodes_order ON bbcodes(bbcode_order, bbcode_id);
                """
            )
            columns = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(bbcodes)")
            }
            if "bbcode_helpline" not in columns:
                conn.execute("ALTER TABLE bbcodes ADD COLUMN bbcode_helpline TEXT NOT NULL DEFAULT ''")

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @property
    def _depth(self) -> int:
        return getattr(self._local, "transaction_depth", 0)

    @_depth.setter
    def _depth(self, value: int) -> None:
        self._local.transaction_depth = value

    def query(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        conn = self._conn()
        cursor = conn.execute(sql, tuple(params))
        if not self.in_transaction and conn.in_transaction:
            conn.commit()
        return cursor

    @staticmethod
    def fetchrow(cursor: sqlite3.Cursor) -> Optional[sqlite3.Row]:
        return cursor.fetchone()

    @staticmethod
    def free_result(cursor: sqlite3.Cursor) -> None:
        cursor.close()

    @staticmethod
    def build_array(query_type: QueryType, data: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        """Build the field list of an INSERT, UPDATE or SELECT statement.

        Returns the SQL fragment with ``?`` placeholders and the values in
        matching order. Column names are checked to be plain identifiers
        since they cannot be bound as parameters.
        """
        if not data:
            raise ValueError("字段列表不能为空")
        columns = list(data.keys())
        for column in columns:
            if not _IDENTIFIER_RE.match(column):
                raise ValueError(f"非法的字段名：{column!r}")
        values = [data[column] for column in columns]

        if query_type == "INSERT":
            placeholders = ", ".join("?" for _ in columns)
            return f"({', '.join(columns)}) VALUES ({placeholders})", values
        if query_type == "UPDATE":
            return ", ".join(f"{column} = ?" for column in columns), values
        if query_type == "SELECT":
            return " AND ".join(f"{column} = ?" for column in columns), values
        raise ValueError(f"不支持的查询类型：{query_type!r}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn()
        if self.in_transaction:
            self._depth += 1
            try:
                yield conn
            finally:
                self._depth -= 1
            return

        if conn.in_transaction:
            conn.commit()
        conn.execute("BEGIN")
        self._depth = 1
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            self._depth = 0

    def list_bbcodes(self) -> List[Dict[str, Any]]:
        cursor = self.query(
            f"SELECT {', '.join(BBCODE_COLUMNS)} FROM bbcodes ORDER BY bbcode_order, bbcode_id"
        )
        try:
            return [dict(row) for row in cursor.fetchall()]
        finally:
            self.free_result(cursor)

    def get_bbcode(self, bbcode_id: int) -> Optional[Dict[str, Any]]:
        cursor = self.query(
            f"SELECT {', '.join(BBCODE_COLUMNS)} FROM bbcodes WHERE bbcode_id = ?",
            (int(bbcode_id),),
        )
        row = self.fetchrow(cursor)
        self.free_result(cursor)
        return dict(row) if row else None

    def count_bbcodes(self) -> int:
        cursor = self.query("SELECT COUNT(*) FROM bbcodes")
        row = self.fetchrow(cursor)
        self.free_result(cursor)
        return int(row[0]) if row else 0
