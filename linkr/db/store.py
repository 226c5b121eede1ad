"""
Link Store Abstraction

This module defines the LinkStore interface and provides two implementations:
- InMemoryLinkStore: For development, testing and embedding
- PostgresLinkStore: For production with durability and concurrency safety

The LinkStore is responsible for:
- The two associative stores (account → pubkey, pubkey → account)
- Serializing writes (one write context open at a time)
- Applying a staged set of changes atomically

The LinkRegistry retains responsibility for:
- Event validation and signature verification
- Deciding WHICH edges to remove and add (the bijection rules)
- Notifications

TRANSACTION CONTRACT:
All writes MUST use the begin_write() context manager:

    with store.begin_write() as ctx:
        old_key = ctx.get_pubkey(account)
        ctx.delete_pubkey(old_key)
        ctx.put(account, new_key)
        ctx.commit()

Reads inside the context see committed state only; staged changes become
visible together on commit. Leaving the context without commit discards them.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Generator, Optional

from ..schemas import LinkRecord


# ============================================================
# EXCEPTIONS
# ============================================================

class StoreError(Exception):
    """Base exception for link store errors."""
    pass


class LockTimeoutError(StoreError):
    """Raised when the write lock cannot be acquired in time (store busy)."""
    code = "LockTimeout"


# ============================================================
# WRITE CONTEXT
# ============================================================

@dataclass
class WriteContext:
    """
    Transaction context for one serialized write.

    Holds the staged operations and whatever connection the backend needs.
    Commit/rollback always happen on the SAME connection that took the lock.

    THREAD SAFETY: All transaction state lives HERE, not on the store.
    """
    _store: "LinkStore"
    _conn: Any = field(default=None)
    _cursor: Any = field(default=None)
    _ops: list = field(default_factory=list)
    _committed: bool = field(default=False, init=False)
    _rolled_back: bool = field(default=False, init=False)

    def get_pubkey(self, account: str) -> Optional[str]:
        """Committed pubkey for an account (forward lookup)."""
        return self._store._ctx_get_pubkey(self, account)

    def get_account(self, pubkey: str) -> Optional[str]:
        """Committed account for a pubkey (reverse lookup)."""
        return self._store._ctx_get_account(self, pubkey)

    def put(self, account: str, pubkey: str) -> None:
        """Stage forward[account] = pubkey and reverse[pubkey] = account."""
        self._ops.append(("put", account, pubkey))

    def delete_account(self, account: str) -> None:
        """Stage removal of forward[account]."""
        self._ops.append(("delete_account", account, None))

    def delete_pubkey(self, pubkey: str) -> None:
        """Stage removal of reverse[pubkey]."""
        self._ops.append(("delete_pubkey", None, pubkey))

    def commit(self) -> None:
        if self._committed:
            raise StoreError("Transaction already committed")
        if self._rolled_back:
            raise StoreError("Transaction already rolled back")

        self._store._do_commit(self)
        self._committed = True

    def rollback(self) -> None:
        """Explicitly discard staged operations."""
        if not self._committed and not self._rolled_back:
            self._store._do_rollback(self)
            self._rolled_back = True


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class LinkStore(ABC):
    """
    Abstract base class for link storage.

    The LinkStore is the single source of truth for both mappings.
    No other component mutates them.

    Implementations must ensure:
    1. Writes are serialized: begin_write holds an exclusive lock
    2. Commit applies all staged operations or none
    3. Reads outside a write context never block on it for long
    """

    @contextmanager
    @abstractmethod
    def begin_write(self) -> Generator[WriteContext, None, None]:
        """
        Begin a serialized write.

        Acquires the write lock, yields a WriteContext and releases the
        lock on exit. Uncommitted contexts are rolled back.
        """
        pass

    @abstractmethod
    def _ctx_get_pubkey(self, ctx: WriteContext, account: str) -> Optional[str]:
        pass

    @abstractmethod
    def _ctx_get_account(self, ctx: WriteContext, pubkey: str) -> Optional[str]:
        pass

    @abstractmethod
    def _do_commit(self, ctx: WriteContext) -> None:
        """Internal: apply staged ops. Use ctx.commit() instead."""
        pass

    @abstractmethod
    def _do_rollback(self, ctx: WriteContext) -> None:
        """Internal: discard staged ops. Use ctx.rollback() instead."""
        pass

    @abstractmethod
    def get_pubkey(self, account: str) -> Optional[str]:
        """Forward lookup without locking."""
        pass

    @abstractmethod
    def get_account(self, pubkey: str) -> Optional[str]:
        """Reverse lookup without locking."""
        pass

    @abstractmethod
    def list_forward(self) -> dict[str, str]:
        """Snapshot of account → pubkey."""
        pass

    @abstractmethod
    def list_reverse(self) -> dict[str, str]:
        """Snapshot of pubkey → account."""
        pass

    @abstractmethod
    def snapshot(self) -> tuple[dict[str, str], dict[str, str]]:
        """
        (forward, reverse) read at one commit boundary.

        list_forward() followed by list_reverse() can straddle a commit;
        anything comparing the two maps must use this instead.
        """
        pass

    def list_links(self) -> list[LinkRecord]:
        """All forward edges, ordered by account."""
        return [
            LinkRecord(account=account, pubkey=pubkey)
            for account, pubkey in sorted(self.list_forward().items())
        ]

    def get_link_count(self) -> int:
        return len(self.list_forward())


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryLinkStore(LinkStore):
    """
    In-memory implementation of LinkStore.

    Both maps live in one (forward, reverse) tuple that commits replace
    with a single assignment, so unlocked readers always see a matching
    pair. The dicts inside are never mutated after publication.

    Suitable for:
    - Development
    - Testing
    - Embedding in a single process

    NOT suitable for:
    - Multi-instance deployments (no shared state)
    - Anything that must survive a restart
    """

    _LOCK_TOKEN = "in_memory_lock"

    def __init__(self):
        self._maps: tuple[dict[str, str], dict[str, str]] = ({}, {})
        self._lock = Lock()

    @contextmanager
    def begin_write(self) -> Generator[WriteContext, None, None]:
        """Begin a write holding the thread lock."""
        self._lock.acquire()
        ctx = WriteContext(_store=self, _conn=self._LOCK_TOKEN)

        try:
            yield ctx
        finally:
            if not ctx._committed and not ctx._rolled_back:
                self._do_rollback(ctx)

    def _ctx_get_pubkey(self, ctx: WriteContext, account: str) -> Optional[str]:
        return self._maps[0].get(account)

    def _ctx_get_account(self, ctx: WriteContext, pubkey: str) -> Optional[str]:
        return self._maps[1].get(pubkey)

    def _do_commit(self, ctx: WriteContext) -> None:
        """Apply staged ops to copies, then publish both maps at once."""
        if ctx._conn != self._LOCK_TOKEN:
            raise StoreError("_do_commit called outside transaction")

        try:
            forward, reverse = (dict(m) for m in self._maps)
            for op, account, pubkey in ctx._ops:
                if op == "put":
                    forward[account] = pubkey
                    reverse[pubkey] = account
                elif op == "delete_account":
                    forward.pop(account, None)
                elif op == "delete_pubkey":
                    reverse.pop(pubkey, None)
                else:
                    raise StoreError(f"Unknown staged operation: {op}")

            self._maps = (forward, reverse)
        finally:
            ctx._conn = None
            ctx._ops = []
            self._lock.release()

    def _do_rollback(self, ctx: WriteContext) -> None:
        """Release lock without applying anything."""
        ctx._ops = []
        if ctx._conn == self._LOCK_TOKEN:
            ctx._conn = None
            self._lock.release()

    def get_pubkey(self, account: str) -> Optional[str]:
        return self._maps[0].get(account)

    def get_account(self, pubkey: str) -> Optional[str]:
        return self._maps[1].get(pubkey)

    def list_forward(self) -> dict[str, str]:
        return dict(self._maps[0])

    def list_reverse(self) -> dict[str, str]:
        return dict(self._maps[1])

    def snapshot(self) -> tuple[dict[str, str], dict[str, str]]:
        forward, reverse = self._maps
        return dict(forward), dict(reverse)

    def clear(self) -> None:
        """Clear all links (for testing only)."""
        with self._lock:
            self._maps = ({}, {})


# ============================================================
# POSTGRESQL IMPLEMENTATION
# ============================================================

_SELECT_PUBKEY = "SELECT pubkey FROM linkr_account_links WHERE account = %s"
_SELECT_ACCOUNT = "SELECT account FROM linkr_pubkey_links WHERE pubkey = %s"
_SELECT_FORWARD = "SELECT account, pubkey FROM linkr_account_links"
_SELECT_REVERSE = "SELECT pubkey, account FROM linkr_pubkey_links"

_UPSERT_FORWARD = """
    INSERT INTO linkr_account_links (account, pubkey) VALUES (%s, %s)
    ON CONFLICT (account) DO UPDATE SET pubkey = EXCLUDED.pubkey
"""
_UPSERT_REVERSE = """
    INSERT INTO linkr_pubkey_links (pubkey, account) VALUES (%s, %s)
    ON CONFLICT (pubkey) DO UPDATE SET account = EXCLUDED.account
"""
_DELETE_FORWARD = "DELETE FROM linkr_account_links WHERE account = %s"
_DELETE_REVERSE = "DELETE FROM linkr_pubkey_links WHERE pubkey = %s"

_ENSURE_LOCK_ROW = "INSERT INTO linkr_write_lock (id) VALUES (TRUE) ON CONFLICT (id) DO NOTHING"
_TAKE_LOCK_ROW = "SELECT id FROM linkr_write_lock WHERE id = TRUE FOR UPDATE"


class PostgresLinkStore(LinkStore):
    """
    PostgreSQL implementation of LinkStore.

    Every write runs in its own transaction and first takes FOR UPDATE on
    the single linkr_write_lock row, so concurrent writers (across
    processes too) queue behind each other. A writer that waits longer
    than lock_timeout_ms gets LockTimeoutError.

    Tables come from schema.sql. Reads use a fresh connection each.

    Usage:
        store = PostgresLinkStore(lambda: psycopg2.connect(dsn))
    """

    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    # SQLSTATE lock_not_available / query_canceled
    PGCODE_LOCK_NOT_AVAILABLE = "55P03"
    PGCODE_QUERY_CANCELED = "57014"

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        self._connect = connection_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    @contextmanager
    def begin_write(self) -> Generator[WriteContext, None, None]:
        conn = self._connect()
        conn.autocommit = False
        cursor = conn.cursor()
        ctx = WriteContext(_store=self, _conn=conn, _cursor=cursor)

        try:
            cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
            cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")
            cursor.execute(_ENSURE_LOCK_ROW)
            self._take_write_lock(cursor)
            yield ctx
        finally:
            if not ctx._committed:
                conn.rollback()
            try:
                cursor.close()
            finally:
                conn.close()

    def _take_write_lock(self, cursor) -> None:
        try:
            cursor.execute(_TAKE_LOCK_ROW)
        except Exception as e:
            kind = self._timeout_kind(e)
            if kind == "lock":
                raise LockTimeoutError(
                    "Link store busy - could not acquire write lock. Try again."
                ) from e
            if kind is not None:
                raise StoreError(f"Write lock query cancelled ({kind}).") from e
            raise

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Classify a database error as "lock", "statement", "timeout" or None.

        query_canceled covers both lock_timeout and statement_timeout; the
        server message tells them apart.
        """
        pgcode = getattr(e, "pgcode", None)
        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"
        if pgcode != self.PGCODE_QUERY_CANCELED:
            return None

        message = (getattr(e, "pgerror", None) or str(e)).lower().replace("_", " ")
        for kind in ("lock", "statement"):
            if f"{kind} timeout" in message:
                return kind
        return "timeout"

    def _ctx_get_pubkey(self, ctx: WriteContext, account: str) -> Optional[str]:
        ctx._cursor.execute(_SELECT_PUBKEY, (account,))
        row = ctx._cursor.fetchone()
        return row[0] if row else None

    def _ctx_get_account(self, ctx: WriteContext, pubkey: str) -> Optional[str]:
        ctx._cursor.execute(_SELECT_ACCOUNT, (pubkey,))
        row = ctx._cursor.fetchone()
        return row[0] if row else None

    def _do_commit(self, ctx: WriteContext) -> None:
        if ctx._cursor is None or ctx._conn is None:
            raise StoreError("_do_commit called outside begin_write context")

        statements = []
        for op, account, pubkey in ctx._ops:
            if op == "put":
                statements.append((_UPSERT_FORWARD, (account, pubkey)))
                statements.append((_UPSERT_REVERSE, (pubkey, account)))
            elif op == "delete_account":
                statements.append((_DELETE_FORWARD, (account,)))
            elif op == "delete_pubkey":
                statements.append((_DELETE_REVERSE, (pubkey,)))
            else:
                raise StoreError(f"Unknown staged operation: {op}")

        for query, params in statements:
            ctx._cursor.execute(query, params)
        ctx._conn.commit()
        ctx._ops = []

    def _do_rollback(self, ctx: WriteContext) -> None:
        ctx._ops = []
        if ctx._conn is not None:
            ctx._conn.rollback()

    def _fetch(self, query: str, params: tuple = ()) -> list[tuple]:
        conn = self._connect()
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            return cursor.fetchall()
        finally:
            cursor.close()
            conn.close()

    def get_pubkey(self, account: str) -> Optional[str]:
        rows = self._fetch(_SELECT_PUBKEY, (account,))
        return rows[0][0] if rows else None

    def get_account(self, pubkey: str) -> Optional[str]:
        rows = self._fetch(_SELECT_ACCOUNT, (pubkey,))
        return rows[0][0] if rows else None

    def list_forward(self) -> dict[str, str]:
        return dict(self._fetch(_SELECT_FORWARD))

    def list_reverse(self) -> dict[str, str]:
        return dict(self._fetch(_SELECT_REVERSE))

    def snapshot(self) -> tuple[dict[str, str], dict[str, str]]:
        """Both tables from one REPEATABLE READ transaction."""
        conn = self._connect()
        conn.autocommit = False
        cursor = conn.cursor()
        try:
            cursor.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY")
            cursor.execute(_SELECT_FORWARD)
            forward = dict(cursor.fetchall())
            cursor.execute(_SELECT_REVERSE)
            reverse = dict(cursor.fetchall())
            return forward, reverse
        finally:
            conn.rollback()
            try:
                cursor.close()
            finally:
                conn.close()
