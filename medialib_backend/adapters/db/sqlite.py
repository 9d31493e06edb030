"""
SQLite database connection manager (aiosqlite-backed).

The index has a single logical owner: one aiosqlite connection guarded by one
asyncio lock. Every statement and every transaction goes through that lock, so
store operations are serialized with respect to each other.

Statements issued inside `atransaction()` reuse the transaction's hold on the
lock through a context-local token instead of re-acquiring it.

Critical guarantee:
- The adapter never raises to callers; it returns `Result(...)`.
  Exceptions raised by the caller inside `atransaction()` are re-raised after
  rollback.
"""

from __future__ import annotations

import asyncio
import contextvars
import random
import sqlite3
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from ...config import DB_QUERY_TIMEOUT, DB_TIMEOUT
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_MS = max(1000, int(float(DB_TIMEOUT) * 1000))

_TX_TOKEN: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("mlib_db_tx_token", default=None)


class Sqlite:
    """
    Serialized SQLite access for the index.

    Usage:
        db = Sqlite("/path/to/index.sqlite")
        res = await db.aquery("SELECT * FROM media WHERE path = ?", (path,))
        async with db.atransaction() as tx:
            await db.aexecute("DELETE FROM media WHERE id = ?", (media_id,))
        await db.aclose()
    """

    def __init__(self, db_path: str, timeout: float = DB_TIMEOUT, query_timeout: float = DB_QUERY_TIMEOUT):
        self.db_path = Path(db_path)
        self._timeout = float(timeout)
        self._query_timeout = float(query_timeout or 0.0)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._active_tx: Optional[str] = None
        self._closed = False
        self._lock_retry_attempts = 6
        self._lock_retry_base_seconds = 0.05
        self._lock_retry_max_seconds = 0.75

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def _apply_connection_pragmas(self, conn: aiosqlite.Connection):
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        await conn.execute("PRAGMA foreign_keys=ON")

    async def _connection(self) -> aiosqlite.Connection:
        if self._closed:
            raise RuntimeError("Database is closed")
        if self._conn is None:
            # Autocommit mode; transactions are managed explicitly (BEGIN/COMMIT).
            conn = await aiosqlite.connect(str(self.db_path), timeout=self._timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            await self._apply_connection_pragmas(conn)
            self._conn = conn
        return self._conn

    @staticmethod
    def _is_locked_error(exc: Exception) -> bool:
        msg = str(exc).lower()
        return "database is locked" in msg or "database is busy" in msg

    async def _sleep_backoff(self, attempt: int):
        delay = min(self._lock_retry_max_seconds, self._lock_retry_base_seconds * (2 ** attempt))
        await asyncio.sleep(delay + random.uniform(0, delay / 4))

    def _in_transaction(self) -> bool:
        token = _TX_TOKEN.get()
        return token is not None and token == self._active_tx

    @staticmethod
    def _rows_to_dicts(rows: Any) -> List[Dict[str, Any]]:
        if not rows:
            return []
        return [dict(r) for r in rows]

    async def _with_query_timeout(self, coro):
        if self._query_timeout > 0:
            try:
                return await asyncio.wait_for(coro, timeout=self._query_timeout)
            except asyncio.TimeoutError:
                return Result.Err(ErrorCode.TIMEOUT, "Database operation timed out")
        return await coro

    async def _run_with_retry(self, fn):
        for attempt in range(self._lock_retry_attempts + 1):
            try:
                return await fn()
            except sqlite3.OperationalError as exc:
                if self._is_locked_error(exc) and attempt < self._lock_retry_attempts:
                    await self._sleep_backoff(attempt)
                    continue
                raise
        return Result.Err(ErrorCode.DB_ERROR, "Query failed after retries")

    async def _guarded(self, fn) -> Result[Any]:
        """Run `fn(conn)` under the store lock (or the caller's transaction) and map errors to Result."""

        async def _inner() -> Result[Any]:
            try:
                conn = await self._connection()
                return await self._run_with_retry(lambda: fn(conn))
            except sqlite3.IntegrityError as exc:
                logger.warning("Integrity error: %s", exc)
                return Result.Err(ErrorCode.DB_ERROR, f"Integrity error: {exc}")
            except sqlite3.OperationalError as exc:
                logger.error("Operational error: %s", exc)
                return Result.Err(ErrorCode.DB_ERROR, f"Operational error: {exc}")
            except sqlite3.DatabaseError as exc:
                logger.error("Database error: %s", exc)
                return Result.Err(ErrorCode.DB_ERROR, str(exc))
            except (RuntimeError, ValueError) as exc:
                logger.error("Unexpected database error: %s", exc)
                return Result.Err(ErrorCode.DB_ERROR, str(exc))

        if self._in_transaction():
            return await self._with_query_timeout(_inner())
        async with self._lock:
            return await self._with_query_timeout(_inner())

    @staticmethod
    async def _execute_with_cursor_result(
        conn: aiosqlite.Connection,
        query: str,
        params: Optional[tuple],
        *,
        fetch: bool,
    ) -> Result[Any]:
        async with conn.execute(query, params or ()) as cursor:
            if fetch:
                rows = await cursor.fetchall()
                return Result.Ok(Sqlite._rows_to_dicts(rows))
            rowcount = cursor.rowcount if cursor.rowcount is not None else 0
            return Result.Ok(rowcount, lastrowid=cursor.lastrowid)

    async def aexecute(self, query: str, params: Optional[tuple] = None, fetch: bool = False) -> Result[Any]:
        """
        Execute one statement.

        Writes return `Ok(rowcount)` with `meta["lastrowid"]`; with `fetch=True`
        the rows are returned as dicts.
        """
        return await self._guarded(
            lambda conn: self._execute_with_cursor_result(conn, query, params, fetch=fetch)
        )

    async def aquery(self, sql: str, params: Optional[tuple] = None) -> Result[List[Dict[str, Any]]]:
        """Execute a SELECT query and return rows."""
        return await self.aexecute(sql, params, fetch=True)

    async def aquery_one(self, sql: str, params: Optional[tuple] = None) -> Result[Optional[Dict[str, Any]]]:
        """Execute a SELECT query and return the first row, or None."""
        res = await self.aquery(sql, params)
        if not res.ok:
            return Result.Err(res.code, res.error or "Query failed")
        rows = res.data or []
        return Result.Ok(rows[0] if rows else None)

    async def aexecutescript(self, script: str) -> Result[bool]:
        """Execute a multi-statement SQL script (schema setup)."""

        async def _run(conn: aiosqlite.Connection) -> Result[bool]:
            await conn.executescript(script)
            return Result.Ok(True)

        return await self._guarded(_run)

    async def ahas_table(self, table_name: str) -> bool:
        res = await self.aquery(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        )
        return bool(res.ok and res.data)

    async def aget_schema_version(self) -> int:
        if not await self.ahas_table("metadata"):
            return 0
        res = await self.aquery_one("SELECT value FROM metadata WHERE key = 'schema_version'")
        if not res.ok or not res.data:
            return 0
        try:
            return int(res.data["value"])
        except (TypeError, ValueError):
            return 0

    async def aset_schema_version(self, version: int) -> Result[bool]:
        res = await self.aexecute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_version', ?)",
            (str(version),),
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to set schema version")
        return Result.Ok(True)

    @staticmethod
    def _begin_stmt_for_mode(mode: str) -> str:
        if isinstance(mode, str) and mode.lower() in ("deferred", "immediate", "exclusive"):
            return f"BEGIN {mode.upper()}"
        return "BEGIN IMMEDIATE"

    @asynccontextmanager
    async def atransaction(self, mode: str = "immediate"):
        """
        Async context manager for a DB transaction.

        Yields a `Result` describing the transaction state. When BEGIN fails the
        body still runs with a failed state and nothing is committed; callers
        check `tx.ok` after the block. Setting `tx.ok = False` inside the body
        rolls back instead of committing. Nested use joins the outer transaction.
        """
        if self._in_transaction():
            yield Result.Ok(True)
            return

        await self._lock.acquire()
        try:
            conn = await self._connection()
            await self._run_with_retry(lambda: self._begin(conn, mode))
        except (sqlite3.Error, RuntimeError) as exc:
            self._lock.release()
            logger.error("Failed to begin transaction: %s", exc)
            yield Result.Err(ErrorCode.DB_ERROR, f"Failed to begin transaction: {exc}")
            return

        tx_state: Result[bool] = Result.Ok(True)
        token = f"tx_{uuid.uuid4().hex}"
        self._active_tx = token
        token_handle = _TX_TOKEN.set(token)
        try:
            try:
                yield tx_state
            except BaseException:
                await self._safe_rollback(conn)
                raise
            if not tx_state.ok:
                await self._safe_rollback(conn)
                return
            try:
                await self._run_with_retry(conn.commit)
            except sqlite3.Error as exc:
                logger.error("Commit failed: %s", exc)
                await self._safe_rollback(conn)
                tx_state.ok = False
                tx_state.code = ErrorCode.DB_ERROR.value
                tx_state.error = f"Commit failed: {exc}"
        finally:
            self._active_tx = None
            _TX_TOKEN.reset(token_handle)
            self._lock.release()

    async def _begin(self, conn: aiosqlite.Connection, mode: str) -> None:
        await conn.execute(self._begin_stmt_for_mode(mode))

    @staticmethod
    async def _safe_rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except sqlite3.Error as exc:
            logger.warning("Rollback failed: %s", exc)

    async def aclose(self):
        """Close the connection; further calls return DB_ERROR results."""
        async with self._lock:
            self._closed = True
            conn, self._conn = self._conn, None
            if conn is not None:
                try:
                    await conn.close()
                except sqlite3.Error as exc:
                    logger.debug("Close failed: %s", exc)
