import asyncio
from pathlib import Path

import pytest

from medialib_backend.adapters.db.sqlite import Sqlite


@pytest.mark.asyncio
async def test_sqlite_basic_queries(tmp_path: Path):
    db = Sqlite(str(tmp_path / "it.db"), timeout=2.0)
    try:
        r1 = await db.aexecute("CREATE TABLE IF NOT EXISTS t (id INTEGER PRIMARY KEY, name TEXT)")
        assert r1.ok

        for name in ("a", "b", "c"):
            assert (await db.aexecute("INSERT INTO t (name) VALUES (?)", (name,))).ok

        ins = await db.aexecute("INSERT INTO t (name) VALUES (?)", ("d",))
        assert ins.ok and ins.data == 1
        assert ins.meta["lastrowid"] == 4

        q1 = await db.aquery("SELECT id, name FROM t ORDER BY id")
        assert q1.ok and [row["name"] for row in q1.data] == ["a", "b", "c", "d"]

        one = await db.aquery_one("SELECT name FROM t WHERE id = ?", (2,))
        assert one.ok and one.data == {"name": "b"}
        none = await db.aquery_one("SELECT name FROM t WHERE id = ?", (99,))
        assert none.ok and none.data is None
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_sqlite_errors_become_results(tmp_path: Path):
    db = Sqlite(str(tmp_path / "err.db"), timeout=2.0)
    try:
        bad = await db.aquery("SELECT * FROM missing_table")
        assert not bad.ok
        assert bad.code == "DB_ERROR"

        await db.aexecute("CREATE TABLE u (name TEXT UNIQUE)")
        await db.aexecute("INSERT INTO u (name) VALUES ('x')")
        dup = await db.aexecute("INSERT INTO u (name) VALUES ('x')")
        assert not dup.ok and "Integrity" in (dup.error or "")
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_transaction_commits(tmp_path: Path):
    db = Sqlite(str(tmp_path / "tx.db"), timeout=2.0)
    try:
        await db.aexecute("CREATE TABLE tx_t (id INTEGER PRIMARY KEY, v INTEGER)")
        async with db.atransaction() as tx:
            assert tx.ok
            await db.aexecute("INSERT INTO tx_t (v) VALUES (?)", (10,))
            await db.aexecute("INSERT INTO tx_t (v) VALUES (?)", (20,))
        assert tx.ok
        q = await db.aquery("SELECT SUM(v) AS s FROM tx_t")
        assert q.data[0]["s"] == 30
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_transaction_rolls_back_and_reraises(tmp_path: Path):
    db = Sqlite(str(tmp_path / "rb.db"), timeout=2.0)
    try:
        await db.aexecute("CREATE TABLE tx_t (id INTEGER PRIMARY KEY, v INTEGER)")
        with pytest.raises(RuntimeError, match="body failed"):
            async with db.atransaction():
                await db.aexecute("INSERT INTO tx_t (v) VALUES (1)")
                raise RuntimeError("body failed")
        q = await db.aquery("SELECT COUNT(*) AS c FROM tx_t")
        assert q.data[0]["c"] == 0

        # The lock was released: later statements still run.
        assert (await db.aexecute("INSERT INTO tx_t (v) VALUES (2)")).ok
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_transaction_marked_failed_rolls_back(tmp_path: Path):
    db = Sqlite(str(tmp_path / "mark.db"), timeout=2.0)
    try:
        await db.aexecute("CREATE TABLE tx_t (id INTEGER PRIMARY KEY, v INTEGER)")
        async with db.atransaction() as tx:
            await db.aexecute("INSERT INTO tx_t (v) VALUES (1)")
            tx.ok = False
        q = await db.aquery("SELECT COUNT(*) AS c FROM tx_t")
        assert q.data[0]["c"] == 0
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_nested_transaction_joins_outer(tmp_path: Path):
    db = Sqlite(str(tmp_path / "nested.db"), timeout=2.0)
    try:
        await db.aexecute("CREATE TABLE tx_t (id INTEGER PRIMARY KEY, v INTEGER)")
        with pytest.raises(ValueError):
            async with db.atransaction():
                async with db.atransaction() as inner:
                    assert inner.ok
                    await db.aexecute("INSERT INTO tx_t (v) VALUES (1)")
                raise ValueError("outer fails")
        q = await db.aquery("SELECT COUNT(*) AS c FROM tx_t")
        assert q.data[0]["c"] == 0
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_transactions_are_serialized(tmp_path: Path):
    db = Sqlite(str(tmp_path / "serial.db"), timeout=2.0)
    try:
        await db.aexecute("CREATE TABLE counter (id INTEGER PRIMARY KEY, n INTEGER)")
        await db.aexecute("INSERT INTO counter (id, n) VALUES (1, 0)")

        async def bump():
            async with db.atransaction():
                row = await db.aquery_one("SELECT n FROM counter WHERE id = 1")
                await asyncio.sleep(0)
                await db.aexecute("UPDATE counter SET n = ? WHERE id = 1", (row.data["n"] + 1,))

        await asyncio.gather(*(bump() for _ in range(10)))
        final = await db.aquery_one("SELECT n FROM counter WHERE id = 1")
        assert final.data["n"] == 10
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_schema_version_helpers(tmp_path: Path):
    db = Sqlite(str(tmp_path / "ver.db"), timeout=2.0)
    try:
        assert await db.aget_schema_version() == 0
        await db.aexecutescript("CREATE TABLE metadata (key TEXT PRIMARY KEY, value TEXT NOT NULL);")
        assert await db.ahas_table("metadata") is True
        assert await db.ahas_table("nope") is False
        assert (await db.aset_schema_version(3)).ok
        assert await db.aget_schema_version() == 3
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_closed_database_returns_error(tmp_path: Path):
    db = Sqlite(str(tmp_path / "closed.db"), timeout=2.0)
    await db.aexecute("CREATE TABLE t (id INTEGER)")
    await db.aclose()
    res = await db.aquery("SELECT * FROM t")
    assert not res.ok
    assert res.code == "DB_ERROR"
