# ask_tennis/store/duckdb_store.py
"""
DuckDB-backed relational store with a small cursor pool.

DuckDB calls are blocking, so every statement runs in a worker thread via
asyncio.to_thread. Each pooled cursor is an independent duplicate of the
process connection; a cursor is checked out for exactly one statement and
returned on every exit path. A statement that times out is interrupted and
its cursor is only returned once the worker thread has let go of it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

import duckdb

logger = logging.getLogger(__name__)


class RelationalStore(Protocol):
    """Capability the executor needs: parameterized, fallible reads."""

    async def query(
        self,
        statement: str,
        params: Sequence[Any] = (),
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        ...


class DuckDBStore:
    """
    Pooled DuckDB access.

    Example:
        store = DuckDBStore("tennis.duckdb", pool_size=4)
        rows = await store.query("SELECT name FROM players WHERE id = ?", [1])
    """

    def __init__(
        self, database: str = ":memory:", pool_size: int = 4, read_only: bool = False
    ):
        self.database = database
        self.pool_size = pool_size
        # No file, URL or extension access from SQL: FROM 'path.csv' must not work
        self.connection = duckdb.connect(
            database=database,
            read_only=read_only,
            config={"enable_external_access": False},
        )
        self._pool: "asyncio.Queue[duckdb.DuckDBPyConnection]" = asyncio.Queue()
        for _ in range(pool_size):
            self._pool.put_nowait(self.connection.cursor())
        logger.info(f"DuckDB store opened: {database} (pool_size={pool_size})")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator["duckdb.DuckDBPyConnection"]:
        """Check out a cursor; it is always returned, including on error."""
        cursor = await self._pool.get()
        try:
            yield cursor
        finally:
            self._pool.put_nowait(cursor)

    async def query(
        self,
        statement: str,
        params: Sequence[Any] = (),
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run one statement with positional parameters.

        Args:
            statement: SQL text using `?` placeholders
            params: Ordered parameter values
            timeout: Seconds before the statement is interrupted (None = no limit)

        Returns:
            Rows as column -> value mappings, in result order

        Raises:
            duckdb.Error: On any database-level failure
            asyncio.TimeoutError: If the timeout elapses
        """
        async with self.acquire() as cursor:
            work = asyncio.ensure_future(
                asyncio.to_thread(_fetch_rows, cursor, statement, list(params))
            )
            try:
                return await asyncio.wait_for(asyncio.shield(work), timeout=timeout)
            except asyncio.TimeoutError:
                cursor.interrupt()
                logger.warning(f"Interrupted statement after {timeout}s: {statement}")
                await _settle(work)
                raise
            except asyncio.CancelledError:
                cursor.interrupt()
                await _settle(work)
                raise

    def available(self) -> int:
        """Number of idle cursors."""
        return self._pool.qsize()

    def close(self) -> None:
        while not self._pool.empty():
            self._pool.get_nowait().close()
        self.connection.close()
        logger.info(f"DuckDB store closed: {self.database}")


async def _settle(work: "asyncio.Future[Any]") -> None:
    """Wait until an interrupted worker thread has finished with its cursor."""
    await asyncio.wait({work})
    if not work.cancelled() and work.exception() is not None:
        logger.debug(f"Interrupted statement ended with: {work.exception()!r}")


def _fetch_rows(
    cursor: "duckdb.DuckDBPyConnection", statement: str, params: List[Any]
) -> List[Dict[str, Any]]:
    cursor.execute(statement, params)
    if cursor.description is None:
        return []
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]
