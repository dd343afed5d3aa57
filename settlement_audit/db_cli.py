import logging
from typing import Any, AsyncIterator, List, Optional

import asyncpg

from .errors import StoreError

logger = logging.getLogger(__name__)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class DatabaseManager:
    """
    Owns the single read-only connection to the order database.

    Every query takes a `task_id` naming what it is for; failures are raised
    as StoreError carrying that name so the caller can tell which step broke.
    """
    def __init__(self, dsn: str, prefetch: int = 50):
        self.dsn = dsn
        self.prefetch = prefetch
        self.conn: Optional[asyncpg.Connection] = None

    async def connect(self) -> None:
        if self.conn and not self.conn.is_closed():
            return
        try:
            self.conn = await asyncpg.connect(self.dsn)
        except (*_DB_ERRORS, ValueError) as e:
            raise StoreError(f"connect to database: {e}") from e
        logger.debug("Connected to database.")

    async def disconnect(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None

    async def __aenter__(self) -> "DatabaseManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def _require_conn(self, task_id: str) -> asyncpg.Connection:
        if self.conn is None:
            raise StoreError(f"{task_id}: database connection is not open, call connect() first")
        return self.conn

    async def fetch(self, task_id: str, stmt: str, *params: Any) -> List[asyncpg.Record]:
        conn = self._require_conn(task_id)
        try:
            rows = await conn.fetch(stmt, *params)
        except _DB_ERRORS as e:
            raise StoreError(f"{task_id}: {e}") from e
        logger.debug(f"{task_id}: {len(rows)} rows")
        return rows

    async def cursor(self, task_id: str, stmt: str, *params: Any) -> AsyncIterator[asyncpg.Record]:
        """Streams rows through a server side cursor, which asyncpg only allows inside a transaction."""
        conn = self._require_conn(task_id)
        try:
            async with conn.transaction(readonly=True):
                async for row in conn.cursor(stmt, *params, prefetch=self.prefetch):
                    yield row
        except _DB_ERRORS as e:
            raise StoreError(f"{task_id}: {e}") from e
