"""
PostgreSQL record store.

Stores one record tree per workspace as a JSONB document. Reads use the
`#>` path operator so only the requested subtree leaves the server; writes
lock the workspace row, update the document and commit in one transaction.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import asyncpg

from ..errors import StoreError
from ..tree import set_in, split_path
from .base import RecordStore

logger = logging.getLogger(__name__)

TABLE_NAME = "treemirror_trees"

CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    workspace TEXT PRIMARY KEY,
    tree JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

FATAL_PG_ERRORS = (
    asyncpg.exceptions.InsufficientPrivilegeError,
    asyncpg.exceptions.InvalidPasswordError,
    asyncpg.exceptions.InvalidAuthorizationSpecificationError,
    asyncpg.exceptions.UndefinedTableError,
)


def _as_store_error(operation: str, error: Exception) -> StoreError:
    if isinstance(error, FATAL_PG_ERRORS):
        return StoreError(f"postgres {operation} failed: {error}", transient=False)
    transient = isinstance(error, (
        asyncpg.exceptions.PostgresConnectionError,
        asyncpg.exceptions.SerializationError,
        asyncpg.exceptions.DeadlockDetectedError,
        asyncpg.exceptions.TooManyConnectionsError,
        ConnectionError,
        asyncio.TimeoutError,
        OSError,
    ))
    return StoreError(f"postgres {operation} failed: {error}", transient=transient)


class PostgresRecordStore(RecordStore):
    """Record tree stored as JSONB, one row per workspace."""

    def __init__(
        self,
        connection_string: str,
        workspace: str = "default",
        max_connections: int = 10,
        name: str = "postgres-records",
    ):
        self.connection_string = connection_string
        self.workspace = workspace
        self.max_connections = max_connections
        self.name = name
        self._pool = None
        self._pool_lock = asyncio.Lock()

    async def _get_pool(self):
        """Get or create the connection pool, creating the table on first use."""
        async with self._pool_lock:
            if self._pool is None:
                try:
                    self._pool = await asyncpg.create_pool(
                        self.connection_string,
                        min_size=1,
                        max_size=self.max_connections,
                    )
                    async with self._pool.acquire() as conn:
                        await conn.execute(CREATE_TABLE_SQL)
                except Exception as e:
                    raise _as_store_error("connect", e) from e
                logger.debug(f"{self.name}: connected (workspace={self.workspace})")
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.debug(f"{self.name}: disconnected")

    async def get(self, path: str) -> Optional[Any]:
        segments = split_path(path)
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                value = await conn.fetchval(
                    f"SELECT tree #> $2::text[] FROM {TABLE_NAME} WHERE workspace = $1",
                    self.workspace, segments
                )
        except Exception as e:
            raise _as_store_error("read", e) from e
        if value is None:
            return None
        return json.loads(value) if isinstance(value, str) else value

    async def set(self, path: str, tree: Any) -> None:
        segments = split_path(path)
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    # FOR UPDATE only locks an existing row
                    await conn.execute(
                        f"INSERT INTO {TABLE_NAME} (workspace) VALUES ($1) ON CONFLICT DO NOTHING",
                        self.workspace
                    )
                    current = await conn.fetchval(
                        f"SELECT tree FROM {TABLE_NAME} WHERE workspace = $1 FOR UPDATE",
                        self.workspace
                    )
                    document = json.loads(current) if isinstance(current, str) else (current or {})
                    updated = set_in(document, segments, tree)
                    await conn.execute(
                        f"""
                        INSERT INTO {TABLE_NAME} (workspace, tree, updated_at)
                        VALUES ($1, $2::jsonb, now())
                        ON CONFLICT (workspace)
                        DO UPDATE SET tree = EXCLUDED.tree, updated_at = EXCLUDED.updated_at
                        """,
                        self.workspace, json.dumps(updated if updated is not None else {})
                    )
        except StoreError:
            raise
        except Exception as e:
            raise _as_store_error("write", e) from e
        logger.debug(f"{self.name}: wrote '{path or '/'}' (workspace={self.workspace})")
