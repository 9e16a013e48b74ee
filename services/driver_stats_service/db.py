# CREATE FILE: services/driver_stats_service/db.py

import os
import time
from typing import Any, Dict, List, Optional

import asyncpg

from utils.logging import get_logger


def build_dsn() -> str:
    """DATABASE_URL if set, otherwise assembled from the POSTGRES_* variables"""
    dsn = (os.getenv("DATABASE_URL") or os.getenv("POSTGRES_DSN") or "").strip()
    if dsn:
        return dsn

    pg_user = os.getenv("POSTGRES_USER", "postgres")
    pg_pass = os.getenv("POSTGRES_PASSWORD", "")
    pg_host = os.getenv("POSTGRES_HOST", "localhost")
    pg_port = os.getenv("POSTGRES_PORT", "5432")
    pg_db = os.getenv("POSTGRES_DB", "postgres")

    auth = f"{pg_user}:{pg_pass}@" if pg_pass else f"{pg_user}@"
    return f"postgresql://{auth}{pg_host}:{pg_port}/{pg_db}"


class Database:
    """Lazily created asyncpg pool with read helpers returning plain dicts"""

    def __init__(self, dsn: str = None, min_size: int = 1, max_size: int = 10):
        self.dsn = dsn or build_dsn()
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("driver_stats_db")
        self._pool: Optional[asyncpg.Pool] = None

    async def get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn, min_size=self.min_size, max_size=self.max_size
            )
        return self._pool

    async def fetch_all(self, sql: str, *params: Any, operation: str = "select") -> List[Dict[str, Any]]:
        """Run a SELECT and return every row as a dict"""
        pool = await self.get_pool()
        start_time = time.time()
        async with pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        self.logger.data_operation(operation,
                                   record_count=len(rows),
                                   duration_ms=(time.time() - start_time) * 1000)
        return [dict(r) for r in rows]

    async def fetch_one(self, sql: str, *params: Any, operation: str = "select") -> Optional[Dict[str, Any]]:
        """Run a SELECT and return the first row as a dict, or None"""
        pool = await self.get_pool()
        start_time = time.time()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(sql, *params)
        self.logger.data_operation(operation,
                                   record_count=1 if row else 0,
                                   duration_ms=(time.time() - start_time) * 1000)
        return dict(row) if row else None

    async def close(self):
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
