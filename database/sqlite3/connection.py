"""
SQLite3 비동기 커넥션풀 모듈

aiosqlite 기반 커넥션풀과 트랜잭션 컨텍스트를 제공합니다.
쓰기 트랜잭션은 BEGIN IMMEDIATE로 시작하므로 같은 DB 파일을 공유하는
모든 프로세스 사이에서 쓰기 순서가 직렬화됩니다.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosql
import aiosqlite

from database.base import BaseDatabase
from database.exception import (
    ConnectionPoolExhaustedError,
    QueryExecutionError,
    ReadOnlyTransactionError,
    TransactionError,
)

logger = logging.getLogger(__name__)

INIT_SQL_PATH = Path(__file__).parent / 'sql' / 'init.sql'

_WRITE_KEYWORDS = ('INSERT', 'UPDATE', 'DELETE', 'REPLACE', 'CREATE', 'DROP', 'ALTER')


@dataclass
class PoolConfig:
    """커넥션풀 설정"""
    pool_size: int = 5
    pool_timeout: float = 30.0
    max_idle_time: float = 300.0


@dataclass
class SqliteOptions:
    """SQLite PRAGMA 옵션"""
    busy_timeout: int = 5000
    journal_mode: str = 'WAL'
    synchronous: str = 'NORMAL'
    foreign_keys: bool = True


@dataclass
class PooledConnection:
    """풀에서 관리되는 연결"""
    connection: aiosqlite.Connection
    last_used_at: datetime = field(default_factory=datetime.now)
    in_use: bool = False


def _log_query(sql: str, parameters: Any = None) -> None:
    sql_oneline = ' '.join(sql.split())
    if parameters:
        logger.debug(f"[SQL] {sql_oneline} | params: {parameters}")
    else:
        logger.debug(f"[SQL] {sql_oneline}")


class TransactionContext:
    """열린 트랜잭션 위에서 SQL을 실행하는 컨텍스트"""

    def __init__(self, connection: aiosqlite.Connection, readonly: bool = False):
        self._connection = connection
        self._readonly = readonly

    @property
    def connection(self) -> aiosqlite.Connection:
        """aiosql 쿼리에 넘길 원본 연결"""
        return self._connection

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def execute(self, sql: str, parameters: Any = None) -> aiosqlite.Cursor:
        if self._readonly and sql.lstrip().upper().startswith(_WRITE_KEYWORDS):
            raise ReadOnlyTransactionError("Cannot execute write query in readonly transaction")
        _log_query(sql, parameters)
        try:
            return await self._connection.execute(sql, parameters or ())
        except sqlite3.Error as e:
            raise QueryExecutionError(sql, str(e)) from e

    async def fetch_one(self, sql: str, parameters: Any = None) -> aiosqlite.Row | None:
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, parameters: Any = None) -> list[aiosqlite.Row]:
        cursor = await self.execute(sql, parameters)
        return list(await cursor.fetchall())

    async def fetch_val(self, sql: str, parameters: Any = None) -> Any:
        row = await self.fetch_one(sql, parameters)
        return row[0] if row is not None else None


class AsyncConnectionPool:
    """고정 크기 aiosqlite 커넥션풀"""

    def __init__(
        self,
        db_path: str,
        pool_config: PoolConfig | None = None,
        sqlite_options: SqliteOptions | None = None
    ):
        self._db_path = Path(db_path)
        self._pool_config = pool_config or PoolConfig()
        self._sqlite_options = sqlite_options or SqliteOptions()

        self._pool: list[PooledConnection] = []
        self._lock = asyncio.Lock()
        self._semaphore: asyncio.Semaphore | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._initialized = False
        self._closed = False

    async def initialize(self) -> None:
        if self._initialized:
            logger.warning("Connection pool already initialized")
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._semaphore = asyncio.Semaphore(self._pool_config.pool_size)
        for _ in range(self._pool_config.pool_size):
            self._pool.append(PooledConnection(connection=await self._connect()))

        self._initialized = True
        self._cleanup_task = asyncio.create_task(self._refresh_idle_connections())
        logger.info(
            f"Connection pool initialized: {self._db_path} "
            f"(size={self._pool_config.pool_size}, timeout={self._pool_config.pool_timeout}s)"
        )

    async def _connect(self) -> aiosqlite.Connection:
        opts = self._sqlite_options
        conn = await aiosqlite.connect(self._db_path, timeout=opts.busy_timeout / 1000.0)
        conn.row_factory = aiosqlite.Row
        await conn.execute(f"PRAGMA busy_timeout={opts.busy_timeout}")
        await conn.execute(f"PRAGMA journal_mode={opts.journal_mode}")
        await conn.execute(f"PRAGMA synchronous={opts.synchronous}")
        await conn.execute(f"PRAGMA foreign_keys={'ON' if opts.foreign_keys else 'OFF'}")
        return conn

    async def acquire(self, timeout: float | None = None) -> PooledConnection:
        """연결 획득 (timeout 내 획득 실패 시 ConnectionPoolExhaustedError)"""
        if not self._initialized or self._closed:
            raise RuntimeError("Connection pool is not available")

        timeout = timeout or self._pool_config.pool_timeout
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectionPoolExhaustedError(f"Connection pool exhausted. Timeout after {timeout}s")

        async with self._lock:
            for pooled_conn in self._pool:
                if not pooled_conn.in_use:
                    pooled_conn.in_use = True
                    pooled_conn.last_used_at = datetime.now()
                    return pooled_conn

        self._semaphore.release()
        raise ConnectionPoolExhaustedError("No available connection in pool")

    async def release(self, pooled_conn: PooledConnection) -> None:
        async with self._lock:
            pooled_conn.in_use = False
            pooled_conn.last_used_at = datetime.now()
        self._semaphore.release()

    async def _refresh_idle_connections(self) -> None:
        """max_idle_time 넘게 쉬고 있는 연결을 새로 맺음 (백그라운드 태스크)"""
        while not self._closed:
            await asyncio.sleep(60)
            async with self._lock:
                now = datetime.now()
                for pooled_conn in self._pool:
                    idle = (now - pooled_conn.last_used_at).total_seconds()
                    if pooled_conn.in_use or idle <= self._pool_config.max_idle_time:
                        continue
                    try:
                        await pooled_conn.connection.close()
                        pooled_conn.connection = await self._connect()
                        pooled_conn.last_used_at = datetime.now()
                        logger.debug("Refreshed idle connection")
                    except Exception as e:
                        logger.error(f"Failed to refresh connection: {e}")

    async def close(self) -> None:
        self._closed = True
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

        async with self._lock:
            for pooled_conn in self._pool:
                try:
                    await pooled_conn.connection.close()
                except Exception as e:
                    logger.error(f"Error closing connection: {e}")
            self._pool.clear()
        logger.info("Connection pool closed")

    @property
    def size(self) -> int:
        return len(self._pool)

    @property
    def available(self) -> int:
        return sum(1 for pc in self._pool if not pc.in_use)


class ManagedTransaction:
    """
    트랜잭션 컨텍스트 매니저

    정상 종료 시 커밋, 예외 발생 시 롤백 후 연결을 풀에 반환합니다.
    """

    def __init__(self, pool: AsyncConnectionPool, readonly: bool = False):
        self._pool = pool
        self._readonly = readonly
        self._pooled_conn: PooledConnection | None = None

    async def __aenter__(self) -> TransactionContext:
        self._pooled_conn = await self._pool.acquire()
        conn = self._pooled_conn.connection
        try:
            await conn.execute("BEGIN DEFERRED" if self._readonly else "BEGIN IMMEDIATE")
        except Exception as e:
            await self._pool.release(self._pooled_conn)
            raise TransactionError(f"Failed to begin transaction: {e}") from e
        return TransactionContext(conn, self._readonly)

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        conn = self._pooled_conn.connection
        try:
            if exc_type:
                await conn.rollback()
            else:
                await conn.commit()
        finally:
            await self._pool.release(self._pooled_conn)


class SQLiteDatabase(BaseDatabase):
    """
    SQLite 데이터베이스 구현

    사용 예시:
        db = await SQLiteDatabase.create('default', {'path': './data/taskq.db'})

        async with db.transaction() as ctx:
            await ctx.execute(...)
    """

    def __init__(self, name: str, config: dict[str, Any]):
        super().__init__(name)
        self._config = config
        self._pool: AsyncConnectionPool | None = None

    @classmethod
    async def create(cls, name: str, config: dict[str, Any]) -> 'SQLiteDatabase':
        instance = cls(name, config)
        await instance._initialize()
        return instance

    async def _initialize(self) -> None:
        pool_cfg = self._config.get('pool', {})
        opts = self._config.get('options', {})
        self._pool = AsyncConnectionPool(
            db_path=self._config.get('path', f'./data/{self.name}.db'),
            pool_config=PoolConfig(**pool_cfg),
            sqlite_options=SqliteOptions(**opts),
        )
        await self._pool.initialize()
        await self._run_init_sql()
        logger.info(f"SQLiteDatabase '{self.name}' initialized successfully")

    async def _run_init_sql(self) -> None:
        """job_queue 스키마 생성 (IF NOT EXISTS)"""
        queries = aiosql.from_path(str(INIT_SQL_PATH), "aiosqlite")
        pooled_conn = await self._pool.acquire()
        try:
            await queries.create_job_queue_table(pooled_conn.connection)
            await queries.create_job_queue_indexes(pooled_conn.connection)
            await pooled_conn.connection.commit()
        finally:
            await self._pool.release(pooled_conn)

    def transaction(self, readonly: bool = False) -> ManagedTransaction:
        return ManagedTransaction(self.pool, readonly)

    @property
    def pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise RuntimeError(f"Database '{self.name}' not initialized")
        return self._pool

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
        logger.info(f"SQLiteDatabase '{self.name}' closed")
