"""
비동기 데이터베이스 패키지

사용 예시:
    from database import get_db
    from database.registry import DatabaseRegistry

    await DatabaseRegistry.init_from_config(config)
    db = get_db('default')

    async with db.transaction() as ctx:
        await ctx.execute("INSERT INTO ...")

    async with db.transaction(readonly=True) as ctx:
        row = await ctx.fetch_one("SELECT ...")
"""

from database.base import BaseDatabase
from database.exception import (
    DatabaseError,
    ConnectionPoolExhaustedError,
    ReadOnlyTransactionError,
    TransactionError,
    QueryExecutionError,
    UnsupportedDatabaseError,
)
from database.registry import DatabaseRegistry


def get_db(name: str = 'default') -> BaseDatabase:
    """레지스트리에서 데이터베이스 조회"""
    return DatabaseRegistry.get(name)


__all__ = [
    'BaseDatabase',
    'DatabaseRegistry',
    'get_db',
    'DatabaseError',
    'ConnectionPoolExhaustedError',
    'ReadOnlyTransactionError',
    'TransactionError',
    'QueryExecutionError',
    'UnsupportedDatabaseError',
]
