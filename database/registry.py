"""
DatabaseRegistry: 이름 기반 데이터베이스 인스턴스 관리

database.yaml의 `databases` 항목에서 인스턴스를 생성하고,
프로세스 종료 시 한 번에 닫습니다.
"""

import logging
from typing import Any

from database.base import BaseDatabase
from database.exception import UnsupportedDatabaseError
from database.sqlite3 import SQLiteDatabase

logger = logging.getLogger(__name__)


class DatabaseRegistry:
    """데이터베이스 레지스트리 (클래스 레벨)"""

    _databases: dict[str, BaseDatabase] = {}

    @classmethod
    async def init_from_config(cls, config: dict[str, Any], names: list[str] | None = None) -> None:
        """
        설정에서 데이터베이스 초기화

        Args:
            config: database.yaml 내용 (`databases` 키 포함)
            names: 초기화할 DB 이름 목록 (None이면 전체)
        """
        databases = config.get('databases', {})
        targets = names if names is not None else list(databases.keys())

        for name in targets:
            if name in cls._databases:
                logger.debug(f"Database '{name}' already initialized, skipping")
                continue
            if name not in databases:
                raise KeyError(f"Database '{name}' is not defined in config")

            db_config = databases[name]
            db_type = db_config.get('type', 'sqlite')
            if db_type != 'sqlite':
                raise UnsupportedDatabaseError(name, db_type)

            cls._databases[name] = await SQLiteDatabase.create(name, db_config)
            logger.info(f"Database registered: {name} ({db_type})")

    @classmethod
    def register(cls, db: BaseDatabase) -> None:
        """이미 생성된 인스턴스 등록"""
        cls._databases[db.name] = db

    @classmethod
    def get(cls, name: str = 'default') -> BaseDatabase:
        """이름으로 데이터베이스 조회"""
        if name not in cls._databases:
            raise KeyError(f"Database '{name}' not found in registry")
        return cls._databases[name]

    @classmethod
    def get_all(cls) -> dict[str, BaseDatabase]:
        return cls._databases.copy()

    @classmethod
    async def close_all(cls) -> None:
        """등록된 모든 데이터베이스 종료"""
        for name, db in list(cls._databases.items()):
            try:
                await db.close()
            except Exception as e:
                logger.error(f"Error closing database '{name}': {e}")
        cls._databases.clear()

    @classmethod
    def clear(cls) -> None:
        """레지스트리 초기화 (테스트용, 연결은 닫지 않음)"""
        cls._databases.clear()
