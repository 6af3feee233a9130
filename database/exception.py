"""
Database 관련 예외 클래스 정의
"""


class DatabaseError(Exception):
    """Database 기본 예외"""
    pass


class ConnectionPoolExhaustedError(DatabaseError):
    """커넥션풀 소진 (타임아웃 내 연결 획득 실패)"""
    pass


class ReadOnlyTransactionError(DatabaseError):
    """읽기 전용 트랜잭션에서 쓰기 시도"""
    pass


class TransactionError(DatabaseError):
    """트랜잭션 시작/커밋/롤백 실패"""
    pass


class QueryExecutionError(DatabaseError):
    """SQL 실행 실패"""
    def __init__(self, sql: str, message: str):
        self.sql = sql
        self.message = message
        super().__init__(f"Query failed: {message}")


class UnsupportedDatabaseError(DatabaseError):
    """지원하지 않는 데이터베이스 타입"""
    def __init__(self, name: str, db_type: str):
        self.name = name
        self.db_type = db_type
        self.message = f"Unsupported database type '{db_type}' for '{name}'"
        super().__init__(self.message)
