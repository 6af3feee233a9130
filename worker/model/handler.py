"""
핸들러 입력 모델

모든 핸들러가 공통으로 받는 실행 컨텍스트.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class HandlerParams(BaseModel):
    """핸들러 입력 파라미터"""
    job_id: str
    job_type: str
    attempt: int
    max_attempts: int
    deadline: datetime  # 이 시각 이후에는 claim이 회수될 수 있음
    payload: Any = None  # enqueue 시 받은 그대로

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts
