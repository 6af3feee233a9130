"""
잡 레코드 모델 정의

job_queue 테이블 한 행을 표현합니다. payload/result는 JSON으로 저장되며
엔진은 그 내용을 해석하지 않습니다.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator

# 고정 폭 포맷이라 문자열 비교 == 시간 비교
DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """datetime -> DB 저장용 UTC 문자열"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(DB_TIME_FORMAT)


class JobStatus(str, Enum):
    """잡 상태"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobRecord(BaseModel):
    """잡 레코드"""
    job_id: str
    job_type: str
    status: JobStatus
    payload: Any = None
    result: Any = None
    error: str | None = None
    attempts: int = 0
    max_attempts: int
    available_at: datetime
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    claimed_by: str | None = None
    claim_expires_at: datetime | None = None

    @field_validator(
        "available_at", "created_at", "updated_at", "completed_at", "claim_expires_at",
        mode="after",
    )
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_row(cls, row) -> "JobRecord":
        """DB row를 JobRecord로 변환"""
        # aiosqlite.Row는 .get()이 없으므로 dict 변환
        data = dict(row)
        data.pop("id", None)
        for column in ("payload", "result"):
            raw = data.get(column)
            data[column] = json.loads(raw) if raw is not None else None
        return cls(**data)
