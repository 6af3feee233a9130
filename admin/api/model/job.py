"""잡 관련 API 모델 정의"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from store import JobStatus


class JobSubmitRequest(BaseModel):
    """잡 제출 요청 (값 검증은 JobStore.enqueue에서 수행)"""
    job_type: str = Field(..., max_length=100)
    payload: Any = None
    max_attempts: int | None = None
    job_id: str | None = Field(default=None, max_length=100)


class JobResponse(BaseModel):
    """잡 응답 모델"""
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    job_type: str
    status: JobStatus
    payload: Any = None
    result: Any = None
    error: str | None = None
    attempts: int
    max_attempts: int
    available_at: datetime
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    claimed_by: str | None = None
    claim_expires_at: datetime | None = None


class JobListResponse(BaseModel):
    """잡 목록 응답"""
    items: list[JobResponse]
    total: int
    page: int
    size: int
    pages: int


class JobStatsResponse(BaseModel):
    """상태별 잡 수"""
    counts: dict[str, int]
    total: int
