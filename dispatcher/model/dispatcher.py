"""
Dispatcher 설정 모델
"""

from pydantic import BaseModel, Field


class DispatcherConfig(BaseModel):
    """Dispatcher 설정"""
    poll_interval_seconds: float = Field(default=1.0, gt=0, le=600, description="실행 가능한 잡이 없을 때 재조회 간격")
    visibility_timeout_seconds: float = Field(default=300.0, gt=0, le=86400, description="claim 유효 시간")
