"""
Reaper 설정 모델
"""

from pydantic import BaseModel, Field


class ReaperConfig(BaseModel):
    """Reaper 설정"""
    interval_seconds: float = Field(default=30.0, gt=0, le=3600, description="만료 claim 회수 주기")
