"""
재시도/백오프 정책

실패 횟수로부터 재시도 여부와 다음 실행 가능 시각을 계산합니다.
상태를 갖지 않으며 DB에 접근하지 않습니다.
"""

import random
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, model_validator

# 2^63 배 이상이면 어차피 max_delay로 잘림
_MAX_EXPONENT = 63


class RetryDecision(str, Enum):
    """실패 처리 결정"""
    RETRY = "retry"
    TERMINAL = "terminal"


class RetryPolicy(BaseModel):
    """지수 백오프 + 지터 재시도 정책"""
    model_config = ConfigDict(frozen=True)

    base_delay_seconds: float = Field(default=5.0, gt=0, description="첫 재시도 지연")
    max_delay_seconds: float = Field(default=300.0, gt=0, description="지연 상한")
    jitter: float = Field(default=0.1, ge=0, le=1, description="지연 대비 무작위 편차 비율")

    @model_validator(mode="after")
    def _check_bounds(self) -> "RetryPolicy":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self

    def decide(self, attempts: int, max_attempts: int) -> RetryDecision:
        """attempts < max_attempts 이면 RETRY, 아니면 TERMINAL"""
        return RetryDecision.RETRY if attempts < max_attempts else RetryDecision.TERMINAL

    def backoff_seconds(self, attempts: int, rng: Callable[[float, float], float] | None = None) -> float:
        """
        attempts번째 실패 후 대기 시간 (초)

        base * 2^(attempts-1) 를 max_delay로 자른 뒤 ±jitter 만큼 흔듭니다.

        Args:
            attempts: 지금까지 소비한 시도 횟수 (1 이상)
            rng: uniform(a, b) 형태의 난수 함수 (테스트 주입용)
        """
        exponent = min(max(attempts - 1, 0), _MAX_EXPONENT)
        delay = min(self.base_delay_seconds * (2 ** exponent), self.max_delay_seconds)

        if self.jitter > 0:
            uniform = rng or random.uniform
            delay += delay * uniform(-self.jitter, self.jitter)

        return min(max(delay, 0.0), self.max_delay_seconds)

    def next_eligible_at(
        self,
        attempts: int,
        now: datetime,
        rng: Callable[[float, float], float] | None = None,
    ) -> datetime:
        """다음 claim 가능 시각"""
        return now + timedelta(seconds=self.backoff_seconds(attempts, rng))
