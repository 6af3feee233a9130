"""재시도/백오프 정책 모듈"""

from retry.policy import RetryDecision, RetryPolicy

__all__ = ["RetryDecision", "RetryPolicy"]
