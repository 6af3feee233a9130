"""
잡 실행기 모듈

claim된 잡 하나를 실행하고 결과를 JobStore에 기록합니다.
핸들러에서 발생한 어떤 예외도 워커 루프로 전파하지 않습니다.
"""

import asyncio
import logging
import sqlite3
from typing import Any

from pydantic import BaseModel

from database import DatabaseError
from retry import RetryDecision
from store import JobRecord, JobStore, StoreError
from store.model.job import utc_now
from worker.base import HandlerRegistry, default_registry
from worker.exception import PermanentJobError, UnknownJobTypeError
from worker.model.handler import HandlerParams

logger = logging.getLogger(__name__)


class Executor:
    """잡 실행기"""

    def __init__(self, store: JobStore, registry: HandlerRegistry | None = None):
        self._store = store
        self._registry = registry if registry is not None else default_registry

    async def execute(self, job: JobRecord, worker_id: str) -> bool:
        """
        잡 실행

        Args:
            job: claim된 잡 (status=processing)
            worker_id: 실행 워커 식별자 (로그용)

        Returns:
            bool: 실행 성공 여부
        """
        logger.info(
            f"Starting job execution: id={job.job_id}, type={job.job_type}, "
            f"worker={worker_id}, attempt={job.attempts}/{job.max_attempts}"
        )

        # 1. 핸들러 조회 (미등록 타입은 재시도 없이 종료)
        try:
            handler = self._registry.get(job.job_type)
        except UnknownJobTypeError as e:
            logger.error(f"Handler not found: id={job.job_id}, type={job.job_type}")
            await self._record_failure(job, str(e), RetryDecision.TERMINAL)
            return False
        except Exception as e:
            # 핸들러 생성자 예외
            logger.error(f"Handler construction failed: id={job.job_id}, type={job.job_type}, error={e}")
            await self._record_failure(job, f"{type(e).__name__}: {e}")
            return False

        params = HandlerParams(
            job_id=job.job_id,
            job_type=job.job_type,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            deadline=job.claim_expires_at,
            payload=job.payload,
        )
        timeout = max((job.claim_expires_at - utc_now()).total_seconds(), 0.0)

        # 2. 핸들러 실행 (claim 만료 시각까지)
        try:
            result = await asyncio.wait_for(handler.execute(params), timeout=timeout)

        except asyncio.TimeoutError:
            logger.error(f"Job execution timed out: id={job.job_id}, timeout={timeout:.1f}s")
            await self._record_failure(job, f"Job execution timed out after {timeout:.1f}s")
            return False

        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                # 워커 자체가 취소되는 중 (claim은 만료 후 Reaper가 회수)
                raise
            logger.error(f"Job handler was cancelled: id={job.job_id}")
            await self._record_failure(job, "CancelledError: handler was cancelled")
            return False

        except PermanentJobError as e:
            logger.error(f"Job failed permanently: id={job.job_id}, error={e}")
            await self._record_failure(job, f"PermanentJobError: {e}", RetryDecision.TERMINAL)
            return False

        except Exception as e:
            logger.error(f"Job execution failed: id={job.job_id}, error={e}")
            await self._record_failure(job, f"{type(e).__name__}: {e}")
            return False

        # 3. 성공 기록
        try:
            await self._store.complete(job.job_id, self._to_result(result), attempt=job.attempts)
        except (TypeError, ValueError) as e:
            logger.error(f"Job result is not JSON serializable: id={job.job_id}, error={e}")
            await self._record_failure(job, f"Result is not JSON serializable: {e}", RetryDecision.TERMINAL)
            return False
        except StoreError as e:
            logger.warning(f"Could not record completion: id={job.job_id}, error={e}")
            return False
        except (DatabaseError, sqlite3.Error) as e:
            # claim이 만료되면 Reaper가 회수
            logger.error(f"Database error recording completion: id={job.job_id}, error={e}")
            return False

        logger.info(f"Job execution completed: id={job.job_id}")
        return True

    async def _record_failure(
        self,
        job: JobRecord,
        error: str,
        decision: RetryDecision | None = None,
    ) -> None:
        """실패 기록 (decision 미지정 시 재시도 정책으로 판단)"""
        if decision is None:
            decision = self._store.retry_policy.decide(job.attempts, job.max_attempts)
        try:
            await self._store.fail(job.job_id, error, decision, attempt=job.attempts)
        except StoreError as e:
            logger.warning(f"Could not record failure: id={job.job_id}, error={e}")
        except (DatabaseError, sqlite3.Error) as e:
            logger.error(f"Database error recording failure: id={job.job_id}, error={e}")

    @staticmethod
    def _to_result(result: Any) -> Any:
        if isinstance(result, BaseModel):
            return result.model_dump(mode="json")
        return result
