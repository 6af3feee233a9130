"""
JobStore: 잡 레코드 영속화 및 상태 전이 모듈

job_queue 테이블이 잡 상태의 유일한 출처입니다. 모든 쓰기 연산은
BEGIN IMMEDIATE 트랜잭션 안에서 (status, attempts) CAS로 수행되므로
여러 워커/프로세스가 동시에 호출해도 한 잡을 두 워커가 claim하지 않습니다.

상태 전이:
    pending -> processing          (claim)
    processing -> completed        (complete)
    processing -> pending          (fail + RETRY, 만료된 claim 회수)
    processing -> failed           (fail + TERMINAL, 시도 소진)
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import aiosql

from database.sqlite3 import SQLiteDatabase
from retry import RetryDecision, RetryPolicy
from store.exception import (
    DuplicateJobIdError,
    InvalidJobError,
    InvalidTransitionError,
    JobNotFoundError,
)
from store.model.job import JobRecord, JobStatus, to_db_time, utc_now

logger = logging.getLogger(__name__)

SQL_PATH = Path(__file__).parent / "sql" / "job_queue.sql"

MAX_ERROR_LENGTH = 2000


class JobStore:
    """
    잡 저장소

    프로세스당 한 번 생성하여 Dispatcher, WorkerPool, Reaper, Admin API에
    주입합니다.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        retry_policy: RetryPolicy | None = None,
        default_max_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            db: job_queue 테이블이 있는 데이터베이스
            retry_policy: fail/reclaim 시 재시도 판단 및 백오프 계산
            default_max_attempts: enqueue에서 max_attempts 미지정 시 사용
            clock: 현재 시각 (테스트 주입용)
        """
        if default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        self._db = db
        self._policy = retry_policy or RetryPolicy()
        self._default_max_attempts = default_max_attempts
        self._clock = clock
        self._queries = aiosql.from_path(str(SQL_PATH), "aiosqlite")
        self._enqueue_listeners: list[Callable[[str], None]] = []

    @classmethod
    def from_config(cls, db: SQLiteDatabase, config: dict) -> "JobStore":
        """병합된 설정의 `retry`, `worker.default_max_attempts`로 생성"""
        return cls(
            db,
            retry_policy=RetryPolicy(**config.get('retry', {})),
            default_max_attempts=config.get('worker', {}).get('default_max_attempts', 3),
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    @property
    def database(self) -> SQLiteDatabase:
        return self._db

    def add_enqueue_listener(self, listener: Callable[[str], None]) -> None:
        """enqueue 커밋 직후 호출될 콜백 등록 (Dispatcher wake 신호)"""
        self._enqueue_listeners.append(listener)

    def remove_enqueue_listener(self, listener: Callable[[str], None]) -> None:
        if listener in self._enqueue_listeners:
            self._enqueue_listeners.remove(listener)

    # ------------------------------------------------------------
    # 제출 / 조회
    # ------------------------------------------------------------

    async def enqueue(
        self,
        job_type: str,
        payload: Any = None,
        max_attempts: int | None = None,
        job_id: str | None = None,
    ) -> str:
        """
        PENDING 잡 생성

        Returns:
            생성된 job_id

        Raises:
            DuplicateJobIdError: 이미 존재하는 job_id
            InvalidJobError: job_type/job_id가 비었거나 max_attempts < 1
        """
        if not job_type or not job_type.strip():
            raise InvalidJobError("job_type cannot be empty")
        if job_id is not None and not job_id.strip():
            raise InvalidJobError("job_id cannot be empty")
        max_attempts = self._default_max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise InvalidJobError(f"max_attempts must be >= 1, got {max_attempts}")

        job_id = job_id or uuid.uuid4().hex
        try:
            payload_json = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise InvalidJobError(f"payload is not JSON serializable: {e}")

        try:
            async with self._db.transaction() as ctx:
                await self._queries.insert_job(
                    ctx.connection,
                    job_id=job_id,
                    job_type=job_type,
                    payload=payload_json,
                    max_attempts=max_attempts,
                    now=to_db_time(self._clock()),
                )
        except sqlite3.IntegrityError:
            raise DuplicateJobIdError(job_id)

        logger.info(f"Enqueued job: id={job_id}, type={job_type}, max_attempts={max_attempts}")
        self._notify_enqueued(job_id)
        return job_id

    async def get(self, job_id: str) -> JobRecord:
        """job_id로 잡 조회 (없으면 JobNotFoundError)"""
        async with self._db.transaction(readonly=True) as ctx:
            row = await self._queries.get_job(ctx.connection, job_id=job_id)
        if row is None:
            raise JobNotFoundError(job_id)
        return JobRecord.from_row(row)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[JobRecord]:
        """최근 생성 순 잡 목록"""
        async with self._db.transaction(readonly=True) as ctx:
            rows = await self._queries.list_jobs(
                ctx.connection,
                status=status.value if status else None,
                job_type=job_type,
                limit=limit,
                offset=offset,
            )
        return [JobRecord.from_row(row) for row in rows]

    async def count_jobs(self, status: JobStatus | None = None, job_type: str | None = None) -> int:
        async with self._db.transaction(readonly=True) as ctx:
            total = await self._queries.count_jobs(
                ctx.connection,
                status=status.value if status else None,
                job_type=job_type,
            )
        return total or 0

    async def count_by_status(self) -> dict[str, int]:
        """상태별 잡 수 (없는 상태는 0)"""
        async with self._db.transaction(readonly=True) as ctx:
            rows = await self._queries.count_by_status(ctx.connection)
        counts = {status.value: 0 for status in JobStatus}
        for row in rows:
            counts[row["status"]] = row["cnt"]
        return counts

    # ------------------------------------------------------------
    # claim
    # ------------------------------------------------------------

    async def claim_next(
        self,
        worker_id: str,
        visibility_timeout: float,
        now: datetime | None = None,
    ) -> JobRecord | None:
        """
        실행 가능한 가장 오래된 PENDING 잡을 PROCESSING으로 전이

        Args:
            worker_id: claim 주체 (claimed_by에 기록)
            visibility_timeout: claim 유효 시간 (초)
            now: 기준 시각 (미지정 시 clock)

        Returns:
            claim한 잡, 실행 가능한 잡이 없으면 None
        """
        now = now or self._clock()
        async with self._db.transaction() as ctx:
            candidate = await self._queries.get_next_eligible(ctx.connection, now=to_db_time(now))
            if candidate is None:
                return None
            return await self._claim_row(ctx, candidate["job_id"], worker_id, visibility_timeout, now)

    async def claim(
        self,
        job_id: str,
        worker_id: str,
        visibility_timeout: float,
        now: datetime | None = None,
    ) -> JobRecord:
        """
        특정 잡 claim (backoff 대기 중이어도 즉시)

        Raises:
            JobNotFoundError: 잡 없음
            InvalidTransitionError: PENDING이 아님 (완료/실패 잡 재claim 포함)
        """
        now = now or self._clock()
        async with self._db.transaction() as ctx:
            record = await self._claim_row(ctx, job_id, worker_id, visibility_timeout, now)
            if record is None:
                current = await self._get_in_tx(ctx, job_id)
                raise InvalidTransitionError(job_id, current.status.value, JobStatus.PROCESSING.value)
            return record

    async def _claim_row(
        self,
        ctx,
        job_id: str,
        worker_id: str,
        visibility_timeout: float,
        now: datetime,
    ) -> JobRecord | None:
        current = await self._get_in_tx(ctx, job_id)
        if current.status != JobStatus.PENDING or current.attempts >= current.max_attempts:
            return None

        affected = await self._queries.claim_job(
            ctx.connection,
            job_id=job_id,
            worker_id=worker_id,
            attempts=current.attempts,
            claim_expires_at=to_db_time(now + timedelta(seconds=visibility_timeout)),
            now=to_db_time(now),
        )
        if affected != 1:
            return None

        record = await self._get_in_tx(ctx, job_id)
        logger.info(
            f"Claimed job: id={job_id}, worker={worker_id}, "
            f"attempt={record.attempts}/{record.max_attempts}"
        )
        return record

    # ------------------------------------------------------------
    # 결과 기록
    # ------------------------------------------------------------

    async def complete(self, job_id: str, result: Any, attempt: int | None = None) -> JobRecord:
        """
        PROCESSING -> COMPLETED

        Args:
            job_id: 대상 잡
            result: 핸들러 결과 (None이면 빈 dict로 저장)
            attempt: claim 당시 attempts 값. 지정 시 현재 claim과 다르면 거부

        Raises:
            JobNotFoundError, InvalidTransitionError
        """
        result_json = json.dumps(result if result is not None else {})
        now = self._clock()
        async with self._db.transaction() as ctx:
            current = self._check_processing(
                await self._get_in_tx(ctx, job_id), JobStatus.COMPLETED, attempt
            )
            await self._queries.complete_job(
                ctx.connection,
                job_id=job_id,
                result=result_json,
                attempts=current.attempts,
                now=to_db_time(now),
            )
            record = await self._get_in_tx(ctx, job_id)

        logger.info(f"Job completed: id={job_id}, attempts={record.attempts}")
        return record

    async def fail(
        self,
        job_id: str,
        error: str,
        decision: RetryDecision | None = None,
        attempt: int | None = None,
    ) -> JobRecord:
        """
        실패 기록

        RETRY면 PENDING으로 되돌리고 backoff만큼 available_at을 미룹니다.
        TERMINAL이거나 시도를 모두 소진했으면 FAILED로 종료합니다.

        Args:
            job_id: 대상 잡
            error: 실패 메시지
            decision: None이면 retry_policy로 판단
            attempt: claim 당시 attempts 값 (complete와 동일)

        Raises:
            JobNotFoundError, InvalidTransitionError
        """
        error = (error or "")[:MAX_ERROR_LENGTH]
        now = self._clock()
        async with self._db.transaction() as ctx:
            current = await self._get_in_tx(ctx, job_id)
            policy_decision = self._policy.decide(current.attempts, current.max_attempts)
            if decision is None or policy_decision == RetryDecision.TERMINAL:
                decision = policy_decision
            target = JobStatus.PENDING if decision == RetryDecision.RETRY else JobStatus.FAILED
            self._check_processing(current, target, attempt)

            await self._record_failure(ctx, current, error, decision, now)
            record = await self._get_in_tx(ctx, job_id)

        if record.status == JobStatus.PENDING:
            logger.info(
                f"Scheduling retry: id={job_id}, attempt={record.attempts}/{record.max_attempts}, "
                f"available_at={record.available_at.isoformat()}"
            )
        else:
            logger.warning(
                f"Job failed permanently: id={job_id}, attempts={record.attempts}, error={error}"
            )
        return record

    async def reclaim_expired(self, now: datetime | None = None) -> list[str]:
        """
        claim_expires_at이 지난 PROCESSING 잡 회수

        만료된 claim은 이미 attempts 하나를 소비했으므로 fail과 같은 재시도
        판단을 거쳐 PENDING(backoff) 또는 FAILED로 전이합니다.

        Returns:
            회수한 job_id 목록
        """
        now = now or self._clock()
        reclaimed: list[str] = []
        async with self._db.transaction() as ctx:
            rows = await self._queries.get_expired_claims(ctx.connection, now=to_db_time(now))
            for row in rows:
                current = await self._get_in_tx(ctx, row["job_id"])
                decision = self._policy.decide(current.attempts, current.max_attempts)
                error = (
                    f"Claim expired: worker={current.claimed_by}, "
                    f"expired_at={current.claim_expires_at.isoformat()}"
                )
                affected = await self._record_failure(ctx, current, error, decision, now)
                if affected == 1:
                    reclaimed.append(current.job_id)
                    logger.warning(
                        f"Reclaimed expired job: id={current.job_id}, worker={current.claimed_by}, "
                        f"attempt={current.attempts}/{current.max_attempts}, decision={decision.value}"
                    )
        return reclaimed

    async def _record_failure(
        self,
        ctx,
        current: JobRecord,
        error: str,
        decision: RetryDecision,
        now: datetime,
    ) -> int:
        if decision == RetryDecision.RETRY:
            available_at = self._policy.next_eligible_at(current.attempts, now)
            return await self._queries.retry_job(
                ctx.connection,
                job_id=current.job_id,
                error=error,
                available_at=to_db_time(available_at),
                attempts=current.attempts,
                now=to_db_time(now),
            )
        return await self._queries.fail_job(
            ctx.connection,
            job_id=current.job_id,
            error=error,
            attempts=current.attempts,
            now=to_db_time(now),
        )

    # ------------------------------------------------------------
    # 내부 헬퍼
    # ------------------------------------------------------------

    async def _get_in_tx(self, ctx, job_id: str) -> JobRecord:
        row = await self._queries.get_job(ctx.connection, job_id=job_id)
        if row is None:
            raise JobNotFoundError(job_id)
        return JobRecord.from_row(row)

    @staticmethod
    def _check_processing(current: JobRecord, target: JobStatus, attempt: int | None) -> JobRecord:
        if current.status != JobStatus.PROCESSING:
            raise InvalidTransitionError(current.job_id, current.status.value, target.value)
        if attempt is not None and attempt != current.attempts:
            raise InvalidTransitionError(
                current.job_id,
                current.status.value,
                target.value,
                reason=f"claim for attempt {attempt} was superseded by attempt {current.attempts}",
            )
        return current

    def _notify_enqueued(self, job_id: str) -> None:
        for listener in list(self._enqueue_listeners):
            try:
                listener(job_id)
            except Exception as e:
                logger.error(f"Enqueue listener failed: {e}", exc_info=True)
