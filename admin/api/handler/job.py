"""잡 API 비즈니스 로직 핸들러"""

import logging

from admin.api.model.job import JobResponse, JobStatsResponse, JobSubmitRequest
from store import JobStatus, JobStore

logger = logging.getLogger(__name__)


class JobHandler:
    """잡 제출/조회 핸들러"""

    def __init__(self, store: JobStore):
        self._store = store

    @property
    def store(self) -> JobStore:
        return self._store

    async def submit(self, request: JobSubmitRequest) -> JobResponse:
        """잡 제출 (PENDING 생성)"""
        job_id = await self._store.enqueue(
            request.job_type,
            request.payload,
            max_attempts=request.max_attempts,
            job_id=request.job_id,
        )
        logger.info(f"Submitted job via API: id={job_id}, type={request.job_type}")
        return await self.get_by_id(job_id)

    async def get_by_id(self, job_id: str) -> JobResponse:
        """job_id로 조회"""
        record = await self._store.get(job_id)
        return JobResponse.model_validate(record)

    async def get_list(
        self,
        page: int = 1,
        size: int = 20,
        status: JobStatus | None = None,
        job_type: str | None = None,
    ) -> tuple[list[JobResponse], int]:
        """잡 목록 조회 (최근 생성 순)"""
        offset = (page - 1) * size
        total = await self._store.count_jobs(status=status, job_type=job_type)
        records = await self._store.list_jobs(status=status, job_type=job_type, limit=size, offset=offset)
        return [JobResponse.model_validate(record) for record in records], total

    async def stats(self) -> JobStatsResponse:
        counts = await self._store.count_by_status()
        return JobStatsResponse(counts=counts, total=sum(counts.values()))
