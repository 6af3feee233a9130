"""Admin API 라우터 (모든 API 통합)"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from admin.api.handler.job import JobHandler
from admin.api.model.job import (
    JobSubmitRequest,
    JobResponse,
    JobListResponse,
    JobStatsResponse,
)
from store import (
    DuplicateJobIdError,
    InvalidJobError,
    JobNotFoundError,
    JobStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_job_handler(request: Request) -> JobHandler:
    """앱 상태에 등록된 JobHandler (lifespan 또는 create_app에서 설정)"""
    job_handler = getattr(request.app.state, "job_handler", None)
    if job_handler is None:
        raise HTTPException(status_code=503, detail="Job store is not initialized")
    return job_handler


# ============================================
# JOB API
# ============================================

@router.post("/api/jobs", response_model=JobResponse, status_code=201, tags=["Job"])
async def submit_job(request: JobSubmitRequest, job_handler: JobHandler = Depends(get_job_handler)):
    """잡 제출"""
    try:
        return await job_handler.submit(request)
    except InvalidJobError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateJobIdError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/api/jobs", response_model=JobListResponse, tags=["Job"])
async def get_jobs(
    page: int = Query(default=1, ge=1, description="페이지 번호"),
    size: int = Query(default=20, ge=1, le=100, description="페이지 크기"),
    status: JobStatus | None = Query(default=None, description="상태 필터"),
    job_type: str | None = Query(default=None, description="잡 타입 필터"),
    job_handler: JobHandler = Depends(get_job_handler),
):
    """잡 목록 조회"""
    items, total = await job_handler.get_list(page=page, size=size, status=status, job_type=job_type)
    pages = (total + size - 1) // size if size > 0 else 0
    return JobListResponse(
        items=items,
        total=total,
        page=page,
        size=size,
        pages=pages,
    )


# /api/jobs/{job_id}보다 먼저 등록
@router.get("/api/jobs/stats", response_model=JobStatsResponse, tags=["Job"])
async def get_job_stats(job_handler: JobHandler = Depends(get_job_handler)):
    """상태별 잡 수"""
    return await job_handler.stats()


@router.get("/api/jobs/{job_id}", response_model=JobResponse, tags=["Job"])
async def get_job(job_id: str, job_handler: JobHandler = Depends(get_job_handler)):
    """잡 상세 조회"""
    try:
        return await job_handler.get_by_id(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================
# Health Check
# ============================================

@router.get("/health", tags=["Health"])
async def health_check(request: Request):
    """서버 상태 확인 (liveness)"""
    from taskq import __version__

    store = getattr(request.app.state, "store", None)
    if store is None:
        db_status = "disconnected"
    else:
        db_status = "connected" if store.database.pool.available > 0 else "busy"

    return {
        "status": "healthy",
        "database": db_status,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready", tags=["Health"])
async def ready_check(request: Request):
    """DB 연결 상태 확인 (readiness)"""
    store = getattr(request.app.state, "store", None)
    if store is None:
        return JSONResponse(status_code=503, content={"status": "not ready", "error": "Job store is not initialized"})

    try:
        async with store.database.transaction(readonly=True) as ctx:
            await ctx.fetch_val("SELECT 1")
        return {"status": "ready", "database": "ok"}
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "error": str(e)}
        )
