"""Admin API 서버 진입점"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from admin.api.handler.job import JobHandler
from admin.api.model.common import ErrorDetail, ErrorResponse
from admin.api.router.api import router
from admin.model.admin import AdminConfig
from common.config import load_config
from database import get_db
from database.registry import DatabaseRegistry
from store import JobStore

logger = logging.getLogger(__name__)


def _set_store(app: FastAPI, store: JobStore) -> None:
    app.state.store = store
    app.state.job_handler = JobHandler(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """앱 생명주기 관리 (외부에서 store를 주입한 경우 DB를 직접 열지 않음)"""
    owns_database = app.state.store is None
    if owns_database:
        config = app.state.config
        admin_config = AdminConfig(**config.get('admin', {}))
        await DatabaseRegistry.init_from_config(config, [admin_config.database])
        _set_store(app, JobStore.from_config(get_db(admin_config.database), config))
        logger.info("Database initialized")

    yield

    if owns_database:
        await DatabaseRegistry.close_all()
        app.state.store = None
        app.state.job_handler = None
        logger.info("Database closed")


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """요청 검증 실패 -> 400"""
    detail = ErrorResponse(error=ErrorDetail(code="invalid_request", message=str(exc.errors())))
    return JSONResponse(status_code=400, content=detail.model_dump())


def create_app(config: dict | None = None, store: JobStore | None = None) -> FastAPI:
    """
    FastAPI 앱 생성

    Args:
        config: 병합된 설정 (None이면 config/ 디렉토리에서 로드)
        store: 이미 생성된 JobStore (주입 시 lifespan에서 DB 초기화 생략)
    """
    config = config if config is not None else load_config()
    admin_config = AdminConfig(**config.get('admin', {}))

    from taskq import __version__

    app = FastAPI(
        title="taskq Admin API",
        description="잡 큐 제출/조회 Admin API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = None
    app.state.job_handler = None
    if store is not None:
        _set_store(app, store)

    # CORS 설정
    cors = admin_config.cors
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.include_router(router)

    return app


if __name__ == "__main__":
    import uvicorn

    from common.logging import setup_logging

    config = load_config()
    setup_logging(**config.get('logging', {}))
    admin_config = AdminConfig(**config.get('admin', {}))

    uvicorn.run(
        create_app(config),
        host=admin_config.host,
        port=admin_config.port,
    )
