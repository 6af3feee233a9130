"""Worker 모듈 - 핸들러 레지스트리, 실행기, 워커풀"""

from worker.base import (
    BaseHandler,
    HandlerRegistry,
    default_registry,
    handler,
    register,
)
from worker.exception import WorkerError, UnknownJobTypeError, PermanentJobError
from worker.executor import Executor
from worker.main import WorkerPool, WorkerConfig, load_handlers
from worker.model.handler import HandlerParams

__all__ = [
    "BaseHandler",
    "HandlerRegistry",
    "default_registry",
    "handler",
    "register",
    "WorkerError",
    "UnknownJobTypeError",
    "PermanentJobError",
    "Executor",
    "WorkerPool",
    "WorkerConfig",
    "load_handlers",
    "HandlerParams",
]
