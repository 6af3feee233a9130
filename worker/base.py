import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable

from worker.exception import UnknownJobTypeError
from worker.model.handler import HandlerParams

__all__ = [
    'handler',
    'register',
    'get_handler',
    'get_registered_handlers',
    'default_registry',
    'BaseHandler',
    'FunctionHandler',
    'HandlerRegistry',
    'UnknownJobTypeError',
]


class BaseHandler(ABC):
    """잡 핸들러 기본 클래스"""

    @abstractmethod
    async def execute(self, params: HandlerParams) -> Any:
        """
        잡 실행 로직

        Args:
            params: 실행 컨텍스트와 payload (HandlerParams)

        Returns:
            JSON 직렬화 가능한 결과 (job_queue.result에 저장)

        Raises:
            PermanentJobError: 재시도 없이 FAILED 처리
            Exception: 그 외 예외는 재시도 정책에 따라 처리
        """
        pass


class FunctionHandler(BaseHandler):
    """payload -> result 함수를 핸들러로 감싼 것"""

    def __init__(self, func: Callable[[Any], Any]):
        self._func = func
        self._is_async = inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
            getattr(func, '__call__', None)
        )

    async def execute(self, params: HandlerParams) -> Any:
        if self._is_async:
            return await self._func(params.payload)
        # 동기 함수는 스레드에서 실행 (타임아웃 시 강제 종료되지 않음)
        return await asyncio.to_thread(self._func, params.payload)


class HandlerRegistry:
    """job_type -> 핸들러 매핑"""

    def __init__(self):
        self._handlers: dict[str, type[BaseHandler] | BaseHandler] = {}

    def register(self, job_type: str, target: type[BaseHandler] | BaseHandler | Callable[[Any], Any]) -> None:
        """
        핸들러 등록 (같은 job_type이면 덮어씀)

        Args:
            job_type: 잡 타입 문자열
            target: BaseHandler 서브클래스, BaseHandler 인스턴스, 또는 payload -> result 함수
        """
        if not job_type:
            raise ValueError("job_type cannot be empty")

        if inspect.isclass(target):
            if not issubclass(target, BaseHandler):
                raise TypeError(f"{target.__name__} must subclass BaseHandler")
            self._handlers[job_type] = target
        elif isinstance(target, BaseHandler):
            self._handlers[job_type] = target
        elif callable(target):
            self._handlers[job_type] = FunctionHandler(target)
        else:
            raise TypeError(f"Handler for '{job_type}' is not callable")

    def unregister(self, job_type: str) -> None:
        self._handlers.pop(job_type, None)

    def get(self, job_type: str) -> BaseHandler:
        """핸들러 인스턴스 반환 (클래스 등록은 호출마다 새 인스턴스)"""
        if job_type not in self._handlers:
            raise UnknownJobTypeError(job_type)
        target = self._handlers[job_type]
        return target() if inspect.isclass(target) else target

    def job_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


# 기본 레지스트리 (@handler 데코레이터 대상)
default_registry = HandlerRegistry()


def handler(name: str, registry: HandlerRegistry | None = None):
    """핸들러 클래스 등록 데코레이터"""
    def decorator(cls):
        (registry if registry is not None else default_registry).register(name, cls)
        return cls
    return decorator


def register(job_type: str, target, registry: HandlerRegistry | None = None) -> None:
    """함수/인스턴스/클래스를 기본 레지스트리에 등록"""
    (registry if registry is not None else default_registry).register(job_type, target)


def get_handler(name: str) -> BaseHandler:
    """기본 레지스트리에서 핸들러 인스턴스 반환"""
    return default_registry.get(name)


def get_registered_handlers() -> list[str]:
    """기본 레지스트리에 등록된 job_type 목록"""
    return default_registry.job_types()
