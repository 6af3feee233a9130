"""
WorkerPool: 잡 실행 워커풀 모듈

pool_size개의 워커 코루틴이 각각 Dispatcher에 잡을 요청하고,
받은 잡을 Executor로 실행합니다.

실행 방법:
    python main.py worker
"""

import asyncio
import logging
import os
import socket
from dataclasses import dataclass

from dispatcher import Dispatcher
from worker.executor import Executor

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """워커풀 설정"""
    pool_size: int = 5
    shutdown_timeout_seconds: int = 30
    worker_name: str | None = None  # claimed_by 접두사 (기본: hostname:pid)

    def __post_init__(self):
        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")


class WorkerPool:
    """
    잡 실행 워커풀

    각 워커는 한 번에 잡 하나만 실행하므로 동시에 실행되는 잡 수는
    pool_size를 넘지 않습니다.
    """

    def __init__(self, config: WorkerConfig, dispatcher: Dispatcher, executor: Executor):
        self._config = config
        self._dispatcher = dispatcher
        self._executor = executor
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._worker_tasks: dict[str, asyncio.Task] = {}
        self._busy_workers: set[str] = set()
        self._pending_requests: dict[str, asyncio.Future] = {}
        self._worker_name = config.worker_name or f"{socket.gethostname()}:{os.getpid()}"

    async def start(self) -> None:
        """워커 생성 후 stop()까지 대기"""
        if self._running:
            logger.warning("WorkerPool is already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()

        for index in range(self._config.pool_size):
            worker_id = f"{self._worker_name}-{index}"
            self._worker_tasks[worker_id] = asyncio.create_task(self._worker_loop(worker_id))

        logger.info(f"WorkerPool started (pool_size={self._config.pool_size}, name={self._worker_name})")

        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            logger.info("WorkerPool cancelled")
        finally:
            self._running = False
            await self._wait_running_tasks()
            self._worker_tasks.clear()
            logger.info("WorkerPool stopped")

    async def stop(self) -> None:
        """WorkerPool graceful shutdown"""
        if not self._running:
            return

        logger.info("Stopping WorkerPool...")
        self._running = False
        if self._stop_event:
            self._stop_event.set()

    async def _worker_loop(self, worker_id: str) -> None:
        """워커: 잡 요청 -> 실행 반복"""
        logger.debug(f"Worker started: {worker_id}")
        while self._running:
            request = self._dispatcher.submit_request(worker_id)
            self._pending_requests[worker_id] = request
            try:
                job = await request
            finally:
                self._pending_requests.pop(worker_id, None)
            if job is None:
                break

            self._busy_workers.add(worker_id)
            try:
                await self._executor.execute(job, worker_id)
            except Exception as e:
                logger.error(f"Unexpected error executing job {job.job_id}: {e}", exc_info=True)
            finally:
                self._busy_workers.discard(worker_id)
        logger.debug(f"Worker exited: {worker_id}")

    async def _wait_running_tasks(self) -> None:
        """실행 중인 잡 완료 대기 (graceful shutdown)"""
        tasks = [task for task in self._worker_tasks.values() if not task.done()]
        if not tasks:
            return

        # 잡을 기다리기만 하는 워커는 바로 종료
        # 요청이 이미 잡으로 완료된 워커는 아직 깨어나지 않았어도 실행 중으로 취급
        for worker_id, task in self._worker_tasks.items():
            if worker_id in self._busy_workers or self._has_assigned_job(worker_id):
                continue
            task.cancel()

        logger.info(f"Waiting for {len(tasks)} workers to finish...")
        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True),
                timeout=self._config.shutdown_timeout_seconds
            )
            logger.info("All jobs completed")
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown timeout ({self._config.shutdown_timeout_seconds}s), "
                f"{len(self._busy_workers)} jobs still running"
            )
            # 강제 취소 (claim은 만료 후 Reaper가 회수)
            for task in tasks:
                task.cancel()

    def _has_assigned_job(self, worker_id: str) -> bool:
        request = self._pending_requests.get(worker_id)
        return (
            request is not None
            and request.done()
            and not request.cancelled()
            and request.result() is not None
        )

    @property
    def is_running(self) -> bool:
        """실행 중 여부"""
        return self._running

    @property
    def worker_count(self) -> int:
        return len(self._worker_tasks)

    @property
    def running_task_count(self) -> int:
        """잡을 실행 중인 워커 수"""
        return len(self._busy_workers)


def load_handlers(packages: list[str]) -> None:
    """핸들러 모듈 로드 (@handler 데코레이터 등록을 위해, 하위 패키지 재귀 탐색)"""
    import importlib
    import pkgutil

    def load_recursive(package, prefix: str):
        for _, module_name, is_pkg in pkgutil.iter_modules(package.__path__):
            full_name = f"{prefix}.{module_name}"
            module = importlib.import_module(full_name)
            logger.debug(f"Loaded handler module: {full_name}")
            if is_pkg:
                load_recursive(module, full_name)

    for package_name in packages:
        package = importlib.import_module(package_name)
        if hasattr(package, "__path__"):
            load_recursive(package, package_name)
