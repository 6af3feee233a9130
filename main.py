"""
taskq 통합 진입점

Worker(Dispatcher + WorkerPool), Reaper, Admin API를 한 번에 실행합니다.

사용법:
    python main.py                 # 전체 실행
    python main.py worker          # Dispatcher + WorkerPool만
    python main.py reaper          # Reaper만
    python main.py admin           # Admin API만
    python main.py worker reaper   # 복수 선택
"""

import sys
import os

# Windows 인코딩 설정 (cp949 -> UTF-8)
if sys.platform == "win32":
    os.environ["PYTHONUTF8"] = "1"

import asyncio
import signal
import logging

from common.config import load_config
from common.logging import setup_logging
from database import get_db
from database.registry import DatabaseRegistry
from store import JobStore

logger = logging.getLogger(__name__)

VALID_MODULES = ("worker", "reaper", "admin")


async def run_worker(config: dict, store: JobStore, stop_event: asyncio.Event):
    """Dispatcher + WorkerPool 실행"""
    from dispatcher import Dispatcher, DispatcherConfig
    from worker import Executor, WorkerConfig, WorkerPool, load_handlers

    worker_settings = dict(config.get("worker", {}))
    load_handlers(worker_settings.get("handler_packages", ["worker.job"]))

    dispatcher = Dispatcher(DispatcherConfig(**config.get("dispatcher", {})), store)
    worker_config = WorkerConfig(
        pool_size=worker_settings.get("pool_size", 5),
        shutdown_timeout_seconds=worker_settings.get("shutdown_timeout_seconds", 30),
        worker_name=worker_settings.get("worker_name"),
    )
    worker_pool = WorkerPool(worker_config, dispatcher, Executor(store))

    async def wait_stop():
        await stop_event.wait()
        # 워커가 실행 중인 잡을 마칠 때까지 기다린 뒤 Dispatcher 종료
        await worker_pool.stop()
        await pool_task
        await dispatcher.stop()

    dispatcher_task = asyncio.create_task(dispatcher.start())
    pool_task = asyncio.create_task(worker_pool.start())
    stopper = asyncio.create_task(wait_stop())
    await asyncio.gather(dispatcher_task, pool_task)
    stopper.cancel()


async def run_reaper(config: dict, store: JobStore, stop_event: asyncio.Event):
    """Reaper 실행"""
    from reaper import Reaper, ReaperConfig

    reaper = Reaper(ReaperConfig(**config.get("reaper", {})), store)

    async def wait_stop():
        await stop_event.wait()
        await reaper.stop()

    stopper = asyncio.create_task(wait_stop())
    await reaper.start()
    stopper.cancel()


async def run_admin(config: dict, store: JobStore, stop_event: asyncio.Event):
    """Admin API 실행"""
    import uvicorn
    from admin.main import create_app
    from admin.model.admin import AdminConfig

    admin_config = AdminConfig(**config.get("admin", {}))
    uv_config = uvicorn.Config(
        create_app(config, store),
        host=admin_config.host,
        port=admin_config.port,
        log_config=None,
    )
    server = uvicorn.Server(uv_config)

    async def wait_stop():
        await stop_event.wait()
        server.should_exit = True

    stopper = asyncio.create_task(wait_stop())
    await server.serve()
    stopper.cancel()


async def main(modules: list[str]):
    """메인 함수"""
    config = load_config()
    setup_logging(**config.get("logging", {}))

    # 모든 모듈이 같은 job_queue DB를 공유
    db_name = config.get("worker", {}).get("database", "default")
    await DatabaseRegistry.init_from_config(config, [db_name])
    store = JobStore.from_config(get_db(db_name), config)

    # 종료 이벤트
    stop_event = asyncio.Event()

    # 시그널 핸들러
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    # Windows는 add_signal_handler를 지원하지 않음
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    runners = {"worker": run_worker, "reaper": run_reaper, "admin": run_admin}
    tasks = []
    for module in modules:
        tasks.append(asyncio.create_task(runners[module](config, store, stop_event)))
        logger.info(f"Module started: {module}")

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Tasks cancelled")
    finally:
        await DatabaseRegistry.close_all()
        logger.info("All modules stopped")


if __name__ == "__main__":
    # 인자 파싱
    args = sys.argv[1:]

    if args:
        modules = [m for m in args if m in VALID_MODULES]
        if not modules:
            print(f"Usage: python main.py [{'] ['.join(VALID_MODULES)}]")
            sys.exit(1)
    else:
        modules = list(VALID_MODULES)

    print(f"Starting taskq: {', '.join(modules)}")
    try:
        asyncio.run(main(modules))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
