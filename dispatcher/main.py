"""
Dispatcher: 유휴 워커에 잡을 배정하는 모듈

유휴 워커가 request_job()으로 잡을 요청하면, 단일 루프가 요청을 하나씩 꺼내
JobStore.claim_next()로 잡을 claim하여 전달합니다.

- 잡을 기다리는 워커가 있을 때만 claim하므로 실행 중인 잡 수는 워커 수를
  넘지 않습니다. 메모리에 잡을 쌓아두는 큐는 없습니다.
- 실행 가능한 잡이 없으면 enqueue wake 신호 또는 poll_interval까지 대기합니다.

실행 방법:
    python main.py worker
"""

import asyncio
import logging
import sqlite3

from database import DatabaseError
from dispatcher.model.dispatcher import DispatcherConfig
from store import JobRecord, JobStore

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    잡 Dispatcher

    여러 프로세스의 Dispatcher가 같은 DB를 공유해도 claim 원자성은
    JobStore가 보장합니다.
    """

    def __init__(self, config: DispatcherConfig, store: JobStore):
        """
        Args:
            config: Dispatcher 설정
            store: 잡 저장소
        """
        self._config = config
        self._store = store
        self._running = False
        self._closed = False
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        # (worker_id, future) 요청 대기열, 워커당 최대 1개
        self._requests: asyncio.Queue = asyncio.Queue()
        self._claimed_count = 0

    async def start(self) -> None:
        """Dispatcher 메인 루프 시작"""
        if self._running:
            logger.warning("Dispatcher is already running")
            return

        self._running = True
        self._closed = False
        self._stop_event.clear()
        self._store.add_enqueue_listener(self.wake)

        logger.info(
            f"Dispatcher started (poll_interval={self._config.poll_interval_seconds}s, "
            f"visibility_timeout={self._config.visibility_timeout_seconds}s)"
        )

        try:
            await self._main_loop()
        except asyncio.CancelledError:
            logger.info("Dispatcher cancelled")
        except Exception as e:
            logger.error(f"Dispatcher error: {e}", exc_info=True)
            raise
        finally:
            self._store.remove_enqueue_listener(self.wake)
            self._running = False
            self._closed = True
            self._release_waiting_workers()
            logger.info("Dispatcher stopped")

    async def stop(self) -> None:
        """Dispatcher graceful shutdown"""
        if not self._running:
            return

        logger.info("Stopping dispatcher...")
        self._running = False
        self._stop_event.set()
        # 요청 대기 중인 루프를 깨우는 sentinel
        self._requests.put_nowait(None)

    def wake(self, job_id: str | None = None) -> None:
        """새 잡이 들어왔음을 알림 (poll_interval 대기 중단)"""
        self._wake_event.set()

    async def request_job(self, worker_id: str) -> JobRecord | None:
        """
        유휴 워커의 잡 요청

        Returns:
            claim된 잡, Dispatcher가 중지되면 None
        """
        return await self.submit_request(worker_id)

    def submit_request(self, worker_id: str) -> asyncio.Future:
        """
        잡 요청 등록

        반환된 future는 claim된 잡 또는 None으로 완료됩니다.
        완료 전에 취소하면 Dispatcher는 그 요청을 건너뜁니다.
        """
        future = asyncio.get_running_loop().create_future()
        if self._closed:
            future.set_result(None)
            return future
        self._requests.put_nowait((worker_id, future))
        return future

    async def _main_loop(self) -> None:
        """메인 루프: 요청 하나당 잡 하나 claim"""
        # 요청한 워커가 먼저 떠난 경우 다음 워커에게 넘길 잡
        carried: JobRecord | None = None

        while self._running:
            request = await self._requests.get()
            if request is None:
                break

            worker_id, future = request
            if future.done():
                continue

            job = carried or await self._claim_for(worker_id)
            carried = None
            if job is None:
                if not future.done():
                    future.set_result(None)
                break

            if future.done():
                carried = job
                continue

            future.set_result(job)
            self._claimed_count += 1

        if carried is not None:
            logger.warning(
                f"Dispatcher stopped holding claimed job: id={carried.job_id}. "
                f"It will be reclaimed after its visibility timeout"
            )

    async def _claim_for(self, worker_id: str) -> JobRecord | None:
        """잡을 claim할 때까지 대기 (중지 시 None)"""
        while self._running:
            self._wake_event.clear()
            try:
                job = await self._store.claim_next(worker_id, self._config.visibility_timeout_seconds)
                if job is not None:
                    return job
                logger.debug("No eligible jobs found")

            except (DatabaseError, sqlite3.Error) as e:
                logger.error(f"Database error while claiming: {e}. Retrying...")

            except Exception as e:
                logger.error(f"Unexpected error while claiming: {e}", exc_info=True)

            await self._wait_for_work()
        return None

    async def _wait_for_work(self) -> None:
        """wake 신호, stop 신호, poll_interval 중 먼저 오는 것까지 대기"""
        waiters = {
            asyncio.ensure_future(self._wake_event.wait()),
            asyncio.ensure_future(self._stop_event.wait()),
        }
        try:
            await asyncio.wait(
                waiters,
                timeout=self._config.poll_interval_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                waiter.cancel()

    def _release_waiting_workers(self) -> None:
        """대기 중인 모든 요청에 None 응답"""
        while not self._requests.empty():
            request = self._requests.get_nowait()
            if request is None:
                continue
            _, future = request
            if not future.done():
                future.set_result(None)

    @property
    def is_running(self) -> bool:
        """실행 중 여부"""
        return self._running

    @property
    def waiting_worker_count(self) -> int:
        """잡을 기다리는 워커 요청 수"""
        return self._requests.qsize()

    @property
    def claimed_count(self) -> int:
        """지금까지 워커에 전달한 잡 수"""
        return self._claimed_count
