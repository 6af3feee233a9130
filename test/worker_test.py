"""
Worker 테스트

테스트 항목:
1. HandlerRegistry / @handler 데코레이터
2. Executor 성공/실패/타임아웃/미등록 타입/영구 실패
3. 동기 함수 핸들러, pydantic 결과
4. WorkerPool 시나리오 (재시도 소진, 재시도 후 성공)
5. WorkerPool graceful shutdown
6. 핸들러 취소, 핸들러 생성 실패, DB 오류 후 회수

실행: python -m pytest test/worker_test.py -v
"""

import asyncio
import logging
import sqlite3
import sys
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from pydantic import BaseModel

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.sqlite3 import SQLiteDatabase
from dispatcher import Dispatcher, DispatcherConfig
from retry import RetryPolicy
from store import JobStatus, JobStore
from store.model.job import utc_now
from worker import (
    BaseHandler,
    Executor,
    HandlerParams,
    HandlerRegistry,
    PermanentJobError,
    UnknownJobTypeError,
    WorkerConfig,
    WorkerPool,
    handler,
    load_handlers,
)
from worker.base import get_handler, get_registered_handlers

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============================================================
# Fixtures
# ============================================================

@pytest_asyncio.fixture
async def database(tmp_path):
    """임시 파일 SQLite Database"""
    db = await SQLiteDatabase.create('test', {'path': str(tmp_path / 'taskq.db')})
    yield db
    await db.close()


@pytest.fixture
def store(database):
    """짧은 backoff 정책 (테스트 시간 단축)"""
    policy = RetryPolicy(base_delay_seconds=0.05, max_delay_seconds=0.2, jitter=0)
    return JobStore(database, retry_policy=policy)


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def executor(store, registry):
    return Executor(store, registry)


async def wait_for_status(store: JobStore, job_id: str, statuses: set[JobStatus], timeout: float = 5.0):
    """잡이 지정 상태가 될 때까지 폴링"""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        job = await store.get(job_id)
        if job.status in statuses:
            return job
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"Job {job_id} stuck in {job.status.value}")
        await asyncio.sleep(0.02)


async def run_pool(store: JobStore, registry: HandlerRegistry, pool_size: int = 2):
    """Dispatcher + WorkerPool 실행 (종료 함수 반환)"""
    dispatcher = Dispatcher(DispatcherConfig(poll_interval_seconds=0.05, visibility_timeout_seconds=5), store)
    pool = WorkerPool(
        WorkerConfig(pool_size=pool_size, shutdown_timeout_seconds=2, worker_name="test"),
        dispatcher,
        Executor(store, registry),
    )
    dispatcher_task = asyncio.create_task(dispatcher.start())
    pool_task = asyncio.create_task(pool.start())
    await asyncio.sleep(0.05)

    async def stop():
        await pool.stop()
        await pool_task
        await dispatcher.stop()
        await dispatcher_task

    return pool, stop


# ============================================================
# Handler Registry Tests
# ============================================================

class TestHandlerRegistry:
    """HandlerRegistry 및 @handler 데코레이터 테스트"""

    def test_sample_handler_registered(self):
        """worker.job 로드 시 sample 핸들러가 기본 레지스트리에 등록됨"""
        load_handlers(["worker.job"])

        assert "sample" in get_registered_handlers()
        assert type(get_handler("sample")).__name__ == "SampleHandler"

    def test_class_registration_returns_new_instance(self, registry):
        @handler("custom", registry=registry)
        class CustomHandler(BaseHandler):
            async def execute(self, params):
                return {"custom": True}

        first = registry.get("custom")
        second = registry.get("custom")
        assert isinstance(first, CustomHandler)
        assert first is not second

    def test_function_registration(self, registry):
        registry.register("double", lambda payload: payload * 2)

        assert "double" in registry
        assert len(registry) == 1
        assert registry.job_types() == ["double"]

    def test_reregister_replaces(self, registry):
        registry.register("job", lambda payload: 1)
        registry.register("job", lambda payload: 2)
        assert len(registry) == 1

    def test_unknown_job_type(self, registry):
        with pytest.raises(UnknownJobTypeError) as exc_info:
            registry.get("unknown_handler_xyz")

        assert "unknown_handler_xyz" in str(exc_info.value)

    def test_unregister(self, registry):
        registry.register("job", lambda payload: 1)
        registry.unregister("job")
        assert "job" not in registry

    def test_invalid_registration(self, registry):
        with pytest.raises(ValueError):
            registry.register("", lambda payload: 1)
        with pytest.raises(TypeError):
            registry.register("job", 42)
        with pytest.raises(TypeError):
            registry.register("job", dict)

    def test_empty_registry_is_not_replaced_by_default(self, store):
        """빈 레지스트리를 넘겨도 기본 레지스트리로 바뀌지 않음"""
        load_handlers(["worker.job"])
        empty = HandlerRegistry()
        executor = Executor(store, empty)

        with pytest.raises(UnknownJobTypeError):
            executor._registry.get("sample")


# ============================================================
# Executor Tests
# ============================================================

class TestExecutor:
    """Executor 테스트"""

    @pytest.mark.asyncio
    async def test_executor_success(self, store, registry, executor):
        async def echo(payload):
            return {"echo": payload}

        registry.register("echo", echo)
        job_id = await store.enqueue("echo", {"n": 1})
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is True

        result = await store.get(job_id)
        assert result.status == JobStatus.COMPLETED
        assert result.result == {"echo": {"n": 1}}

    @pytest.mark.asyncio
    async def test_handler_receives_params(self, store, registry, executor):
        received = []

        class Recorder(BaseHandler):
            async def execute(self, params: HandlerParams):
                received.append(params)

        registry.register("record", Recorder)
        job_id = await store.enqueue("record", {"k": "v"}, max_attempts=2)
        job = await store.claim_next("w1", 5)
        await executor.execute(job, "w1")

        params = received[0]
        assert params.job_id == job_id
        assert params.attempt == 1
        assert params.max_attempts == 2
        assert params.payload == {"k": "v"}
        assert params.deadline == job.claim_expires_at
        assert not params.is_last_attempt
        assert (await store.get(job_id)).result == {}

    @pytest.mark.asyncio
    async def test_sync_function_handler(self, store, registry, executor):
        registry.register("sync", lambda payload: {"sum": sum(payload)})
        job_id = await store.enqueue("sync", [1, 2, 3])
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is True
        assert (await store.get(job_id)).result == {"sum": 6}

    @pytest.mark.asyncio
    async def test_pydantic_result(self, store, registry, executor):
        class Report(BaseModel):
            count: int

        async def make_report(payload):
            return Report(count=3)

        registry.register("report", make_report)
        job_id = await store.enqueue("report")
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is True
        assert (await store.get(job_id)).result == {"count": 3}

    @pytest.mark.asyncio
    async def test_executor_failure_retries(self, store, registry, executor):
        """일시적 실패는 PENDING으로 되돌림"""
        async def broken(payload):
            raise RuntimeError("temporary outage")

        registry.register("broken", broken)
        job_id = await store.enqueue("broken", max_attempts=3)
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is False

        result = await store.get(job_id)
        assert result.status == JobStatus.PENDING
        assert result.attempts == 1
        assert result.error == "RuntimeError: temporary outage"

    @pytest.mark.asyncio
    async def test_executor_failure_on_last_attempt(self, store, registry, executor):
        async def broken(payload):
            raise RuntimeError("still broken")

        registry.register("broken", broken)
        job_id = await store.enqueue("broken", max_attempts=1)
        job = await store.claim_next("w1", 5)

        await executor.execute(job, "w1")
        assert (await store.get(job_id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_executor_timeout(self, store, registry, executor):
        """claim 만료 시각까지 끝나지 않으면 타임아웃 실패"""
        async def slow(payload):
            await asyncio.sleep(5)

        registry.register("slow", slow)
        job_id = await store.enqueue("slow", max_attempts=2)
        job = await store.claim_next("w1", 0.2)

        assert await executor.execute(job, "w1") is False

        result = await store.get(job_id)
        assert result.status == JobStatus.PENDING
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_unknown_job_type_fails_without_retry(self, store, executor):
        job_id = await store.enqueue("nobody_handles_this", max_attempts=3)
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is False

        result = await store.get(job_id)
        assert result.status == JobStatus.FAILED
        assert result.attempts == 1
        assert "No handler registered" in result.error

    @pytest.mark.asyncio
    async def test_permanent_error_fails_without_retry(self, store, registry, executor):
        async def reject(payload):
            raise PermanentJobError("invalid address")

        registry.register("reject", reject)
        job_id = await store.enqueue("reject", max_attempts=3)
        job = await store.claim_next("w1", 5)

        await executor.execute(job, "w1")

        result = await store.get(job_id)
        assert result.status == JobStatus.FAILED
        assert "invalid address" in result.error

    @pytest.mark.asyncio
    async def test_unserializable_result_fails(self, store, registry, executor):
        registry.register("weird", lambda payload: {"value": object()})
        job_id = await store.enqueue("weird", max_attempts=3)
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is False

        result = await store.get(job_id)
        assert result.status == JobStatus.FAILED
        assert "not JSON serializable" in result.error

    @pytest.mark.asyncio
    async def test_stale_claim_not_recorded(self, store, registry, executor):
        """회수 후 재배정된 잡은 이전 실행 결과로 덮어쓰지 않음"""
        registry.register("echo", lambda payload: {"late": True})
        job_id = await store.enqueue("echo")
        stale = await store.claim_next("w1", 5)

        await store.fail(job_id, "worker lost")
        await asyncio.sleep(0.1)
        await store.claim_next("w2", 5)

        assert await executor.execute(stale, "w1") is False

        result = await store.get(job_id)
        assert result.status == JobStatus.PROCESSING
        assert result.claimed_by == "w2"

    @pytest.mark.asyncio
    async def test_handler_construction_error_retries(self, store, registry, executor):
        """핸들러 생성자 예외는 일반 실패로 기록"""
        class Misconfigured(BaseHandler):
            def __init__(self):
                raise RuntimeError("ctor boom")

            async def execute(self, params):
                return {}

        registry.register("misconfigured", Misconfigured)
        job_id = await store.enqueue("misconfigured", max_attempts=3)
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is False

        result = await store.get(job_id)
        assert result.status == JobStatus.PENDING
        assert result.attempts == 1
        assert result.error == "RuntimeError: ctor boom"

    @pytest.mark.asyncio
    async def test_handler_cancelled_internally_is_recorded(self, store, registry, executor):
        """핸들러 내부에서 발생한 CancelledError는 실패로 기록"""
        async def cancels_inner_task(payload):
            inner = asyncio.ensure_future(asyncio.sleep(10))
            inner.cancel()
            await inner

        registry.register("cancelled", cancels_inner_task)
        job_id = await store.enqueue("cancelled", max_attempts=3)
        job = await store.claim_next("w1", 5)

        assert await executor.execute(job, "w1") is False

        result = await store.get(job_id)
        assert result.status == JobStatus.PENDING
        assert result.error.startswith("CancelledError")

    @pytest.mark.asyncio
    async def test_worker_cancellation_propagates(self, store, registry, executor):
        """실행 중인 워커가 취소되면 기록 없이 취소 전파 (claim은 PROCESSING 유지)"""
        started = asyncio.Event()

        async def slow(payload):
            started.set()
            await asyncio.sleep(10)

        registry.register("slow", slow)
        job_id = await store.enqueue("slow")
        job = await store.claim_next("w1", 5)

        task = asyncio.create_task(executor.execute(job, "w1"))
        await asyncio.wait_for(started.wait(), timeout=2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await store.get(job_id)).status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_database_error_on_complete_left_for_reclaim(self, store, registry, executor, monkeypatch):
        """완료 기록 중 DB 오류가 나면 claim을 그대로 두고 만료 후 회수"""
        async def locked_complete(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        registry.register("echo", lambda payload: payload)
        job_id = await store.enqueue("echo", {"n": 1}, max_attempts=3)
        job = await store.claim_next("w1", 5)
        monkeypatch.setattr(store, "complete", locked_complete)

        assert await executor.execute(job, "w1") is False
        assert (await store.get(job_id)).status == JobStatus.PROCESSING

        reclaimed = await store.reclaim_expired(now=utc_now() + timedelta(seconds=10))

        assert reclaimed == [job_id]
        result = await store.get(job_id)
        assert result.status == JobStatus.PENDING
        assert result.attempts == 1


# ============================================================
# WorkerPool Tests
# ============================================================

class TestWorkerPool:
    """WorkerPool 시나리오 테스트"""

    @pytest.mark.asyncio
    async def test_sample_job_completes(self, store):
        load_handlers(["worker.job"])
        from worker import default_registry

        pool, stop = await run_pool(store, default_registry)
        try:
            job_id = await store.enqueue("sample", {"message": "hi"})
            job = await wait_for_status(store, job_id, {JobStatus.COMPLETED})
            assert job.result == {"message": "hi", "attempt": 1}
        finally:
            await stop()

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_attempts(self, store, registry):
        """3번 모두 실패하면 attempts=3으로 FAILED"""
        calls = []

        async def always_fails(payload):
            calls.append(1)
            raise RuntimeError("transient")

        registry.register("flaky", always_fails)
        pool, stop = await run_pool(store, registry)
        try:
            job_id = await store.enqueue("flaky", max_attempts=3)
            job = await wait_for_status(store, job_id, {JobStatus.FAILED})
        finally:
            await stop()

        assert job.attempts == 3
        assert len(calls) == 3
        assert job.error == "RuntimeError: transient"

    @pytest.mark.asyncio
    async def test_success_after_one_failure(self, store, registry):
        """한 번 실패 후 성공하면 attempts=2로 COMPLETED"""
        calls = []

        async def fails_once(payload):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first call fails")
            return {"ok": True}

        registry.register("flaky", fails_once)
        pool, stop = await run_pool(store, registry)
        try:
            job_id = await store.enqueue("flaky", max_attempts=3)
            job = await wait_for_status(store, job_id, {JobStatus.COMPLETED})
        finally:
            await stop()

        assert job.attempts == 2
        assert job.result == {"ok": True}

    @pytest.mark.asyncio
    async def test_graceful_shutdown_waits_for_running_job(self, store, registry):
        started = asyncio.Event()

        async def slow(payload):
            started.set()
            await asyncio.sleep(0.3)
            return {"done": True}

        registry.register("slow", slow)
        pool, stop = await run_pool(store, registry, pool_size=1)
        job_id = await store.enqueue("slow")
        await asyncio.wait_for(started.wait(), timeout=2)

        assert pool.running_task_count == 1
        await stop()

        assert not pool.is_running
        assert (await store.get(job_id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_worker_ids(self, store, registry):
        pool, stop = await run_pool(store, registry, pool_size=3)
        try:
            assert pool.worker_count == 3
            assert pool.is_running
        finally:
            await stop()

    @pytest.mark.asyncio
    async def test_cancelled_handler_does_not_stop_worker(self, store, registry):
        """핸들러 내부 취소 후에도 워커는 다음 잡을 처리"""
        async def cancels_inner_task(payload):
            inner = asyncio.ensure_future(asyncio.sleep(10))
            inner.cancel()
            await inner

        registry.register("cancelled", cancels_inner_task)
        registry.register("echo", lambda payload: payload)
        pool, stop = await run_pool(store, registry, pool_size=1)
        try:
            bad_id = await store.enqueue("cancelled", max_attempts=1)
            ok_id = await store.enqueue("echo", {"ok": True})

            bad = await wait_for_status(store, bad_id, {JobStatus.FAILED})
            ok = await wait_for_status(store, ok_id, {JobStatus.COMPLETED})
            assert pool.worker_count == 1
        finally:
            await stop()

        assert bad.error.startswith("CancelledError")
        assert ok.result == {"ok": True}

    @pytest.mark.asyncio
    async def test_job_assigned_during_shutdown_is_executed(self):
        """종료 직전 배정된 잡은 워커가 깨어나기 전이라도 취소하지 않고 실행"""
        class ManualDispatcher:
            def __init__(self):
                self.requests: asyncio.Queue = asyncio.Queue()

            def submit_request(self, worker_id):
                future = asyncio.get_running_loop().create_future()
                self.requests.put_nowait(future)
                return future

        class RecordingExecutor:
            def __init__(self):
                self.executed = []

            async def execute(self, job, worker_id):
                self.executed.append(job)
                return True

        dispatcher = ManualDispatcher()
        executor = RecordingExecutor()
        pool = WorkerPool(
            WorkerConfig(pool_size=1, shutdown_timeout_seconds=2, worker_name="test"),
            dispatcher,
            executor,
        )
        pool_task = asyncio.create_task(pool.start())
        request = await asyncio.wait_for(dispatcher.requests.get(), timeout=2)

        # stop 신호가 먼저 처리되고 워커는 그 다음에 깨어남
        await pool.stop()
        request.set_result("job-1")
        await asyncio.wait_for(pool_task, timeout=2)

        assert executor.executed == ["job-1"]

    @pytest.mark.asyncio
    async def test_idle_worker_cancelled_on_shutdown(self, store, registry):
        """잡을 기다리는 워커는 shutdown_timeout을 기다리지 않고 종료"""
        pool, stop = await run_pool(store, registry, pool_size=2)
        started = asyncio.get_running_loop().time()
        await stop()

        assert asyncio.get_running_loop().time() - started < 1.0
        assert pool.running_task_count == 0

    def test_pool_size_must_be_positive(self):
        with pytest.raises(ValueError):
            WorkerConfig(pool_size=0)
