"""
Reaper: 만료된 claim 회수 모듈

claim_expires_at이 지난 PROCESSING 잡을 주기적으로 찾아 재시도 정책에 따라
PENDING(backoff) 또는 FAILED로 되돌립니다. 워커 프로세스가 잡 실행 도중
죽어도 잡이 영구히 PROCESSING에 남지 않습니다.

실행 방법:
    python main.py reaper
"""

import asyncio
import logging
import sqlite3
from datetime import datetime

from database import DatabaseError
from reaper.model.reaper import ReaperConfig
from store import JobStore

logger = logging.getLogger(__name__)


class Reaper:
    """만료 claim 회수기 (Dispatcher와 독립된 주기로 동작)"""

    def __init__(self, config: ReaperConfig, store: JobStore):
        self._config = config
        self._store = store
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._reclaimed_total = 0

    async def start(self) -> None:
        """Reaper 메인 루프 시작"""
        if self._running:
            logger.warning("Reaper is already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        logger.info(f"Reaper started (interval={self._config.interval_seconds}s)")

        try:
            while self._running:
                try:
                    await self.sweep()
                except (DatabaseError, sqlite3.Error) as e:
                    logger.error(f"Database error during sweep: {e}. Continuing...")
                except Exception as e:
                    logger.error(f"Unexpected error during sweep: {e}", exc_info=True)

                await self._sleep(self._config.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Reaper cancelled")
        finally:
            self._running = False
            logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Reaper graceful shutdown"""
        if not self._running:
            return

        logger.info("Stopping reaper...")
        self._running = False
        if self._stop_event:
            self._stop_event.set()

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """
        1회 회수

        Returns:
            회수한 job_id 목록
        """
        reclaimed = await self._store.reclaim_expired(now)
        if reclaimed:
            self._reclaimed_total += len(reclaimed)
            logger.info(f"Reclaimed {len(reclaimed)} expired jobs: {', '.join(reclaimed)}")
        else:
            logger.debug("No expired claims")
        return reclaimed

    async def _sleep(self, seconds: float) -> None:
        """인터럽트 가능한 sleep"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    @property
    def is_running(self) -> bool:
        """실행 중 여부"""
        return self._running

    @property
    def reclaimed_total(self) -> int:
        """누적 회수 건수"""
        return self._reclaimed_total
