"""샘플 핸들러 - 테스트/동작 확인용"""

import asyncio
import logging

from worker.base import BaseHandler, handler
from worker.exception import PermanentJobError
from worker.model.handler import HandlerParams

logger = logging.getLogger(__name__)


@handler("sample")
class SampleHandler(BaseHandler):
    """
    payload 옵션에 따라 성공/실패/지연을 흉내내는 핸들러

    payload:
        sleep_seconds: 실행 전 대기 시간
        should_fail: True면 재시도 가능한 실패
        permanent: True면 재시도 불가 실패
        message: 결과에 그대로 담을 문자열
    """

    async def execute(self, params: HandlerParams):
        payload = params.payload or {}
        logger.info(f"SampleHandler executed: job={params.job_id}, attempt={params.attempt}")

        sleep_seconds = payload.get("sleep_seconds", 0)
        if sleep_seconds:
            await asyncio.sleep(sleep_seconds)

        if payload.get("permanent"):
            raise PermanentJobError("sample permanent failure")
        if payload.get("should_fail"):
            raise RuntimeError("sample transient failure")

        return {
            "message": payload.get("message", "Hello from SampleHandler!"),
            "attempt": params.attempt,
        }
