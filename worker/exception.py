"""
Worker 관련 예외 클래스 정의
"""


class WorkerError(Exception):
    """Worker 기본 예외"""
    pass


class UnknownJobTypeError(WorkerError):
    """job_type에 등록된 핸들러가 없음 (재시도 불가)"""
    def __init__(self, job_type: str):
        self.job_type = job_type
        self.message = f"No handler registered for job type: {job_type}"
        super().__init__(self.message)


class PermanentJobError(WorkerError):
    """
    재시도해도 성공할 수 없는 실패

    핸들러가 이 예외를 던지면 남은 시도 횟수와 관계없이 FAILED로 종료됩니다.
    """
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)
