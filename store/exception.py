"""
Job Store 관련 예외 클래스 정의
"""


class StoreError(Exception):
    """Job Store 기본 예외"""
    pass


class DuplicateJobIdError(StoreError):
    """이미 존재하는 job_id로 enqueue"""
    def __init__(self, job_id: str):
        self.job_id = job_id
        self.message = f"Job with id '{job_id}' already exists"
        super().__init__(self.message)


class JobNotFoundError(StoreError):
    """잡을 찾을 수 없음"""
    def __init__(self, job_id: str):
        self.job_id = job_id
        self.message = f"Job with id '{job_id}' not found"
        super().__init__(self.message)


class InvalidTransitionError(StoreError):
    """허용되지 않는 상태 전이"""
    def __init__(self, job_id: str, current_status: str, target_status: str, reason: str | None = None):
        self.job_id = job_id
        self.current_status = current_status
        self.target_status = target_status
        self.message = (
            f"Cannot move job '{job_id}' from '{current_status}' to '{target_status}'"
            + (f": {reason}" if reason else "")
        )
        super().__init__(self.message)


class InvalidJobError(StoreError):
    """enqueue 입력값 오류"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)
