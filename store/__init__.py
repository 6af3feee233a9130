"""Job Store 모듈 - 잡 레코드 영속화 및 상태 전이"""

from store.main import JobStore
from store.model.job import JobRecord, JobStatus
from store.exception import (
    StoreError,
    DuplicateJobIdError,
    JobNotFoundError,
    InvalidTransitionError,
    InvalidJobError,
)

__all__ = [
    "JobStore",
    "JobRecord",
    "JobStatus",
    "StoreError",
    "DuplicateJobIdError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "InvalidJobError",
]
