"""Admin API 모델 패키지"""

from admin.api.model.common import ErrorResponse, ErrorDetail
from admin.api.model.job import (
    JobSubmitRequest,
    JobResponse,
    JobListResponse,
    JobStatsResponse,
)

__all__ = [
    'ErrorResponse',
    'ErrorDetail',
    'JobSubmitRequest',
    'JobResponse',
    'JobListResponse',
    'JobStatsResponse',
]
