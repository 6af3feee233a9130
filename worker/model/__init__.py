"""Worker 모델"""

from worker.model.handler import HandlerParams

__all__ = ["HandlerParams"]
