"""Job Store 모델"""

from store.model.job import JobRecord, JobStatus, utc_now, to_db_time

__all__ = ["JobRecord", "JobStatus", "utc_now", "to_db_time"]
