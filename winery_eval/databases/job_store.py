import logging
from typing import List, Optional, Protocol

from winery_eval.config import get_settings
from winery_eval.models.job import Job


class JobStore(Protocol):
    async def save_job(self, job: Job) -> Job: ...

    async def get_job(self, job_id: str) -> Optional[Job]: ...

    async def list_jobs(self) -> List[Job]: ...

    async def delete_job(self, job_id: str) -> bool: ...

    async def cleanup_expired_jobs(self) -> int: ...


def get_job_store() -> JobStore:
    """
    Job store selected by JOB_STORAGE_TYPE ("redis" or "file")
    """
    settings = get_settings()
    storage_type = settings.job_storage_type.lower()

    if storage_type == "redis":
        from winery_eval.databases.redis import RedisJobStore
        return RedisJobStore()

    if storage_type != "file":
        logging.warning(f"Unknown job storage type {storage_type}, using file storage")

    from winery_eval.databases.file_store import FileJobStore
    return FileJobStore(settings.jobs_dir)
