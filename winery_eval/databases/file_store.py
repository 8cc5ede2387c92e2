import json
import logging
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception
)

from winery_eval.config import get_settings
from winery_eval.models.job import Job, epoch_ms, is_valid_job_id

settings = get_settings()

io_retry = retry(
    stop=stop_after_attempt(settings.job_io_retry_attempts),
    wait=wait_exponential(multiplier=settings.job_io_retry_delay, max=10),
    retry=retry_if_exception(lambda e: isinstance(e, OSError) and not isinstance(e, FileNotFoundError)),
    reraise=True
)


class FileJobStore:
    """
    One {id}.json file per job under jobs_dir
    """

    def __init__(self, jobs_dir: Optional[Path] = None, max_age: Optional[int] = None):
        self.jobs_dir = Path(jobs_dir or settings.jobs_dir)
        self.max_age = max_age or settings.job_max_age
        self.jobs_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: str) -> Path:
        if not is_valid_job_id(job_id):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return self.jobs_dir / f"{job_id}.json"

    @io_retry
    async def _write(self, path: Path, payload: str) -> None:
        tmp_path = path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(payload)
        await aiofiles.os.replace(tmp_path, path)

    @io_retry
    async def _read(self, path: Path) -> str:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()

    async def save_job(self, job: Job) -> Job:
        if job.expires_at is None:
            job.expires_at = epoch_ms() + self.max_age * 1000
        job.touch()
        await self._write(self._path(job.id), json.dumps(job.to_json(), indent=2))
        logging.info(f"Saved job {job.id}: status={job.status.value}")
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        if not is_valid_job_id(job_id):
            logging.warning(f"Rejected invalid job id {job_id!r}")
            return None

        path = self._path(job_id)
        if not path.exists():
            return None

        try:
            raw = await self._read(path)
        except FileNotFoundError:
            return None

        if not raw.strip():
            logging.warning(f"Job file for {job_id} is empty")
            return None

        try:
            job = Job.model_validate(json.loads(raw))
        except ValueError as e:
            logging.error(f"Corrupt job file for {job_id}: {str(e)}")
            return None

        if job.is_expired():
            logging.info(f"Job {job_id} has expired, deleting")
            await self.delete_job(job_id)
            return None

        return job

    async def list_jobs(self) -> List[Job]:
        jobs = []
        for name in sorted(await aiofiles.os.listdir(self.jobs_dir)):
            job_id = name[:-len(".json")]
            if not name.endswith(".json") or not is_valid_job_id(job_id):
                continue
            job = await self.get_job(job_id)
            if job:
                jobs.append(job)
        return jobs

    async def delete_job(self, job_id: str) -> bool:
        if not is_valid_job_id(job_id):
            return False
        return await self._remove(self._path(job_id))

    async def _remove(self, path: Path) -> bool:
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return False

    async def cleanup_expired_jobs(self) -> int:
        removed = 0
        now = epoch_ms()
        for name in await aiofiles.os.listdir(self.jobs_dir):
            if not name.endswith(".json"):
                continue
            path = self.jobs_dir / name
            try:
                data = json.loads(await self._read(path) or "{}")
            except (ValueError, FileNotFoundError):
                data = {}
            expires_at = data.get("expiresAt")
            if expires_at is None and data:
                continue
            if expires_at is None or expires_at < now:
                if await self._remove(path):
                    removed += 1
        logging.info(f"Removed {removed} expired job files")
        return removed
