from redis import asyncio as redis
import json
from typing import Optional, List
from winery_eval.config import get_settings
from winery_eval.models.job import Job, epoch_ms
import logging

settings = get_settings()

JOB_KEY_PREFIX = "job:"


def job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


async def get_redis_client() -> redis.Redis:
    """
    Create a new Redis Client instance
    """
    return redis.from_url(
        settings.redis_url, encoding="utf-8", decode_responses=True
    )


class RedisJobStore:
    """
    Job records stored as JSON under job:{id}, expiring after the job max age
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl: Optional[int] = None):
        self._client = client
        self.ttl = ttl or settings.job_max_age

    async def client(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis_client()
        return self._client

    async def save_job(self, job: Job) -> Job:
        client = await self.client()
        if job.expires_at is None:
            job.expires_at = epoch_ms() + self.ttl * 1000
        job.touch()
        await client.setex(job_key(job.id), self.ttl, json.dumps(job.to_json()))
        logging.info(f"Saved job {job.id}: status={job.status.value}")
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        client = await self.client()
        job_data_str = await client.get(job_key(job_id))

        if not job_data_str:
            return None

        try:
            job = Job.model_validate(json.loads(job_data_str))
        except ValueError as e:
            logging.error(f"Corrupt job record {job_id}: {str(e)}")
            return None

        if job.is_expired():
            logging.info(f"Job {job_id} has expired, deleting")
            await client.delete(job_key(job_id))
            return None

        return job

    async def list_jobs(self) -> List[Job]:
        client = await self.client()
        jobs = []
        async for key in client.scan_iter(match=f"{JOB_KEY_PREFIX}*"):
            job = await self.get_job(key[len(JOB_KEY_PREFIX):])
            if job:
                jobs.append(job)
        return jobs

    async def delete_job(self, job_id: str) -> bool:
        client = await self.client()
        deleted = await client.delete(job_key(job_id))
        return bool(deleted)

    async def cleanup_expired_jobs(self) -> int:
        """Redis expires keys by TTL; this catches records whose expiresAt passed early"""
        client = await self.client()
        removed = 0
        now = epoch_ms()
        async for key in client.scan_iter(match=f"{JOB_KEY_PREFIX}*"):
            raw = await client.get(key)
            if not raw:
                continue
            try:
                expires_at = json.loads(raw).get("expiresAt")
            except ValueError:
                expires_at = 0
            if expires_at is not None and expires_at < now:
                await client.delete(key)
                removed += 1
        logging.info(f"Removed {removed} expired jobs from Redis")
        return removed
