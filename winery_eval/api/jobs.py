from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from winery_eval.databases.job_store import JobStore, get_job_store
from winery_eval.models.job import JobIdRequest, JobStatus
from winery_eval.utils.response import http_error

router = APIRouter()


@router.get("/check-job-status")
async def check_job_status(
    job_id: Optional[str] = Query(None, alias="jobId"),
    store: JobStore = Depends(get_job_store),
):
    """Get evaluation job status and result"""

    try:
        if not job_id:
            raise http_error(400, "Job ID is required")

        job = await store.get_job(job_id)
        if not job:
            raise http_error(404, "Job not found", status=JobStatus.UNKNOWN.value, jobId=job_id)

        return job.to_json()
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to get job status: {str(e)}")
        raise http_error(500, "Failed to retrieve job status", error=str(e))


@router.post("/force-complete-job")
async def force_complete_job(
    request: JobIdRequest,
    store: JobStore = Depends(get_job_store),
):
    """Mark a stuck job as completed"""

    try:
        if not request.job_id:
            raise http_error(400, "Job ID is required")

        job = await store.get_job(request.job_id)
        if not job:
            raise http_error(404, "Job not found")

        job.status = JobStatus.COMPLETED
        await store.save_job(job)

        logging.info(f"Force completed job {job.id}")
        return job.to_json()
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to force complete job: {str(e)}")
        raise http_error(500, "Internal server error", error=str(e))
