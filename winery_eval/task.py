import asyncio
import logging
import time
import traceback
from typing import Optional

from celery import Celery, Task
from celery.exceptions import SoftTimeLimitExceeded

from winery_eval.config import get_settings
from winery_eval.custom_logging import LOG_FORMAT_DEBUG, LOG_FORMAT_DEFAULT
from winery_eval.databases.job_store import JobStore, get_job_store
from winery_eval.exceptions import (
    EvaluatorError,
    JobNotFoundError,
    LLMAuthenticationError,
    LLMConfigurationError,
    LLMServiceError,
    LLMTimeoutError,
)
from winery_eval.models.common import utc_now_iso
from winery_eval.models.job import Job, JobErrorDetails, JobResult, JobResultMetadata, JobStatus
from winery_eval.repository import rubric_repository
from winery_eval.services.evaluation_service import EvaluationPipeline, fallback_evaluation

settings = get_settings()

celery_app  = Celery(
    'tasks',
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend
)

celery_app.conf.update(
    task_serializer = 'json',
    accept_content = ['json'],
    result_serializer = 'json',
    timezone = 'UTC',
    enable_utc = True,
    task_time_limit = settings.celery_task_time_limit,
    task_soft_time_limit = settings.celery_task_soft_time_limit,
    task_acks_late = True,
    worker_prefetch_multiplier = 1,
    task_track_started=True,
    worker_log_format=LOG_FORMAT_DEBUG if settings.debug else LOG_FORMAT_DEFAULT,
    worker_task_log_format=LOG_FORMAT_DEBUG if settings.debug else LOG_FORMAT_DEFAULT
)

FALLBACK_SUMMARY = "Evaluation performed using fallback system"


def _error_details(error: Exception) -> JobErrorDetails:
    return JobErrorDetails(
        type=type(error).__name__,
        message=str(error),
        is_timeout=isinstance(error, (LLMTimeoutError, SoftTimeLimitExceeded)),
        stack_trace="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        original_error=repr(error.__cause__) if error.__cause__ else None,
    )


async def mark_job_failed(
    store: JobStore,
    job: Job,
    error: Exception,
    status: JobStatus = JobStatus.FAILED,
) -> Job:
    job.status = status
    job.error = str(error)
    job.error_details = _error_details(error)
    await store.save_job(job)
    logging.error(f"[Job {job.id}] Marked {status.value}: {str(error)}")
    return job


async def _complete_with_fallback(
    store: JobStore,
    pipeline: EvaluationPipeline,
    job: Job,
    error: Exception,
    started: float,
) -> Job:
    if not settings.enable_fallback_evaluation:
        status = JobStatus.API_ERROR if isinstance(error, (LLMConfigurationError, LLMAuthenticationError)) else JobStatus.FAILED
        return await mark_job_failed(store, job, error, status)

    logging.warning(f"[Job {job.id}] LLM evaluation failed, using fallback evaluation: {str(error)}")
    try:
        rubric = rubric_repository.resolve(pipeline.db, job.rubric_id)
        evaluation = fallback_evaluation(job.markdown, rubric, job.staff_name, job.date, job.file_name)
    except EvaluatorError as fallback_error:
        logging.error(f"[Job {job.id}] Fallback evaluation failed: {str(fallback_error)}")
        return await mark_job_failed(store, job, error)

    job.result = JobResult(
        evaluation=evaluation,
        summary=FALLBACK_SUMMARY,
        metadata=JobResultMetadata(
            processing_time=round(time.monotonic() - started, 3),
            model_version="keyword-fallback",
            is_fallback=True,
        ),
    )
    job.status = JobStatus.COMPLETED
    job.error = str(error)
    job.error_details = _error_details(error)
    await store.save_job(job)
    return job


async def process_job(
    job_id: str,
    retries: int = 0,
    max_retries: int = 3,
    store: Optional[JobStore] = None,
    pipeline: Optional[EvaluationPipeline] = None,
) -> Job:
    """
    Evaluate the transcript stored on a job and record the outcome.

    Retryable LLM errors are re-raised while retries remain so the Celery task
    can schedule another attempt.
    """
    store = store or get_job_store()
    job = await store.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    if job.status == JobStatus.COMPLETED:
        logging.info(f"[Job {job_id}] Already completed, skipping")
        return job

    logging.info(f"[Job {job_id}] Starting evaluation (attempt {retries + 1})")
    job.status = JobStatus.PROCESSING
    job.retry_count = retries
    job.last_processed_at = utc_now_iso()
    await store.save_job(job)

    started = time.monotonic()
    pipeline = pipeline or EvaluationPipeline()
    try:
        evaluation = await pipeline.evaluate(
            conversation=job.markdown,
            staff_name=job.staff_name,
            date=job.date,
            rubric_id=job.rubric_id,
            model=job.model,
            file_name=job.file_name,
        )

        job.result = JobResult(
            evaluation=evaluation,
            metadata=JobResultMetadata(
                processing_time=round(time.monotonic() - started, 3),
                model_version=pipeline.llm_for(job.model).model_name,
            ),
        )
        job.status = JobStatus.COMPLETED
        job.error = None
        job.error_details = None
        await store.save_job(job)

        logging.info(f"[Job {job_id}] Evaluation completed successfully")
        return job

    except LLMServiceError as e:
        if e.retryable and retries < max_retries:
            job.error = f"Retry {retries + 1}: {str(e)}"
            await store.save_job(job)
            raise
        return await _complete_with_fallback(store, pipeline, job, e, started)

    except EvaluatorError as e:
        logging.error(f"[Job {job_id}] Evaluation failed: {str(e)}")
        return await _complete_with_fallback(store, pipeline, job, e, started)

    except Exception as e:
        logging.error(f"[Job {job_id}] Task failed: {str(e)}", exc_info=True)
        await mark_job_failed(store, job, e)
        raise

    finally:
        pipeline.close()


async def _mark_timed_out(job_id: str, error: Exception) -> None:
    store = get_job_store()
    job = await store.get_job(job_id)
    if job:
        await mark_job_failed(store, job, error)


@celery_app.task(bind=True, max_retries=3, name='winery_eval.task.run_evaluation_job')
def run_evaluation_job(self: Task, job_id: str):
    try:
        job = asyncio.run(process_job(job_id, self.request.retries, self.max_retries))
        return {"jobId": job.id, "status": job.status.value}

    except SoftTimeLimitExceeded as e:
        logging.error(f"[Job {job_id}] Task exceeded time limit")
        asyncio.run(_mark_timed_out(job_id, e))
        raise

    except LLMServiceError as e:
        if e.retryable and self.request.retries < self.max_retries:
            retry_delay = 2 ** self.request.retries
            logging.info(
                f"[Job {job_id}] Retrying in {retry_delay} seconds "
                f"(attempt {self.request.retries + 1}/{self.max_retries})"
            )
            raise self.retry(exc=e, countdown=retry_delay)
        raise
