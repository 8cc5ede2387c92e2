import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from winery_eval.config import get_settings
from winery_eval.exceptions import EvaluatorError
from winery_eval.models.evaluation import EvaluationData
from winery_eval.models.job import JobStatus

TERMINAL_FAILURES = {JobStatus.FAILED.value, JobStatus.API_ERROR.value}


class JobFailedError(EvaluatorError):
    def __init__(self, job_id: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.job_id = job_id
        self.details = details or {}
        super().__init__(f"Job {job_id} failed: {message}")


class EvaluationClient:
    """
    Submits conversations to the evaluation API and polls background jobs.

    When a job does not finish within the polling budget the client falls back
    to a synchronous analyze call.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self.max_polls = max_polls or settings.poll_max_attempts
        self.timeout = timeout or settings.poll_timeout_seconds
        self.http = http_client or httpx.Client(base_url=self.base_url, timeout=60.0)
        self._sleep = sleep

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _payload(self, markdown: str, **options) -> Dict[str, Any]:
        payload = {"markdown": markdown}
        payload.update({k: v for k, v in options.items() if v is not None})
        return payload

    def submit(self, markdown: str, **options) -> str:
        response = self.http.post(
            "/api/analyze-conversation", json=self._payload(markdown, background=True, **options)
        )
        response.raise_for_status()
        job_id = response.json()["jobId"]
        logging.info(f"Submitted evaluation job {job_id}")
        return job_id

    def get_status(self, job_id: str) -> Dict[str, Any]:
        response = self.http.get("/api/check-job-status", params={"jobId": job_id})
        response.raise_for_status()
        return response.json()

    def analyze_sync(self, markdown: str, **options) -> EvaluationData:
        response = self.http.post(
            "/api/analyze-conversation", json=self._payload(markdown, background=False, **options)
        )
        response.raise_for_status()
        return EvaluationData.model_validate(response.json())

    def wait_for_job(self, job_id: str) -> Optional[EvaluationData]:
        """Poll until the job completes; None when the polling budget runs out"""
        started = time.monotonic()
        for attempt in range(1, self.max_polls + 1):
            if time.monotonic() - started > self.timeout:
                break

            job = self.get_status(job_id)
            status = job.get("status")
            logging.info(f"Job {job_id} status: {status} (poll {attempt}/{self.max_polls})")

            if status == JobStatus.COMPLETED.value:
                result = job.get("result") or {}
                if result.get("evaluation"):
                    return EvaluationData.model_validate(result["evaluation"])
                raise JobFailedError(job_id, "Job completed without a result")

            if status in TERMINAL_FAILURES:
                raise JobFailedError(job_id, job.get("error") or "Unknown error", job.get("errorDetails"))

            self._sleep(self.poll_interval)

        logging.warning(f"Job {job_id} did not finish after {self.max_polls} polls or {self.timeout}s")
        return None

    def evaluate(self, markdown: str, **options) -> EvaluationData:
        """
        Evaluate a conversation through a background job, falling back to
        direct evaluation on timeout
        """
        job_id = self.submit(markdown, **options)
        evaluation = self.wait_for_job(job_id)
        if evaluation is not None:
            return evaluation

        logging.info("Falling back to synchronous evaluation")
        return self.analyze_sync(markdown, **options)
