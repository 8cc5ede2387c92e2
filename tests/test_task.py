"""Tests for background job processing."""

import json

import pytest

from helpers import FakeLLM, build_evaluation
from winery_eval import task
from winery_eval.databases.file_store import FileJobStore
from winery_eval.exceptions import (
    JobNotFoundError,
    LLMConfigurationError,
    LLMRateLimitError,
    LLMResponseError,
)
from winery_eval.models.job import JobStatus, create_job
from winery_eval.services.evaluation_service import EvaluationPipeline


@pytest.fixture
def store(tmp_path):
    return FileJobStore(tmp_path / "jobs")


@pytest.fixture
async def pending_job(store, sample_conversation):
    job = create_job(markdown=sample_conversation, staff_name="Alex", date="2024-05-01")
    await store.save_job(job)
    return job


def _pipeline(db, responses):
    return EvaluationPipeline(db=db, llm=FakeLLM(responses))


class TestProcessJob:
    async def test_completes_job(self, store, pending_job, seeded_db, default_rubric):
        pipeline = _pipeline(seeded_db, [json.dumps(build_evaluation(default_rubric))])

        job = await task.process_job(pending_job.id, store=store, pipeline=pipeline)

        assert job.status == JobStatus.COMPLETED
        assert job.result.evaluation.overall_score == 80
        assert job.result.metadata.model_version == "fake-model-1"
        assert job.result.metadata.is_fallback is False

        stored = await store.get_job(pending_job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.last_processed_at is not None

    async def test_unknown_job(self, store, seeded_db):
        with pytest.raises(JobNotFoundError):
            await task.process_job("missing", store=store, pipeline=_pipeline(seeded_db, []))

    async def test_completed_job_skipped(self, store, pending_job, seeded_db):
        pending_job.status = JobStatus.COMPLETED
        await store.save_job(pending_job)
        llm = FakeLLM([])

        job = await task.process_job(pending_job.id, store=store, pipeline=EvaluationPipeline(db=seeded_db, llm=llm))

        assert job.status == JobStatus.COMPLETED
        assert llm.prompts == []

    async def test_retryable_error_reraised_while_retries_remain(self, store, pending_job, seeded_db):
        pipeline = _pipeline(seeded_db, [LLMRateLimitError("slow down")])

        with pytest.raises(LLMRateLimitError):
            await task.process_job(pending_job.id, retries=0, max_retries=3, store=store, pipeline=pipeline)

        stored = await store.get_job(pending_job.id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.error.startswith("Retry 1:")

    async def test_fallback_after_last_retry(self, store, pending_job, seeded_db, monkeypatch):
        monkeypatch.setattr(task.settings, "enable_fallback_evaluation", True)
        pipeline = _pipeline(seeded_db, [LLMRateLimitError("slow down")])

        job = await task.process_job(pending_job.id, retries=3, max_retries=3, store=store, pipeline=pipeline)

        assert job.status == JobStatus.COMPLETED
        assert job.result.metadata.is_fallback is True
        assert job.result.metadata.model_version == "keyword-fallback"
        assert job.result.summary == task.FALLBACK_SUMMARY
        assert job.result.evaluation.metadata == {"isFallback": True}
        assert job.error_details.type == "LLMRateLimitError"

    async def test_unusable_responses_use_fallback(self, store, pending_job, seeded_db, monkeypatch):
        monkeypatch.setattr(task.settings, "enable_fallback_evaluation", True)
        pipeline = _pipeline(seeded_db, ["garbage", LLMResponseError("empty")])

        job = await task.process_job(pending_job.id, store=store, pipeline=pipeline)

        assert job.status == JobStatus.COMPLETED
        assert job.result.metadata.is_fallback is True

    async def test_configuration_error_without_fallback_is_api_error(
        self, store, pending_job, seeded_db, monkeypatch
    ):
        monkeypatch.setattr(task.settings, "enable_fallback_evaluation", False)
        pipeline = _pipeline(seeded_db, [LLMConfigurationError("CLAUDE_API_KEY environment variable is not set")])

        job = await task.process_job(pending_job.id, store=store, pipeline=pipeline)

        assert job.status == JobStatus.API_ERROR
        assert "CLAUDE_API_KEY" in job.error
        stored = await store.get_job(pending_job.id)
        assert stored.error_details.type == "LLMConfigurationError"

    async def test_failure_without_fallback(self, store, pending_job, seeded_db, monkeypatch):
        monkeypatch.setattr(task.settings, "enable_fallback_evaluation", False)
        pipeline = _pipeline(seeded_db, ["garbage", LLMResponseError("empty")])

        job = await task.process_job(pending_job.id, store=store, pipeline=pipeline)

        assert job.status == JobStatus.FAILED
        assert job.result is None

    async def test_unexpected_error_marks_failed_and_reraises(self, store, pending_job, seeded_db):
        pipeline = _pipeline(seeded_db, [RuntimeError("boom")])

        with pytest.raises(RuntimeError):
            await task.process_job(pending_job.id, store=store, pipeline=pipeline)

        stored = await store.get_job(pending_job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "boom"
        assert "RuntimeError" in stored.error_details.stack_trace

    async def test_staff_name_taken_from_file_name(self, store, seeded_db, default_rubric, sample_conversation):
        job = create_job(markdown=sample_conversation, file_name="conversation-with-Riley.md")
        await store.save_job(job)
        data = build_evaluation(default_rubric)
        del data["staffName"]

        done = await task.process_job(job.id, store=store, pipeline=_pipeline(seeded_db, [json.dumps(data)]))

        assert done.result.evaluation.staff_name == "Riley"


def test_task_registered_under_module_name():
    assert task.run_evaluation_job.name == "winery_eval.task.run_evaluation_job"
    assert task.run_evaluation_job.max_retries == 3
