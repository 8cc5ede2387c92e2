"""Tests for the evaluation pipeline and keyword fallback."""

import json

import pytest

from helpers import FakeLLM, build_evaluation
from winery_eval.exceptions import (
    LLMAuthenticationError,
    LLMRateLimitError,
    RubricNotFoundError,
)
from winery_eval.services import evaluation_service
from winery_eval.services.evaluation_service import EvaluationPipeline, fallback_evaluation


class TestEvaluationPipeline:
    async def test_direct_evaluation(self, seeded_db, default_rubric, sample_conversation):
        llm = FakeLLM([json.dumps(build_evaluation(default_rubric))])
        pipeline = EvaluationPipeline(db=seeded_db, llm=llm)

        evaluation = await pipeline.evaluate(sample_conversation, staff_name="Alex", date="2024-05-01")

        assert evaluation.staff_name == "Alex"
        assert evaluation.overall_score == 80
        assert evaluation.rubric_id == default_rubric.id
        assert len(llm.prompts) == 1
        assert sample_conversation in llm.prompts[0]

    async def test_empty_conversation_rejected(self, seeded_db):
        with pytest.raises(ValueError):
            await EvaluationPipeline(db=seeded_db, llm=FakeLLM([])).evaluate("   ")

    async def test_missing_rubric_raises(self, db_session, sample_conversation):
        with pytest.raises(RubricNotFoundError):
            await EvaluationPipeline(db=db_session, llm=FakeLLM([])).evaluate(sample_conversation)

    async def test_defaults_staff_name(self, seeded_db, default_rubric, sample_conversation):
        data = build_evaluation(default_rubric)
        del data["staffName"]
        llm = FakeLLM([json.dumps(data)])

        evaluation = await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(sample_conversation)

        assert evaluation.staff_name == "Staff Member"

    async def test_staff_name_from_file_name(self, seeded_db, default_rubric, sample_conversation):
        data = build_evaluation(default_rubric)
        del data["staffName"]
        llm = FakeLLM([json.dumps(data)])

        evaluation = await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(
            sample_conversation, file_name="conversation-with-Riley.md"
        )

        assert evaluation.staff_name == "Riley"

    async def test_explicit_staff_name_beats_file_name(self, seeded_db, default_rubric, sample_conversation):
        data = build_evaluation(default_rubric)
        del data["staffName"]
        llm = FakeLLM([json.dumps(data)])

        evaluation = await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(
            sample_conversation, staff_name="Sam", file_name="conversation-with-Riley.md"
        )

        assert evaluation.staff_name == "Sam"

    async def test_unparseable_direct_response_falls_back_to_chunking(
        self, seeded_db, default_rubric, sample_conversation
    ):
        llm = FakeLLM(["not json at all", json.dumps(build_evaluation(default_rubric, score=3))])

        evaluation = await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(sample_conversation)

        assert evaluation.overall_score == 60
        assert len(llm.prompts) == 2

    async def test_rate_limit_is_not_retried_by_chunking(self, seeded_db, sample_conversation):
        llm = FakeLLM([LLMRateLimitError("slow down", provider="fake")])

        with pytest.raises(LLMRateLimitError):
            await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(sample_conversation)
        assert len(llm.prompts) == 1

    async def test_auth_error_propagates(self, seeded_db, sample_conversation):
        llm = FakeLLM([LLMAuthenticationError("bad key", provider="fake")])

        with pytest.raises(LLMAuthenticationError):
            await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(sample_conversation)

    async def test_long_conversation_is_chunked(self, seeded_db, default_rubric, monkeypatch):
        monkeypatch.setattr(evaluation_service.settings, "direct_evaluation_max_chars", 10)
        conversation = "".join(f"## Conversation {i}\n\nStaff: hello\n\n" + "a" * 150 + "\n\n" for i in range(2))
        monkeypatch.setattr(
            "winery_eval.services.evaluation_service.chunk_conversation",
            lambda text: [text[:len(text) // 2], text[len(text) // 2:]],
        )
        llm = FakeLLM([
            json.dumps(build_evaluation(default_rubric, score=4, overallScore=80)),
            json.dumps(build_evaluation(default_rubric, score=5, overallScore=100)),
        ])

        evaluation = await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(conversation)

        assert evaluation.overall_score == 90
        assert evaluation.metadata["chunkCount"] == 2
        assert "part 1 of 2" in llm.prompts[0].lower()

    async def test_requested_rubric_used(self, seeded_db, default_rubric, sample_conversation):
        from winery_eval.repository import rubric_repository

        other = default_rubric.model_copy(deep=True, update={"id": "other-rubric", "is_default": False})
        rubric_repository.save(seeded_db, other)
        llm = FakeLLM([json.dumps(build_evaluation(other))])

        evaluation = await EvaluationPipeline(db=seeded_db, llm=llm).evaluate(
            sample_conversation, rubric_id="other-rubric"
        )

        assert evaluation.rubric_id == "other-rubric"


class TestFallbackEvaluation:
    def test_scores_from_keywords(self, default_rubric, sample_conversation):
        evaluation = fallback_evaluation(sample_conversation, default_rubric)

        assert evaluation.metadata == {"isFallback": True}
        assert evaluation.staff_name == "Alex"
        assert evaluation.date == "2024-05-01"
        assert len(evaluation.criteria_scores) == 10
        assert all(2 <= c.score <= 5 for c in evaluation.criteria_scores)
        club = next(c for c in evaluation.criteria_scores if c.criterion == "Wine Club Presentation")
        assert club.score > 2
        assert 0 <= evaluation.overall_score <= 100
        assert len(evaluation.strengths) == 3

    def test_empty_transcript_scores_minimum(self, default_rubric):
        evaluation = fallback_evaluation("", default_rubric, staff_name="Sam", date="2024-01-01")
        assert all(c.score == 2 for c in evaluation.criteria_scores)
        assert evaluation.overall_score == 40
        assert evaluation.performance_level == "Needs Improvement"

    def test_custom_criteria_use_name_words(self, default_rubric):
        rubric = default_rubric.model_copy(deep=True)
        rubric.criteria[0].name = "Decanting Technique"
        rubric.criteria[0].description = "Pours and aerates properly"
        evaluation = fallback_evaluation("We talked about decanting at length", rubric, "Sam", "2024-01-01")
        assert evaluation.criteria_scores[0].score == 3

    def test_staff_name_from_file_name(self, default_rubric):
        evaluation = fallback_evaluation(
            "Guest: hello", default_rubric, date="2024-01-01", file_name="conversation-with-Riley.md"
        )
        assert evaluation.staff_name == "Riley"
