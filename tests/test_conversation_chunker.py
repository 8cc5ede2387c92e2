"""Tests for transcript chunking, timeouts and combining chunk evaluations."""

import asyncio

import pytest

from helpers import build_evaluation
from winery_eval.exceptions import LLMTimeoutError
from winery_eval.models.evaluation import EvaluationData
from winery_eval.services.conversation_chunker import (
    chunk_conversation,
    combine_evaluations,
    with_timeout,
)


class TestChunkConversation:
    def test_short_text_single_chunk(self):
        assert chunk_conversation("short", max_size=100, overlap=10) == ["short"]

    def test_paragraph_split_respects_max_size(self):
        paragraphs = [f"Paragraph {i} " + "x" * 80 for i in range(10)]
        text = "\n\n".join(paragraphs)
        chunks = chunk_conversation(text, max_size=300, overlap=0)
        assert len(chunks) > 1
        assert all(len(c) <= 300 for c in chunks)
        assert "".join(chunks).count("Paragraph") == 10

    def test_overlap_prefixes_following_chunks(self):
        paragraphs = [f"P{i}-" + "y" * 90 for i in range(6)]
        chunks = chunk_conversation("\n\n".join(paragraphs), max_size=250, overlap=20)
        assert len(chunks) >= 2
        first_body = chunks[0]
        assert chunks[1].startswith(first_body[-20:])

    def test_sections_kept_together(self):
        sections = [f"## Conversation {i}\n\n" + "z" * 100 + "\n\n" for i in range(4)]
        chunks = chunk_conversation("".join(sections), max_size=260, overlap=0)
        assert len(chunks) == 2
        assert chunks[0].count("## Conversation") == 2
        assert chunks[1].startswith("## Conversation 2")

    def test_oversized_section_split_on_paragraphs(self):
        big = "## Conversation 1\n\n" + "\n\n".join("w" * 90 for _ in range(5))
        small = "## Conversation 2\n\nshort"
        chunks = chunk_conversation(big + small, max_size=200, overlap=0)
        assert len(chunks) >= 3
        assert chunks[-1].endswith("short")

    def test_max_chunks_truncates(self):
        text = "\n\n".join("q" * 50 for _ in range(40))
        assert len(chunk_conversation(text, max_size=60, overlap=0, max_chunks=5)) == 5


class TestWithTimeout:
    async def test_returns_result(self):
        async def work():
            return 42

        assert await with_timeout(work, timeout=1, name="work") == 42

    async def test_retries_timeouts_then_succeeds(self):
        calls = []

        async def work():
            calls.append(1)
            if len(calls) < 3:
                await asyncio.sleep(1)
            return "done"

        result = await with_timeout(work, timeout=0.01, name="flaky", max_retries=3, retry_delay=0)
        assert result == "done"
        assert len(calls) == 3

    async def test_raises_llm_timeout_after_retries(self):
        calls = []

        async def slow():
            calls.append(1)
            await asyncio.sleep(1)

        with pytest.raises(LLMTimeoutError):
            await with_timeout(slow, timeout=0.01, name="slow", max_retries=2, retry_delay=0)
        assert len(calls) == 3

    async def test_other_errors_not_retried(self):
        calls = []

        async def broken():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await with_timeout(broken, timeout=1, name="broken", max_retries=3, retry_delay=0)
        assert len(calls) == 1


class TestCombineEvaluations:
    def test_single_returned_unchanged(self, default_rubric):
        evaluation = EvaluationData.model_validate(build_evaluation(default_rubric))
        assert combine_evaluations([evaluation]) is evaluation

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            combine_evaluations([])

    def test_averages_scores_and_joins_notes(self, default_rubric):
        first = EvaluationData.model_validate(build_evaluation(default_rubric, score=4, overallScore=80))
        second = EvaluationData.model_validate(build_evaluation(default_rubric, score=5, overallScore=91))

        combined = combine_evaluations([first, second], default_rubric)

        assert combined.overall_score == 86
        assert combined.performance_level == "Strong"
        assert combined.metadata["chunkCount"] == 2
        greeting = combined.criteria_scores[0]
        assert greeting.score == 5
        assert greeting.weighted_score == 5 * greeting.weight
        assert greeting.notes.startswith("[Part 1/2]: ")
        assert "\n[Part 2/2]: " in greeting.notes
        assert combined.strengths == first.strengths

    def test_mismatched_criterion_names_aligned_to_rubric(self, default_rubric):
        first = EvaluationData.model_validate(build_evaluation(default_rubric, score=4, overallScore=80))
        renamed = build_evaluation(default_rubric, score=2, overallScore=40)
        for item in renamed["criteriaScores"]:
            item["criterion"] = item["criterion"].split()[0]
        second = EvaluationData.model_validate(renamed)

        combined = combine_evaluations([first, second], default_rubric)

        assert len(combined.criteria_scores) == len(default_rubric.criteria)
        assert [c.criterion for c in combined.criteria_scores] == [c.name for c in default_rubric.criteria]
        assert all(c.score == 3 for c in combined.criteria_scores)
        assert all(c.notes.count("[Part") == 2 for c in combined.criteria_scores)

    def test_names_matched_case_insensitively_out_of_order(self, default_rubric):
        first = EvaluationData.model_validate(build_evaluation(default_rubric, score=4))
        shuffled = build_evaluation(default_rubric, score=4)
        shuffled["criteriaScores"] = list(reversed(shuffled["criteriaScores"]))
        shuffled["criteriaScores"][0]["criterion"] = shuffled["criteriaScores"][0]["criterion"].upper()
        shuffled["criteriaScores"][0]["score"] = 2
        second = EvaluationData.model_validate(shuffled)

        combined = combine_evaluations([first, second], default_rubric)

        last = combined.criteria_scores[-1]
        assert last.criterion == default_rubric.criteria[-1].name
        assert last.score == 3
        assert combined.criteria_scores[0].score == 4
