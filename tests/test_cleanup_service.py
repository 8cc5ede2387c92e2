"""Tests for transcript cleanup and PDF rendering."""

import base64

import pytest

from helpers import FakeLLM, build_evaluation
from winery_eval.exceptions import ContentLossError, LLMResponseError
from winery_eval.models.evaluation import EvaluationData
from winery_eval.services.cleanup_service import cleanup_conversation, length_change_percent
from winery_eval.services.pdf_service import (
    export_filename,
    render_conversation_pdf,
    render_evaluation_pdf,
    render_rubric_pdf,
)


class TestCleanupConversation:
    async def test_returns_cleaned_markdown_and_pdf(self, sample_conversation):
        cleaned = sample_conversation.replace("Cabernet", "Cabernet Sauvignon")
        llm = FakeLLM([cleaned])

        response = await cleanup_conversation(sample_conversation, llm=llm)

        assert response.cleaned_markdown == cleaned
        assert base64.b64decode(response.pdf_buffer).startswith(b"%PDF")
        assert sample_conversation in llm.prompts[0]

    async def test_content_loss_rejected(self, sample_conversation):
        llm = FakeLLM([sample_conversation[: len(sample_conversation) // 2]])

        with pytest.raises(ContentLossError) as excinfo:
            await cleanup_conversation(sample_conversation, llm=llm)

        details = excinfo.value.details
        assert details["originalLength"] == len(sample_conversation)
        assert details["percentLost"].endswith("%")

    async def test_empty_model_output(self, sample_conversation):
        with pytest.raises(LLMResponseError):
            await cleanup_conversation(sample_conversation, llm=FakeLLM(["   "]))

    async def test_missing_markdown(self):
        with pytest.raises(ValueError):
            await cleanup_conversation("", llm=FakeLLM([]))


def test_length_change_percent():
    assert length_change_percent("abcd", "ab") == 50
    assert length_change_percent("", "anything") == 0


class TestPdfExport:
    def test_export_filename(self):
        assert export_filename("rubric", "Wine Sales Evaluation") == "rubric-wine-sales-evaluation.pdf"
        assert export_filename("evaluation", "José & Co", "json") == "evaluation-jos-co.json"
        assert export_filename("rubric", "") == "rubric-export.pdf"

    def test_render_evaluation(self, default_rubric):
        evaluation = EvaluationData.model_validate(build_evaluation(default_rubric))
        assert render_evaluation_pdf(evaluation).startswith(b"%PDF")

    def test_render_rubric(self, default_rubric):
        assert render_rubric_pdf(default_rubric).startswith(b"%PDF")

    def test_render_conversation_with_markup(self):
        pdf = render_conversation_pdf("# Title\n\n**Staff:** <hello> & *welcome*\n\n- bullet")
        assert pdf.startswith(b"%PDF")
