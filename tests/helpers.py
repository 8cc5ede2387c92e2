"""Shared test doubles and sample data."""

from winery_eval.models.rubric import Rubric
from winery_eval.services.llm_service import LLMService


class FakeLLM(LLMService):
    """Returns canned responses in order; exceptions in the list are raised"""

    provider = "fake"
    model_name = "fake-model-1"

    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts = []

    async def generate(self, prompt, system=None, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeLLM ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def build_evaluation(rubric: Rubric, score: int = 4, **overrides) -> dict:
    """A complete camelCase evaluation for every criterion of the rubric"""
    criteria = [
        {
            "criterion": c.name,
            "weight": c.weight,
            "score": score,
            "weightedScore": score * c.weight,
            "notes": f"Notes for {c.name}",
        }
        for c in rubric.criteria
    ]
    evaluation = {
        "staffName": "Alex",
        "date": "2024-05-01",
        "overallScore": score * 20,
        "performanceLevel": "Strong",
        "criteriaScores": criteria,
        "observationalNotes": {
            "productKnowledge": {"score": score, "notes": "Knew the vintages"},
            "handlingObjections": {"score": score, "notes": "Handled price concerns"},
        },
        "strengths": ["Warm welcome", "Good rapport", "Clear wine club pitch"],
        "areasForImprovement": ["Ask for the sale", "Capture emails", "Tell more stories"],
        "keyRecommendations": ["Close earlier", "Offer the mailing list", "Use analogies"],
        "rubricId": rubric.id,
    }
    evaluation.update(overrides)
    return evaluation
