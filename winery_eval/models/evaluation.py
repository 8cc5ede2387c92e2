from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from winery_eval.models.common import CamelModel, round_half_up

REQUIRED_LIST_LENGTH = 3
MIN_SCORE = 1
MAX_SCORE = 5


class PerformanceLevelName(str, Enum):
    """Band names used by the built-in rubric"""
    EXCEPTIONAL = "Exceptional"
    STRONG = "Strong"
    PROFICIENT = "Proficient"
    DEVELOPING = "Developing"
    NEEDS_IMPROVEMENT = "Needs Improvement"


class CriterionScore(CamelModel):
    criterion: str
    weight: float
    score: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    weighted_score: float
    notes: str


class ObservationalNote(CamelModel):
    score: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    notes: str


class ObservationalNotes(CamelModel):
    """Unweighted observations reported alongside the criteria"""
    product_knowledge: ObservationalNote
    handling_objections: ObservationalNote


class EvaluationData(CamelModel):
    """
    Scoring result for one conversation
    """
    staff_name: str
    date: str
    overall_score: float = Field(ge=0, le=100)
    performance_level: str
    criteria_scores: List[CriterionScore]
    observational_notes: ObservationalNotes
    strengths: List[str]
    areas_for_improvement: List[str]
    key_recommendations: List[str]
    rubric_id: str = ""
    metadata: Optional[Dict[str, Any]] = None


def calculate_weighted_score(score: float, weight: float) -> float:
    return score * weight


def calculate_total_score(criteria_scores: List[CriterionScore]) -> int:
    """Percentage of the maximum weighted points (5 x total weight)"""
    total_weight = sum(c.weight for c in criteria_scores)
    if total_weight <= 0:
        return 0
    total_weighted = sum(c.weighted_score for c in criteria_scores)
    return round_half_up(total_weighted / (MAX_SCORE * total_weight) * 100)
