from typing import Any, Dict, List, Optional

from pydantic import Field

from winery_eval.models.common import CamelModel, utc_now_iso

EXPECTED_SCORES = [1, 2, 3, 4, 5]
WEIGHT_TOLERANCE = 0.01


class ScoringLevel(CamelModel):
    score: int
    description: str = ""


class Criterion(CamelModel):
    id: str = ""
    name: str = ""
    description: str = ""
    weight: float = 0
    scoring_levels: List[ScoringLevel] = Field(default_factory=list)


class PerformanceLevel(CamelModel):
    name: str = ""
    min_score: float = 0
    max_score: float = 0
    description: str = ""

    def contains(self, score: float, inclusive_max: bool = False) -> bool:
        if inclusive_max:
            return self.min_score <= score <= self.max_score
        return self.min_score <= score < self.max_score


class Rubric(CamelModel):
    """Scoring template with weighted criteria and performance bands"""
    id: str = ""
    name: str = ""
    description: str = ""
    is_default: bool = False
    created_at: str = ""
    updated_at: str = ""
    criteria: List[Criterion] = Field(default_factory=list)
    performance_levels: List[PerformanceLevel] = Field(default_factory=list)

    @property
    def total_weight(self) -> float:
        return sum(c.weight for c in self.criteria)


class RubricPayload(CamelModel):
    """Create/update body; every field optional so validation can report what is missing"""
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    is_default: Optional[bool] = None
    created_at: Optional[str] = None
    criteria: Optional[List[Criterion]] = None
    performance_levels: Optional[List[PerformanceLevel]] = None


def validate_rubric(rubric: Rubric) -> List[str]:
    """
    Check a rubric for completeness.

    Returns a list of human readable problems; an empty list means the rubric
    can be used for scoring.
    """
    errors: List[str] = []

    if not rubric.id:
        errors.append("Rubric ID is required")
    if not rubric.name:
        errors.append("Rubric name is required")
    if not rubric.description:
        errors.append("Rubric description is required")

    if not rubric.criteria:
        errors.append("Rubric must have at least one criterion")
    else:
        total_weight = rubric.total_weight
        if abs(total_weight - 100) > WEIGHT_TOLERANCE:
            errors.append(f"Criteria weights must sum to 100% (current sum: {total_weight:g}%)")

        for index, criterion in enumerate(rubric.criteria, 1):
            label = criterion.name or index
            if not criterion.id:
                errors.append(f"Criterion {index} is missing an ID")
            if not criterion.name:
                errors.append(f"Criterion {index} is missing a name")
            if criterion.weight <= 0:
                errors.append(f"Criterion {label} has invalid weight")

            if not criterion.scoring_levels:
                errors.append(f"Criterion {label} must have at least one scoring level")
                continue

            present = {level.score for level in criterion.scoring_levels}
            missing = [score for score in EXPECTED_SCORES if score not in present]
            if missing:
                errors.append(
                    f"Criterion {label} is missing scoring levels: {', '.join(str(s) for s in missing)}"
                )

    if not rubric.performance_levels:
        errors.append("Rubric must have at least one performance level")
        return errors

    for index, level in enumerate(rubric.performance_levels, 1):
        label = level.name or index
        if not level.name:
            errors.append(f"Performance level {index} is missing a name")
        if not 0 <= level.min_score <= 100:
            errors.append(f"Performance level {label} has invalid minimum score")
        if not 0 <= level.max_score <= 100:
            errors.append(f"Performance level {label} has invalid maximum score")
        if level.min_score > level.max_score:
            errors.append(f"Performance level {label} has minimum score greater than maximum score")

    levels = sorted(rubric.performance_levels, key=lambda lvl: lvl.min_score)
    for current, following in zip(levels, levels[1:]):
        if current.max_score != following.min_score:
            errors.append(
                f'Gap or overlap between performance levels "{current.name}" and "{following.name}"'
            )

    if levels[0].min_score != 0:
        errors.append("Performance levels must start at 0%")
    if levels[-1].max_score != 100:
        errors.append("Performance levels must end at 100%")

    return errors


DEFAULT_PERFORMANCE_THRESHOLDS = [
    (90, "Exceptional"),
    (80, "Strong"),
    (70, "Proficient"),
    (60, "Developing"),
]
LOWEST_PERFORMANCE_LEVEL = "Needs Improvement"


def performance_level_for(score: float, rubric: Optional[Rubric] = None) -> str:
    """Name of the performance band holding a 0-100 score"""
    if rubric and rubric.performance_levels:
        levels = sorted(rubric.performance_levels, key=lambda lvl: lvl.min_score)
        for position, level in enumerate(levels):
            if level.contains(score, inclusive_max=position == len(levels) - 1):
                return level.name
        if score >= levels[-1].max_score:
            return levels[-1].name
        return levels[0].name

    for threshold, name in DEFAULT_PERFORMANCE_THRESHOLDS:
        if score >= threshold:
            return name
    return LOWEST_PERFORMANCE_LEVEL


def export_rubric_json(rubric: Rubric) -> Dict[str, Any]:
    """Portable copy of a rubric without storage timestamps"""
    return rubric.model_dump(by_alias=True, exclude={"created_at", "updated_at"})


DEFAULT_RUBRIC_ID = "wine-sales-default"

_DEFAULT_CRITERIA = [
    (
        "Initial Greeting and Welcome", 8,
        "How effectively does the staff member welcome guests and set a positive tone?",
        [
            "No greeting or unwelcoming approach",
            "Basic greeting but minimal warmth",
            "Friendly greeting but lacks personalization",
            "Warm, friendly greeting with good eye contact",
            "Exceptional welcome that makes guests feel valued and excited",
        ],
    ),
    (
        "Building Rapport", 10,
        "How well does the staff member connect personally with the guests?",
        [
            "No attempt to connect personally with guests",
            "Minimal small talk, mostly transactional",
            "Some rapport-building questions but limited follow-up",
            "Good personal connection through meaningful conversation",
            "Excellent rapport building, including origin questions, future plans, and genuine interest",
        ],
    ),
    (
        "Winery History and Ethos", 10,
        "How effectively does the staff member communicate the winery's story and values?",
        [
            "No mention of winery history or values",
            "Brief, factual mention of winery background",
            "Adequate explanation of winery history and values",
            "Compelling storytelling about winery history, connecting to wines",
            "Passionate, engaging narrative that brings the winery ethos to life",
        ],
    ),
    (
        "Storytelling and Analogies", 10,
        "How well does the staff member use storytelling and analogies to describe wines?",
        [
            "Technical descriptions only, no storytelling or analogies",
            "Minimal storytelling, mostly factual information",
            "Some storytelling elements but lacking rich analogies",
            "Good use of stories and analogies that help guests understand wines",
            "Exceptional storytelling that creates memorable experiences and makes wine accessible",
        ],
    ),
    (
        "Recognition of Buying Signals", 12,
        "How well does the staff member notice and respond to buying signals?",
        [
            "Misses obvious buying signals completely",
            "Notices some signals but response is delayed or inappropriate",
            "Recognizes main buying signals with adequate response",
            "Quickly identifies buying signals and responds effectively",
            "Expertly recognizes subtle cues and capitalizes on buying moments",
        ],
    ),
    (
        "Customer Data Capture", 8,
        "How effectively does the staff member attempt to collect customer information?",
        [
            "No attempt to capture customer data",
            "Single basic attempt at data collection",
            "Multiple attempts but without explaining benefits",
            "Good data capture attempts with clear value proposition",
            "Natural, non-intrusive data collection that feels beneficial to guest",
        ],
    ),
    (
        "Asking for the Sale", 12,
        "How effectively does the staff member ask for wine purchases?",
        [
            "Never asks for sale or suggests purchase",
            "Vague suggestion about purchasing without direct ask",
            "Basic closing attempt but lacks confidence",
            "Clear, confident ask for purchase at appropriate time",
            "Multiple strategic closing attempts that feel natural and appropriate",
        ],
    ),
    (
        "Personalized Wine Recommendations", 10,
        "How well does the staff member customize wine recommendations based on guest preferences?",
        [
            "Generic recommendations unrelated to expressed interests",
            "Basic recommendations with minimal personalization",
            "Adequate recommendations based on general preferences",
            "Well-tailored recommendations based on specific guest feedback",
            "Expertly customized selections that perfectly match expressed interests",
        ],
    ),
    (
        "Wine Club Presentation", 12,
        "How effectively does the staff member present and invite guests to join the wine club?",
        [
            "No mention of wine club or inadequate response when asked",
            "Basic wine club information without personalization",
            "Adequate explanation of benefits but minimal customization",
            "Good presentation of wine club with benefits tailored to guest interests",
            "Compelling, personalized wine club presentation with clear invitation to join",
        ],
    ),
    (
        "Closing Interaction", 8,
        "How well does the staff member conclude the interaction and encourage future visits?",
        [
            "Abrupt ending with no thanks or future invitation",
            "Basic thank you but no encouragement to return",
            "Polite conclusion with general invitation to return",
            "Warm thank you with specific suggestion for future visit",
            "Memorable farewell that reinforces relationship and ensures future visits",
        ],
    ),
]

_DEFAULT_PERFORMANCE_LEVELS = [
    ("Exceptional", 90, 100, "Outstanding performance that exceeds expectations in all areas"),
    ("Strong", 80, 90, "Very good performance with minor areas for improvement"),
    ("Proficient", 70, 80, "Solid performance that meets expectations"),
    ("Developing", 60, 70, "Basic performance with significant areas for improvement"),
    ("Needs Improvement", 0, 60, "Performance requiring substantial training and development"),
]


def create_default_rubric() -> Rubric:
    """Built-in wine tasting room sales rubric"""
    now = utc_now_iso()
    criteria = [
        Criterion(
            id=f"{DEFAULT_RUBRIC_ID}-criterion-{index}",
            name=name,
            description=description,
            weight=weight,
            scoring_levels=[
                ScoringLevel(score=score, description=text)
                for score, text in enumerate(levels, 1)
            ],
        )
        for index, (name, weight, description, levels) in enumerate(_DEFAULT_CRITERIA, 1)
    ]
    performance_levels = [
        PerformanceLevel(name=name, min_score=low, max_score=high, description=description)
        for name, low, high, description in _DEFAULT_PERFORMANCE_LEVELS
    ]
    return Rubric(
        id=DEFAULT_RUBRIC_ID,
        name="Wine Sales Evaluation",
        description="Standard rubric for evaluating wine tasting room sales interactions",
        is_default=True,
        created_at=now,
        updated_at=now,
        criteria=criteria,
        performance_levels=performance_levels,
    )
