import json
import re
import logging
from dataclasses import dataclass
from datetime import date as date_cls
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from winery_eval.exceptions import EvaluationValidationError, JSONExtractionError
from winery_eval.models.evaluation import (
    MAX_SCORE,
    MIN_SCORE,
    REQUIRED_LIST_LENGTH,
    EvaluationData,
    PerformanceLevelName,
)
from winery_eval.models.common import round_half_up
from winery_eval.models.rubric import Rubric, performance_level_for

logger = logging.getLogger(__name__)

EXPECTED_CRITERIA_COUNT = 10
DEFAULT_WEIGHT = 10
DEFAULT_SCORE = 3
RAW_POINTS_MAXIMUM = 500
UNKNOWN_STAFF_NAME = "Unknown Staff"

LIST_PLACEHOLDERS = {
    "strengths": "Strength {n}",
    "areasForImprovement": "Area for improvement {n}",
    "keyRecommendations": "Recommendation {n}",
}

DEFAULT_OBSERVATIONAL_NOTES = {
    "productKnowledge": {"score": DEFAULT_SCORE, "notes": "No product knowledge observations provided"},
    "handlingObjections": {"score": DEFAULT_SCORE, "notes": "No objection handling observations provided"},
}

STAFF_LINE_PATTERN = re.compile(r"Staff(?:\s+Member)?(?:\s+\(\d+\))?[:\s]+([^\n]+)", re.IGNORECASE)
STAFF_INTRO_PATTERN = re.compile(
    r"(?:hi|hello|hey)[\s,]+(?:my name is|i'm|i am)\s+([^\s,.]+)", re.IGNORECASE
)
DATE_PATTERN = re.compile(r"Date:?\**\s+(\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2})", re.IGNORECASE)
FILENAME_STAFF_PATTERN = re.compile(r"conversation-with-([^.]+)", re.IGNORECASE)


@dataclass
class ValidationError:
    field: str
    message: str


def clean_json_string(json_str: str) -> str:
    """
    Clean common JSON formatting issues from LLM output
    """
    # Remove markdown code blocks
    cleaned = re.sub(r'```json\s*', '', json_str)
    cleaned = re.sub(r'```\s*', '', cleaned)

    cleaned = cleaned.strip()

    # Fix trailing commas before closing brackets
    cleaned = re.sub(r',(\s*[}\]])', r'\1', cleaned)

    # Remove comments (single line and multi-line)
    cleaned = re.sub(r'^\s*//.*?$', '', cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r'/\*.*?\*/', '', cleaned, flags=re.DOTALL)

    return cleaned


def _try_parse(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(clean_json_string(candidate))
    except json.JSONDecodeError:
        return None


def extract_json(text: str) -> Any:
    """
    Pull the first parseable JSON document out of a model response.

    Tries the whole text, a fenced block, the outermost object span, an array
    span, then the largest nested object candidate.
    """
    if not text or not text.strip():
        raise JSONExtractionError("Empty response text")

    stripped = re.sub(r'```(?:json)?\s*', '', text).strip()

    patterns = [
        ("complete JSON object", re.compile(r'^\s*(\{[\s\S]*\})\s*$')),
        ("JSON code block", re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```')),
        ("JSON object with surrounding text", re.compile(r'(\{[\s\S]*\})')),
        ("JSON array", re.compile(r'(\[[\s\S]*\])')),
    ]

    for name, pattern in patterns:
        source = text if name == "JSON code block" else stripped
        match = pattern.search(source)
        if not match:
            continue
        parsed = _try_parse(match.group(1).strip())
        if parsed is not None:
            logger.debug(f"Found JSON using pattern: {name}")
            return parsed
        logger.debug(f"Pattern {name} matched but did not parse")

    candidates = re.findall(r'\{(?:[^{}]|\{[^{}]*\})*\}', stripped)
    for candidate in sorted(candidates, key=len, reverse=True):
        parsed = _try_parse(candidate)
        if parsed is not None:
            logger.debug("Found JSON in nested object candidate")
            return parsed

    raise JSONExtractionError("No valid JSON found in model response")


def coerce_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        match = re.match(r"^\s*(-?\d+(?:\.\d+)?)", value)
        if match:
            number = float(match.group(1))
            return int(number) if number.is_integer() else number
    return None


def clamp_score(value: Any) -> float:
    number = coerce_number(value)
    if number is None or number == 0:
        return DEFAULT_SCORE
    if number < MIN_SCORE:
        logger.warning(f"Score {number} below minimum, setting to {MIN_SCORE}")
        return MIN_SCORE
    if number > MAX_SCORE:
        logger.warning(f"Score {number} above maximum, setting to {MAX_SCORE}")
        return MAX_SCORE
    return number


def normalize_overall_score(value: Any) -> float:
    """Scores above 100 are raw weighted points out of 500"""
    number = coerce_number(value)
    if number is None:
        return 0
    if number > 100:
        number = round_half_up((number / RAW_POINTS_MAXIMUM) * 100)
    return max(0, min(100, number))


def extract_staff_name_from_markdown(markdown: str) -> str:
    line = STAFF_LINE_PATTERN.search(markdown or "")
    if line and line.group(1):
        intro = STAFF_INTRO_PATTERN.search(line.group(1))
        return intro.group(1).strip() if intro else line.group(1).strip()
    return UNKNOWN_STAFF_NAME


def extract_staff_name_from_filename(file_name: str) -> str:
    match = FILENAME_STAFF_PATTERN.search(file_name or "")
    return match.group(1) if match else UNKNOWN_STAFF_NAME


def extract_date_from_markdown(markdown: str) -> str:
    match = DATE_PATTERN.search(markdown or "")
    if match:
        return match.group(1)
    return date_cls.today().isoformat()


def _repair_criterion(item: Any, index: int) -> Dict[str, Any]:
    item = item if isinstance(item, dict) else {}
    weight = coerce_number(item.get("weight")) or DEFAULT_WEIGHT
    score = clamp_score(item.get("score"))
    weighted = coerce_number(item.get("weightedScore"))
    if weighted is None or weighted <= 0 or weighted > weight * MAX_SCORE:
        weighted = score * weight
    return {
        "criterion": str(item.get("criterion") or item.get("name") or f"Criterion {index + 1}"),
        "weight": weight,
        "score": score,
        "weightedScore": weighted,
        "notes": str(item.get("notes") or item.get("feedback") or "No notes provided"),
    }


def _repair_criteria(raw: Any, rubric: Optional[Rubric]) -> List[Dict[str, Any]]:
    items = raw if isinstance(raw, list) else []
    repaired = [_repair_criterion(item, i) for i, item in enumerate(items)]

    expected = len(rubric.criteria) if rubric and rubric.criteria else EXPECTED_CRITERIA_COUNT

    if len(repaired) > expected:
        logger.warning(f"Trimming criteriaScores from {len(repaired)} to {expected}")
        repaired = repaired[:expected]

    if len(repaired) < expected:
        logger.warning(f"Padding criteriaScores from {len(repaired)} to {expected}")
        seen = {c["criterion"].lower() for c in repaired}
        rubric_criteria = list(rubric.criteria) if rubric else []
        fillers = [c for c in rubric_criteria if c.name.lower() not in seen]
        while len(repaired) < expected:
            if fillers:
                criterion = fillers.pop(0)
                name, weight = criterion.name, criterion.weight
            else:
                name, weight = f"Criterion {len(repaired) + 1}", DEFAULT_WEIGHT
            repaired.append({
                "criterion": name,
                "weight": weight,
                "score": DEFAULT_SCORE,
                "weightedScore": DEFAULT_SCORE * weight,
                "notes": "Not evaluated by the model; default score applied",
            })

    return repaired


def _repair_list(raw: Any, field: str) -> List[str]:
    items = [str(x).strip() for x in raw if str(x).strip()] if isinstance(raw, list) else []
    if len(items) > REQUIRED_LIST_LENGTH:
        logger.info(f"Trimming {field} to {REQUIRED_LIST_LENGTH} items")
        items = items[:REQUIRED_LIST_LENGTH]
    while len(items) < REQUIRED_LIST_LENGTH:
        items.append(LIST_PLACEHOLDERS[field].format(n=len(items) + 1))
    return items


def _repair_observational_notes(raw: Any) -> Dict[str, Dict[str, Any]]:
    raw = raw if isinstance(raw, dict) else {}
    notes = {}
    for key, default in DEFAULT_OBSERVATIONAL_NOTES.items():
        entry = raw.get(key)
        if not isinstance(entry, dict):
            notes[key] = dict(default)
            continue
        notes[key] = {
            "score": clamp_score(entry.get("score")),
            "notes": str(entry.get("notes") or default["notes"]),
        }
    return notes


def _known_levels(rubric: Optional[Rubric]) -> List[str]:
    if rubric and rubric.performance_levels:
        return [level.name for level in rubric.performance_levels]
    return [level.value for level in PerformanceLevelName]


def repair_evaluation_data(
    data: Any,
    rubric: Optional[Rubric] = None,
    staff_name: Optional[str] = None,
    date: Optional[str] = None,
    markdown: Optional[str] = None,
    file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Fill defaults and fix array lengths on a parsed evaluation dict.

    Never raises; the result always has the full evaluation shape.
    """
    data = data if isinstance(data, dict) else {}
    if isinstance(data.get("evaluation"), dict):
        data = data["evaluation"]

    repaired: Dict[str, Any] = {}

    repaired["staffName"] = str(data.get("staffName") or staff_name or "").strip()
    if not repaired["staffName"] or repaired["staffName"] == UNKNOWN_STAFF_NAME:
        repaired["staffName"] = extract_staff_name_from_markdown(markdown or "")
        if repaired["staffName"] == UNKNOWN_STAFF_NAME and file_name:
            repaired["staffName"] = extract_staff_name_from_filename(file_name)

    repaired["date"] = str(data.get("date") or date or "").strip()
    if not repaired["date"]:
        repaired["date"] = extract_date_from_markdown(markdown or "")

    repaired["criteriaScores"] = _repair_criteria(data.get("criteriaScores"), rubric)

    raw_overall = data.get("overallScore", data.get("totalScore"))
    if coerce_number(raw_overall) is None:
        total_weight = sum(c["weight"] for c in repaired["criteriaScores"]) or 1
        weighted = sum(c["weightedScore"] for c in repaired["criteriaScores"])
        repaired["overallScore"] = round_half_up(weighted / (MAX_SCORE * total_weight) * 100)
    else:
        repaired["overallScore"] = normalize_overall_score(raw_overall)

    level = data.get("performanceLevel")
    if not level or level not in _known_levels(rubric):
        level = performance_level_for(repaired["overallScore"], rubric)
    repaired["performanceLevel"] = level

    repaired["observationalNotes"] = _repair_observational_notes(data.get("observationalNotes"))

    for field in LIST_PLACEHOLDERS:
        repaired[field] = _repair_list(data.get(field), field)

    repaired["rubricId"] = rubric.id if rubric else str(data.get("rubricId") or "")

    if isinstance(data.get("metadata"), dict):
        repaired["metadata"] = data["metadata"]

    return repaired


def validate_evaluation_data(data: Any) -> List[ValidationError]:
    """
    Check an evaluation dict (camelCase keys) against the fixed shape
    """
    errors: List[ValidationError] = []

    if not isinstance(data, dict):
        return [ValidationError("data", "No evaluation data provided")]

    if not data.get("staffName"):
        errors.append(ValidationError("staffName", "Missing staffName"))
    if not data.get("date"):
        errors.append(ValidationError("date", "Missing date"))

    overall = data.get("overallScore", data.get("totalScore"))
    if coerce_number(overall) is None:
        errors.append(ValidationError("overallScore", "Missing overallScore"))
    if not data.get("performanceLevel"):
        errors.append(ValidationError("performanceLevel", "Missing performanceLevel"))

    criteria = data.get("criteriaScores")
    if not isinstance(criteria, list):
        errors.append(ValidationError("criteriaScores", "Missing or invalid criteriaScores"))
    else:
        if len(criteria) != EXPECTED_CRITERIA_COUNT:
            errors.append(ValidationError(
                "criteriaScores", f"Must contain exactly {EXPECTED_CRITERIA_COUNT} items, got {len(criteria)}"
            ))
        for i, item in enumerate(criteria):
            if not isinstance(item, dict):
                errors.append(ValidationError(f"criteriaScores[{i}]", "Must be an object"))
                continue
            if not item.get("criterion"):
                errors.append(ValidationError(f"criteriaScores[{i}].criterion", "Missing criterion"))
            for key in ("weight", "score", "weightedScore"):
                if coerce_number(item.get(key)) is None:
                    errors.append(ValidationError(f"criteriaScores[{i}].{key}", f"Missing or invalid {key}"))
            if not item.get("notes"):
                errors.append(ValidationError(f"criteriaScores[{i}].notes", "Missing notes"))

    notes = data.get("observationalNotes")
    if not isinstance(notes, dict):
        errors.append(ValidationError("observationalNotes", "Missing observationalNotes"))
    else:
        for key in DEFAULT_OBSERVATIONAL_NOTES:
            if not isinstance(notes.get(key), dict):
                errors.append(ValidationError(f"observationalNotes.{key}", f"Missing {key}"))

    for field in LIST_PLACEHOLDERS:
        value = data.get(field)
        if not isinstance(value, list):
            errors.append(ValidationError(field, f"Missing or invalid {field}"))
        elif len(value) != REQUIRED_LIST_LENGTH:
            errors.append(ValidationError(
                field, f"Must contain exactly {REQUIRED_LIST_LENGTH} items, got {len(value)}"
            ))

    return errors


def parse_evaluation_response(
    text: str,
    rubric: Optional[Rubric] = None,
    staff_name: Optional[str] = None,
    date: Optional[str] = None,
    markdown: Optional[str] = None,
    file_name: Optional[str] = None,
) -> EvaluationData:
    """
    Turn raw model text into a validated EvaluationData, repairing as needed
    """
    raw = extract_json(text)

    errors = validate_evaluation_data(raw)
    if errors:
        logger.warning(f"Model evaluation needs repair: {[f'{e.field}: {e.message}' for e in errors]}")

    repaired = repair_evaluation_data(raw, rubric, staff_name, date, markdown, file_name)

    if rubric is None or len(rubric.criteria) == EXPECTED_CRITERIA_COUNT:
        remaining = validate_evaluation_data(repaired)
        if remaining:
            logger.error(f"Evaluation still invalid after repair: {remaining}")
            raise EvaluationValidationError(remaining)

    try:
        return EvaluationData.model_validate(repaired)
    except PydanticValidationError as e:
        logger.error(f"Repaired evaluation failed model validation: {e}")
        raise EvaluationValidationError([ValidationError("data", str(e))])
