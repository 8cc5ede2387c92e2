import json
import logging

from winery_eval.models.rubric import Rubric, export_rubric_json

SYSTEM_INSTRUCTION = (
    "You are a wine sales evaluation expert. Analyze the conversation and provide "
    "detailed feedback based on the rubric. Always respond with valid JSON."
)

RESPONSE_FORMAT = """{{
  "staffName": "{staff_name}",
  "date": "{date}",
  "overallScore": number (0-100),
  "performanceLevel": {levels},
  "criteriaScores": [
    {{
      "criterion": string,
      "score": number (1-5),
      "weight": number,
      "weightedScore": number,
      "notes": string (include specific examples and line references)
    }}
  ],
  "observationalNotes": {{
    "productKnowledge": {{
      "score": number (1-5),
      "notes": string (include specific examples and line references)
    }},
    "handlingObjections": {{
      "score": number (1-5),
      "notes": string (include specific examples and line references)
    }}
  }},
  "strengths": [string, string, string],
  "areasForImprovement": [string, string, string],
  "keyRecommendations": [string, string, string],
  "rubricId": "{rubric_id}"
}}"""


def _level_choices(rubric: Rubric) -> str:
    return " | ".join(f'"{level.name}"' for level in rubric.performance_levels)


def get_evaluation_prompt(
    conversation: str,
    rubric: Rubric,
    staff_name: str,
    date: str,
    part: int = None,
    total_parts: int = None,
) -> str:
    """
    Build the scoring prompt for a whole transcript or one chunk of it.
    """
    levels = _level_choices(rubric)
    response_format = RESPONSE_FORMAT.format(
        staff_name=staff_name, date=date, levels=levels, rubric_id=rubric.id
    )

    scope = ""
    if part and total_parts and total_parts > 1:
        scope = (
            f"\nThis is part {part} of {total_parts} of a longer conversation. "
            "The opening lines may repeat the end of the previous part for context. "
            "Score only what is visible in this part.\n"
        )

    logging.info(
        "Generating evaluation prompt | conversation_len=%d | criteria=%d",
        len(conversation),
        len(rubric.criteria)
    )

    return f"""You are evaluating a wine sales conversation between a staff member and a customer.
{scope}
Staff Member: {staff_name}
Date: {date}

Conversation:
{conversation}

Please evaluate this conversation using the following rubric:
{json.dumps(export_rubric_json(rubric), indent=2)}

For each criterion in your evaluation, provide SPECIFIC EXAMPLES from the conversation. Quote or reference specific lines or exchanges that demonstrate strengths or areas for improvement.

Provide your evaluation in the following JSON format:
{response_format}

IMPORTANT:
1. You must provide exactly {len(rubric.criteria)} criteria scores, one per rubric criterion, using the criterion names and weights from the rubric
2. You must provide exactly 3 strengths
3. You must provide exactly 3 areas for improvement
4. You must provide exactly 3 key recommendations
5. All scores must be numbers between 1 and 5
6. weightedScore is score multiplied by weight
7. The overall score must be between 0 and 100
8. The performance level must be one of: {levels}
9. All fields are required
10. Respond with ONLY the JSON - no other text"""
