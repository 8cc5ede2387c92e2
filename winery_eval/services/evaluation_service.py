import logging
import re
from datetime import date as date_cls
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from winery_eval.config import get_settings
from winery_eval.databases.postgres.database import sessionLocal
from winery_eval.exceptions import (
    EvaluatorError,
    LLMAuthenticationError,
    LLMConfigurationError,
    LLMRateLimitError,
)
from winery_eval.models.evaluation import (
    CriterionScore,
    EvaluationData,
    ObservationalNote,
    ObservationalNotes,
    calculate_total_score,
)
from winery_eval.models.job import ModelProvider
from winery_eval.models.rubric import Criterion, Rubric, performance_level_for
from winery_eval.prompts import evaluation as evaluation_prompt
from winery_eval.repository import rubric_repository
from winery_eval.services.conversation_chunker import (
    chunk_conversation,
    combine_evaluations,
    with_timeout,
)
from winery_eval.services.llm_service import LLMService, get_llm_service
from winery_eval.utils.validator import (
    UNKNOWN_STAFF_NAME,
    extract_date_from_markdown,
    extract_staff_name_from_filename,
    extract_staff_name_from_markdown,
    parse_evaluation_response,
)

settings = get_settings()

DEFAULT_STAFF_NAME = "Staff Member"

# Errors that chunking cannot fix
PASSTHROUGH_ERRORS = (LLMConfigurationError, LLMAuthenticationError, LLMRateLimitError)


class EvaluationPipeline:
    """
    Transcript to EvaluationData: rubric lookup, direct or chunked scoring,
    response repair
    """

    def __init__(self, db: Optional[Session] = None, llm: Optional[LLMService] = None):
        self._owns_db = db is None
        self.db = db if db is not None else sessionLocal()
        self._llm = llm

    def close(self) -> None:
        if self._owns_db:
            self.db.close()

    def llm_for(self, model) -> LLMService:
        return self._llm or get_llm_service(model)

    async def evaluate(
        self,
        conversation: str,
        staff_name: Optional[str] = None,
        date: Optional[str] = None,
        rubric_id: Optional[str] = None,
        model=None,
        file_name: Optional[str] = None,
    ) -> EvaluationData:
        """
        Run complete evaluation pipeline
        """
        if not conversation or not conversation.strip():
            raise ValueError("No conversation provided")

        if not staff_name and file_name:
            from_file = extract_staff_name_from_filename(file_name)
            if from_file != UNKNOWN_STAFF_NAME:
                staff_name = from_file
        staff_name = staff_name or DEFAULT_STAFF_NAME
        date = date or date_cls.today().isoformat()
        model = ModelProvider(model or settings.default_model)

        rubric = rubric_repository.resolve(self.db, rubric_id)
        llm = self.llm_for(model)

        logging.info(
            f"Starting evaluation: staff={staff_name}, rubric={rubric.id}, model={model.value}, "
            f"length={len(conversation)}"
        )

        if len(conversation) <= settings.direct_evaluation_max_chars:
            try:
                evaluation = await self._evaluate_text(llm, conversation, rubric, staff_name, date)
                logging.info("Direct evaluation completed")
                return evaluation
            except PASSTHROUGH_ERRORS:
                raise
            except EvaluatorError as e:
                logging.error(f"Direct evaluation failed, falling back to chunking: {str(e)}")
        else:
            logging.info(
                f"Conversation too large for direct evaluation ({len(conversation)} chars), using chunking"
            )

        return await self._evaluate_chunked(llm, conversation, rubric, staff_name, date)

    async def _evaluate_chunked(
        self,
        llm: LLMService,
        conversation: str,
        rubric: Rubric,
        staff_name: str,
        date: str,
    ) -> EvaluationData:
        chunks = chunk_conversation(conversation)
        total = len(chunks)

        evaluations = []
        for index, chunk in enumerate(chunks, 1):
            logging.info(f"Processing chunk {index}/{total}")
            part = index if total > 1 else None
            evaluation = await with_timeout(
                lambda c=chunk, p=part: self._evaluate_text(llm, c, rubric, staff_name, date, p, total),
                settings.chunk_timeout,
                f"Chunk {index}/{total} evaluation",
            )
            evaluations.append(evaluation)

        return combine_evaluations(evaluations, rubric)

    async def _evaluate_text(
        self,
        llm: LLMService,
        text: str,
        rubric: Rubric,
        staff_name: str,
        date: str,
        part: Optional[int] = None,
        total_parts: Optional[int] = None,
    ) -> EvaluationData:
        prompt = evaluation_prompt.get_evaluation_prompt(text, rubric, staff_name, date, part, total_parts)
        response_text = await llm.generate(prompt, system=evaluation_prompt.SYSTEM_INSTRUCTION)
        return parse_evaluation_response(
            response_text, rubric, staff_name=staff_name, date=date, markdown=text
        )


FALLBACK_STRENGTHS = [
    "Evaluation performed using fallback system",
    "Basic conversation structure detected",
    "See detailed conversation for actual performance",
]
FALLBACK_AREAS = [
    "AI evaluation encountered an error",
    "Consider manual review of conversation",
    "Try submitting the conversation again",
]
FALLBACK_RECOMMENDATIONS = [
    "Review conversation manually",
    "Check for technical issues with the evaluation system",
    "Try shorter conversation segments if the evaluation fails",
]

CRITERION_INDICATORS: Dict[str, List[str]] = {
    "initial greeting and welcome": ["welcome", "hello", "hi ", "good morning", "good afternoon", "glad you"],
    "building rapport": ["where are you from", "visiting", "how did you hear", "first time", "celebrat", "trip"],
    "winery history and ethos": ["founded", "family", "history", "estate", "generation", "sustainab", "vineyard"],
    "storytelling and analogies": ["like a", "reminds", "imagine", "story", "picture", "think of"],
    "recognition of buying signals": ["love this", "i like", "really good", "favorite", "how much", "can i buy"],
    "customer data capture": ["email", "phone", "sign up", "mailing list", "contact", "newsletter"],
    "asking for the sale": ["would you like to buy", "take home", "bottles", "purchase", "add to", "order"],
    "personalized wine recommendations": ["you mentioned", "since you like", "based on", "you might enjoy", "recommend"],
    "wine club presentation": ["wine club", "membership", "member", "shipment", "club"],
    "closing interaction": ["thank you", "thanks for", "come back", "see you", "enjoy the rest", "next time"],
}
PRODUCT_KNOWLEDGE_INDICATORS = ["tannin", "acidity", "oak", "vintage", "finish", "varietal", "barrel", "terroir"]
OBJECTION_INDICATORS = ["expensive", "too much", "not sure", "don't like", "too sweet", "too dry", "maybe later"]

WORD_PATTERN = re.compile(r"[a-z]{4,}")


def _indicators_for(criterion: Criterion) -> List[str]:
    known = CRITERION_INDICATORS.get(criterion.name.lower())
    if known:
        return known
    return WORD_PATTERN.findall(f"{criterion.name} {criterion.description}".lower())


def _count_hits(text: str, indicators: List[str]) -> int:
    return sum(1 for phrase in indicators if phrase in text)


def _keyword_score(hits: int) -> int:
    return min(5, 2 + hits)


def _staff_name_from_sources(markdown: str, file_name: Optional[str]) -> str:
    name = extract_staff_name_from_markdown(markdown)
    if name == UNKNOWN_STAFF_NAME and file_name:
        name = extract_staff_name_from_filename(file_name)
    return name


def fallback_evaluation(
    markdown: str,
    rubric: Rubric,
    staff_name: Optional[str] = None,
    date: Optional[str] = None,
    file_name: Optional[str] = None,
) -> EvaluationData:
    """
    Keyword based evaluation for when the LLM cannot produce one.

    Each criterion scores 2 plus one point per indicator phrase found, capped at 5.
    """
    logging.info("Performing basic fallback evaluation")
    text = (markdown or "").lower()

    criteria_scores = []
    for criterion in rubric.criteria:
        hits = _count_hits(text, _indicators_for(criterion))
        score = _keyword_score(hits)
        criteria_scores.append(CriterionScore(
            criterion=criterion.name,
            weight=criterion.weight,
            score=score,
            weighted_score=score * criterion.weight,
            notes=f"Keyword analysis found {hits} indicator(s) for this criterion.",
        ))

    overall = calculate_total_score(criteria_scores)

    knowledge_hits = _count_hits(text, PRODUCT_KNOWLEDGE_INDICATORS)
    objection_hits = _count_hits(text, OBJECTION_INDICATORS)

    return EvaluationData(
        staff_name=staff_name or _staff_name_from_sources(markdown, file_name),
        date=date or extract_date_from_markdown(markdown),
        overall_score=overall,
        performance_level=performance_level_for(overall, rubric),
        criteria_scores=criteria_scores,
        observational_notes=ObservationalNotes(
            product_knowledge=ObservationalNote(
                score=_keyword_score(knowledge_hits),
                notes=f"Keyword analysis found {knowledge_hits} product knowledge term(s).",
            ),
            handling_objections=ObservationalNote(
                score=3,
                notes=f"Keyword analysis found {objection_hits} possible objection(s); review manually.",
            ),
        ),
        strengths=list(FALLBACK_STRENGTHS),
        areas_for_improvement=list(FALLBACK_AREAS),
        key_recommendations=list(FALLBACK_RECOMMENDATIONS),
        rubric_id=rubric.id,
        metadata={"isFallback": True},
    )
